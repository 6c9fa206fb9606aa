from __future__ import annotations

import json

import pytest

from config import DEFAULT_CONFIG, load_config, zones_from_config


def test_missing_file_yields_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("ROADWATCH_HOST", raising=False)
    monkeypatch.delenv("ROADWATCH_PORT", raising=False)

    config = load_config(str(tmp_path / "nope.json"))

    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_file_values_merge_over_defaults(tmp_path) -> None:
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"simulation": {"tick_interval_sec": 5}, "zones": [{"name": "A", "lat": 1, "lng": 2}]}))

    config = load_config(str(path))

    assert config["simulation"]["tick_interval_sec"] == 5
    assert config["simulation"]["seed_sample_data"] is True
    assert [z.name for z in zones_from_config(config)] == ["A"]


def test_env_overrides_server_address(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ROADWATCH_HOST", "127.0.0.1")
    monkeypatch.setenv("ROADWATCH_PORT", "9000")

    config = load_config(str(tmp_path / "nope.json"))

    assert config["server"]["host"] == "127.0.0.1"
    assert config["server"]["port"] == 9000


def test_config_path_from_env(tmp_path, monkeypatch) -> None:
    path = tmp_path / "env.json"
    path.write_text(json.dumps({"broadcast": {"queue_size": 64}}))
    monkeypatch.setenv("ROADWATCH_CONFIG", str(path))

    assert load_config()["broadcast"]["queue_size"] == 64


def test_explicit_overrides_win(tmp_path) -> None:
    config = load_config(str(tmp_path / "nope.json"), overrides={"retention": {"user_ttl_sec": 60}})

    assert config["retention"]["user_ttl_sec"] == 60
    assert config["retention"]["report_ttl_sec"] == 86400


def test_non_object_config_is_rejected(tmp_path) -> None:
    path = tmp_path / "bad.json"
    path.write_text("[1, 2, 3]")

    with pytest.raises(ValueError):
        load_config(str(path))


def test_zones_from_config_skips_incomplete_entries() -> None:
    zones = zones_from_config({"zones": [{"lat": 1.0}, "junk", {"lat": 1.5, "lng": 2.5}]})

    assert len(zones) == 1
    assert (zones[0].lat, zones[0].lng) == (1.5, 2.5)
    assert zones[0].name == "1.5,2.5"
