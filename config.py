import copy
import json
import logging
import os
from typing import Any, Dict, List, Optional

from generator import DEFAULT_ZONES, Zone

logger = logging.getLogger("config")

DEFAULT_CONFIG_PATH = "roadwatch_config.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
        "static_dir": "static",
    },
    "simulation": {
        "enabled": True,
        "tick_interval_sec": 30,
        "seed_sample_data": True,
    },
    "retention": {
        "sweep_interval_sec": 3600,
        "user_ttl_sec": 3600,
        "report_ttl_sec": 86400,
        "traffic_ttl_sec": 3600,
    },
    "broadcast": {
        "queue_size": 0,
        "send_timeout_sec": 5.0,
    },
    "geocoding": {
        "base_url": "https://nominatim.openstreetmap.org",
        "user_agent": "RoadWatch/1.0 (Navigation Demo)",
        "rate_limit_sec": 1.0,
        "timeout_sec": 10.0,
        "cache_ttl_sec": 300.0,
    },
    "zones": [
        {"name": z.name, "lat": z.lat, "lng": z.lng} for z in DEFAULT_ZONES
    ],
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _read_config_file(path: str) -> Dict[str, Any]:
    if not path or not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be an object: {path}")
    return payload


def _apply_env(config: Dict[str, Any]) -> None:
    host = os.getenv("ROADWATCH_HOST")
    if host:
        config["server"]["host"] = host
    port = os.getenv("ROADWATCH_PORT")
    if port:
        try:
            config["server"]["port"] = int(port)
        except ValueError:
            logger.warning("Ignoring non-integer ROADWATCH_PORT=%r", port)


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Defaults <- config file <- environment <- explicit overrides."""
    config_path = config_path or os.getenv("ROADWATCH_CONFIG") or DEFAULT_CONFIG_PATH
    config = _deep_merge(DEFAULT_CONFIG, _read_config_file(config_path))
    _apply_env(config)
    if overrides:
        config = _deep_merge(config, overrides)
    return config


def zones_from_config(config: Dict[str, Any]) -> List[Zone]:
    zones = []
    for z in config.get("zones", []):
        if not isinstance(z, dict) or "lat" not in z or "lng" not in z:
            continue
        zones.append(Zone(name=z.get("name", f"{z['lat']},{z['lng']}"), lat=float(z["lat"]), lng=float(z["lng"])))
    return zones
