from __future__ import annotations

import time

from generator import TrafficGenerator
from janitor import Janitor
from simulation_controller import SimulationController
from store import StateStore


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_tick_upserts_every_zone_and_fires_callback(store: StateStore) -> None:
    calls: list[int] = []
    sim = SimulationController(store, TrafficGenerator(), on_tick=lambda: calls.append(1))

    sim.tick()
    sim.tick()

    assert store.stats().traffic_points == 8
    assert sim.ticks == 2
    assert calls == [1, 1]


def test_tick_samples_follow_the_store_clock(store: StateStore, clock) -> None:
    sim = SimulationController(store, TrafficGenerator())
    sim.tick()

    for sample in store.all_traffic_samples().values():
        assert sample.timestamp == clock()


def test_failing_tick_callback_does_not_raise(store: StateStore) -> None:
    def boom() -> None:
        raise RuntimeError("broadcast unavailable")

    sim = SimulationController(store, TrafficGenerator(), on_tick=boom)
    sim.tick()

    assert store.stats().traffic_points == 8


def test_step_only_advances_while_paused(store: StateStore) -> None:
    sim = SimulationController(store, TrafficGenerator())

    sim.step()
    assert sim.ticks == 0

    sim.pause()
    sim.step()
    assert sim.ticks == 1


def test_background_loop_ticks_and_stops() -> None:
    store = StateStore()
    sim = SimulationController(store, TrafficGenerator(), tick_interval=0.05)

    sim.start()
    try:
        assert _wait_for(lambda: sim.ticks >= 2)
    finally:
        sim.stop()

    assert not sim.running
    ticks = sim.ticks
    time.sleep(0.15)
    assert sim.ticks == ticks


def test_paused_loop_does_not_tick() -> None:
    store = StateStore()
    sim = SimulationController(store, TrafficGenerator(), tick_interval=0.02)
    sim.start()
    try:
        assert _wait_for(lambda: sim.ticks >= 1)
        sim.pause()
        time.sleep(0.05)
        paused_at = sim.ticks
        time.sleep(0.1)
        assert sim.ticks == paused_at
    finally:
        sim.stop()


def test_janitor_run_once_sweeps_and_notifies(store: StateStore, clock) -> None:
    notified: list[bool] = []
    store.create_user("ana", 14.0, -87.0)
    clock.advance(hours=2)

    Janitor(store, on_sweep=lambda: notified.append(True)).run_once()

    assert store.stats().users_online == 0
    assert notified == [True]


def test_janitor_thread_sweeps_periodically(store: StateStore, clock) -> None:
    store.create_user("ana", 14.0, -87.0)
    clock.advance(hours=2)
    janitor = Janitor(store, sweep_interval=0.02)

    janitor.start()
    try:
        assert _wait_for(lambda: store.stats().users_online == 0)
    finally:
        janitor.stop()
    assert not janitor.is_running


def test_janitor_stop_wakes_long_interval() -> None:
    janitor = Janitor(StateStore(), sweep_interval=3600)
    janitor.start()
    assert janitor.is_running

    started = time.monotonic()
    janitor.stop()

    assert time.monotonic() - started < 1.0
    assert not janitor.is_running
