import threading
import logging
from typing import Callable, Optional

from generator import TrafficGenerator
from store import StateStore

logger = logging.getLogger("sim_controller")


class SimulationController:
    """
    Runs the traffic simulator on a background thread with support for:
    - Pause/Resume
    - Step-by-step execution (while paused)
    - Graceful stop
    """
    def __init__(
        self,
        store: StateStore,
        generator: TrafficGenerator,
        tick_interval: float = 30.0,
        on_tick: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.gen = generator
        self.tick_interval = tick_interval
        self.on_tick = on_tick

        # Control State
        self.running = False
        self.paused = False

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        # Stats
        self.ticks = 0

    def start(self):
        if self.running:
            return

        self.running = True
        self.paused = False
        self._stop_event.clear()

        self._thread = threading.Thread(target=self._loop, name="traffic-simulator", daemon=True)
        self._thread.start()
        logger.info("Simulation started (interval %.1fs, %d zones).", self.tick_interval, len(self.gen.zones))

    def stop(self):
        self.running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        logger.info("Simulation stopped.")

    def pause(self):
        self.paused = True
        logger.info("Simulation paused.")

    def resume(self):
        self.paused = False
        logger.info("Simulation resumed.")

    def step(self):
        """Advance one tick if paused."""
        if self.paused:
            self.tick()

    def tick(self):
        samples = self.gen.build_samples(self.store.now())
        self.store.upsert_traffic_samples(samples)
        self.ticks += 1

        if self.on_tick is not None:
            try:
                self.on_tick()
            except Exception as exc:
                logger.warning("Simulation tick callback failed: %s", exc)

    def _loop(self):
        while not self._stop_event.is_set():
            if not self.paused:
                self.tick()
            self._stop_event.wait(self.tick_interval)
