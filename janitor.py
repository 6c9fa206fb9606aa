import logging
import threading
from typing import Callable, Optional

from store import StateStore

logger = logging.getLogger("janitor")


class Janitor:
    """
    Periodically sweeps expired records out of the store.
    """

    def __init__(
        self,
        store: StateStore,
        sweep_interval: float = 3600.0,
        on_sweep: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.sweep_interval = sweep_interval
        self.on_sweep = on_sweep
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        logger.info("Starting janitor. Interval: %ss", self.sweep_interval)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="janitor", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None

    def run_once(self):
        self.store.sweep()
        if self.on_sweep is not None:
            try:
                self.on_sweep()
            except Exception as exc:
                logger.warning("Janitor sweep callback failed: %s", exc)

    def _run(self):
        # First sweep happens one interval after start.
        while not self._stop_event.wait(self.sweep_interval):
            self.run_once()
