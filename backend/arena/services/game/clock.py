import logging
from typing import Callable, Optional

from arena import socketio
from arena.errors import GameError

logger = logging.getLogger(__name__)


class Clock:
    """Per-competition countdown that calls ``on_tick`` once per interval.

    - No-ops in TESTING mode unless ENABLE_CLOCK_IN_TESTS is set; tests
      drive ``GameStateMachine.tick`` by hand
    - Starting again cancels the running countdown
    - ``stop`` is idempotent
    """

    def __init__(self, app, owner, interval: Optional[float] = None):
        self._app = app
        self.owner = owner
        self.interval = float(interval if interval is not None else app.config.get('TICK_INTERVAL_SEC', 1.0))
        self._generation = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, seconds: int, on_tick: Callable[[], object]) -> None:
        self.stop()
        self._generation += 1
        self._running = True
        generation = self._generation
        logger.info(f"[clock-start] competition={self.owner} seconds={seconds} interval={self.interval}")

        if self._app.config.get('TESTING') and not self._app.config.get('ENABLE_CLOCK_IN_TESTS'):
            return
        socketio.start_background_task(self._run, generation, int(seconds), on_tick)

    def stop(self) -> None:
        if not self._running:
            return
        self._generation += 1
        self._running = False
        logger.info(f"[clock-stop] competition={self.owner}")

    def _run(self, generation: int, seconds: int, on_tick: Callable[[], object]) -> None:
        for _ in range(seconds):
            socketio.sleep(self.interval)
            if generation != self._generation:
                logger.info(f"[clock-abort] competition={self.owner} generation={generation}")
                return
            with self._app.app_context():
                try:
                    on_tick()
                except GameError as exc:
                    logger.error(f"[clock-tick-failed] competition={self.owner} error={exc.code}", exc_info=True)
                    if generation == self._generation:
                        self._running = False
                    return
        if generation == self._generation:
            self._running = False
