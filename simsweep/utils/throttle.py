"""Cooperative pause between runs.

Gives an operator a window to stop a long sweep between two runs. The pause
blocks the sweep (runs never overlap) and can be cut short with `cancel()` or
Ctrl+C without affecting the result log.
"""

import logging
import threading
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class Throttle:
    """Countdown delay announced through the status channel.

    Args:
        total_seconds: Length of the pause. Zero or less disables it.
        announce_at: Remaining-seconds marks at which a countdown line is
            emitted, e.g. [5, 4, 3, 2, 1].
        event: Event used both to wait and to cancel. A new one is created
            when not given.
    """

    def __init__(
        self,
        total_seconds: float = 10,
        announce_at: Iterable[float] = (5, 4, 3, 2, 1),
        event: Optional[threading.Event] = None,
    ):
        self.total_seconds = float(total_seconds)
        self.announce_at = sorted(
            (mark for mark in announce_at if 0 < mark < self.total_seconds),
            reverse=True,
        )
        self._event = event or threading.Event()

    @classmethod
    def from_config(cls, config: dict) -> Optional["Throttle"]:
        throttle_config = config.get("throttle")
        if not throttle_config:
            return None
        seconds = throttle_config.get("seconds", 10)
        if seconds <= 0:
            return None
        return cls(seconds, throttle_config.get("announce_at", (5, 4, 3, 2, 1)))

    def cancel(self) -> None:
        """Ends the current pause and skips later ones until `reset()`."""
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    def _wait(self, seconds: float) -> bool:
        """Waits, returning False if the pause was cancelled meanwhile."""
        if seconds > 0:
            self._event.wait(seconds)
        return not self._event.is_set()

    def pause(self) -> bool:
        """Blocks for the configured time while counting down.

        Returns:
            True if the full delay elapsed, False if it was cancelled or
            interrupted. Cancellation is silent.
        """
        if self.total_seconds <= 0:
            return True
        if self._event.is_set():
            return False

        try:
            logger.info(f"Next run will start in {self.total_seconds:g} seconds...")
            remaining = self.total_seconds
            for mark in self.announce_at:
                if not self._wait(remaining - mark):
                    return False
                remaining = mark
                logger.info(f"{mark:g}...")
            if not self._wait(remaining):
                return False
        except KeyboardInterrupt:
            return False

        logger.info("Starting next run...")
        return True
