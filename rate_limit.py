import logging
import math
import time
from typing import Callable

logger = logging.getLogger(__name__)


class Cooldown:
    """
    Process-wide window during which generative calls are skipped after a
    provider rate-limit. One instance per process, injected into the
    orchestrator. Reads and writes are unlocked; last write wins.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._until = 0.0

    def start(self, seconds: int) -> None:
        seconds = max(1, int(seconds))
        self._until = self._clock() + seconds
        logger.warning("Generative cooldown started for %ss", seconds)

    def remaining_seconds(self) -> int:
        left = self._until - self._clock()
        return max(0, math.ceil(left))

    def active(self) -> bool:
        return self._clock() < self._until
