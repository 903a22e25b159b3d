import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from ..exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Stops calling a failing dependency for `reset_timeout` seconds"""

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.state = CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.state == OPEN:
            if self._clock() - (self.last_failure_time or 0) >= self.reset_timeout:
                self.state = HALF_OPEN
                logger.info(f"Circuit {self.name} half-open, probing")
            else:
                raise CircuitOpenError(f"Circuit {self.name} is open")

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self):
        if self.state != CLOSED:
            logger.info(f"Circuit {self.name} closed")
        self.failure_count = 0
        self.state = CLOSED

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != OPEN:
                logger.warning(f"Circuit {self.name} opened after {self.failure_count} failures")
            self.state = OPEN

    def snapshot(self) -> dict:
        return {
            "state": self.state,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
        }
