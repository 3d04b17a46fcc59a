"""Exponential backoff with jitter for re-binding the hook socket."""

import random
import threading

from typing import Callable, Optional

from ..utils.constants import (
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY,
    RETRY_JITTER_FRACTION,
)


class ReconnectionBackoff:
    """Attempt counter producing capped, jittered delays."""

    def __init__(
        self,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS,
        jitter: float = RETRY_JITTER_FRACTION,
        rand: Callable[[float, float], float] = random.uniform,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.jitter = jitter
        self._rand = rand
        self._attempt = 0
        self._lock = threading.Lock()

    @property
    def current_attempt(self) -> int:
        with self._lock:
            return self._attempt

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._attempt >= self.max_attempts

    def next_delay(self) -> Optional[float]:
        """Delay before the next attempt, or None once attempts are used up."""
        with self._lock:
            if self._attempt >= self.max_attempts:
                return None
            delay = min(self.base_delay * (2 ** self._attempt), self.max_delay)
            self._attempt += 1
        return delay + self._rand(0, delay * self.jitter)

    def reset(self) -> None:
        with self._lock:
            self._attempt = 0
