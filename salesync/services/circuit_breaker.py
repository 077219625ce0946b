# salesync/services/circuit_breaker.py
"""
Per-key circuit breaker guarding calls to degraded marketplaces.

State lives behind CircuitBreakerStore. The default in-memory store is
process-local, so every instance of a multi-instance deployment trips on its
own; a shared store (for example a key-value cache with TTL) can be dropped
in without changing callers.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Optional

from salesync.core.config import get_settings
from salesync.core.enums import CircuitState

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_ms: int = 60000
    half_open_max_attempts: int = 3


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    last_failure_time: Optional[float] = None
    half_open_attempts: int = 0


class CircuitBreakerStore(ABC):
    """Storage interface for breaker state."""

    @abstractmethod
    def get(self, key: str) -> CircuitBreakerState:
        """State for key, or a fresh closed state when none is stored"""

    @abstractmethod
    def set(self, key: str, state: CircuitBreakerState) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryCircuitBreakerStore(CircuitBreakerStore):
    def __init__(self):
        self._states: Dict[str, CircuitBreakerState] = {}

    def get(self, key: str) -> CircuitBreakerState:
        return self._states.get(key) or CircuitBreakerState()

    def set(self, key: str, state: CircuitBreakerState) -> None:
        self._states[key] = state

    def delete(self, key: str) -> None:
        self._states.pop(key, None)


def polling_key(marketplace) -> str:
    return f"polling:{getattr(marketplace, 'value', marketplace)}"


class CircuitBreaker:
    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        store: Optional[CircuitBreakerStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.store = store or InMemoryCircuitBreakerStore()
        self.clock = clock

    def can_execute(self, key: str) -> bool:
        """
        Whether a call for key may go ahead.

        Closed: always. Open: no, until reset_timeout_ms has passed since the
        last failure; the first call after that moves to half-open and is
        allowed. Half-open: up to half_open_max_attempts calls in total.
        """
        state = self.store.get(key)

        if state.state == CircuitState.CLOSED:
            return True

        if state.state == CircuitState.OPEN:
            elapsed_ms = (self.clock() - (state.last_failure_time or 0.0)) * 1000
            if elapsed_ms >= self.config.reset_timeout_ms:
                state.state = CircuitState.HALF_OPEN
                state.failures = 0
                state.half_open_attempts = 1
                self.store.set(key, state)
                logger.info(f"Circuit breaker {key} half-open after {elapsed_ms:.0f}ms")
                return True
            return False

        if state.half_open_attempts < self.config.half_open_max_attempts:
            state.half_open_attempts += 1
            self.store.set(key, state)
            return True
        return False

    def record_success(self, key: str) -> None:
        state = self.store.get(key)
        if state.state != CircuitState.CLOSED:
            logger.info(f"Circuit breaker {key} closed")
        self.store.set(key, CircuitBreakerState())

    def record_failure(self, key: str) -> None:
        state = self.store.get(key)
        state.failures += 1
        state.last_failure_time = self.clock()

        if state.state == CircuitState.HALF_OPEN:
            state.state = CircuitState.OPEN
            state.half_open_attempts = 0
            logger.warning(f"Circuit breaker {key} re-opened after a half-open failure")
        elif state.state == CircuitState.CLOSED and state.failures >= self.config.failure_threshold:
            state.state = CircuitState.OPEN
            logger.warning(f"Circuit breaker {key} opened after {state.failures} consecutive failures")

        self.store.set(key, state)

    def get_state(self, key: str) -> CircuitBreakerState:
        return self.store.get(key)

    def reset(self, key: str) -> None:
        self.store.delete(key)


@lru_cache()
def get_circuit_breaker() -> CircuitBreaker:
    """Process-wide breaker configured from settings"""
    settings = get_settings()
    return CircuitBreaker(
        CircuitBreakerConfig(
            failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            reset_timeout_ms=settings.CIRCUIT_BREAKER_RESET_TIMEOUT_MS,
            half_open_max_attempts=settings.CIRCUIT_BREAKER_HALF_OPEN_MAX_ATTEMPTS,
        )
    )
