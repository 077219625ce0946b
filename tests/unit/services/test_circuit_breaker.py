# tests/unit/services/test_circuit_breaker.py
import pytest

from salesync.core.enums import CircuitState
from salesync.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStore,
    InMemoryCircuitBreakerStore,
    polling_key,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms / 1000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    config = CircuitBreakerConfig(failure_threshold=3, reset_timeout_ms=60000, half_open_max_attempts=2)
    return CircuitBreaker(config, InMemoryCircuitBreakerStore(), clock=clock)


KEY = polling_key("mercari")


def test_polling_key_format():
    assert polling_key("mercari") == "polling:mercari"


def test_closed_breaker_allows_calls(breaker):
    assert breaker.can_execute(KEY) is True
    assert breaker.get_state(KEY).state == CircuitState.CLOSED


def test_opens_after_threshold_consecutive_failures(breaker):
    breaker.record_failure(KEY)
    breaker.record_failure(KEY)
    assert breaker.can_execute(KEY) is True

    breaker.record_failure(KEY)

    assert breaker.get_state(KEY).state == CircuitState.OPEN
    assert breaker.can_execute(KEY) is False


def test_success_resets_failure_count(breaker):
    breaker.record_failure(KEY)
    breaker.record_failure(KEY)
    breaker.record_success(KEY)
    breaker.record_failure(KEY)

    state = breaker.get_state(KEY)
    assert state.state == CircuitState.CLOSED
    assert state.failures == 1


def test_open_breaker_moves_to_half_open_after_timeout(breaker, clock):
    for _ in range(3):
        breaker.record_failure(KEY)

    clock.advance_ms(59999)
    assert breaker.can_execute(KEY) is False

    clock.advance_ms(1)
    assert breaker.can_execute(KEY) is True
    state = breaker.get_state(KEY)
    assert state.state == CircuitState.HALF_OPEN
    assert state.failures == 0
    assert state.half_open_attempts == 1


def test_half_open_limits_trial_calls(breaker, clock):
    for _ in range(3):
        breaker.record_failure(KEY)
    clock.advance_ms(60000)

    assert breaker.can_execute(KEY) is True   # transition, attempt 1
    assert breaker.can_execute(KEY) is True   # attempt 2
    assert breaker.can_execute(KEY) is False  # limit reached


def test_half_open_failure_reopens(breaker, clock):
    for _ in range(3):
        breaker.record_failure(KEY)
    clock.advance_ms(60000)
    breaker.can_execute(KEY)

    breaker.record_failure(KEY)

    assert breaker.get_state(KEY).state == CircuitState.OPEN
    assert breaker.can_execute(KEY) is False


def test_half_open_success_closes(breaker, clock):
    for _ in range(3):
        breaker.record_failure(KEY)
    clock.advance_ms(60000)
    breaker.can_execute(KEY)

    breaker.record_success(KEY)

    state = breaker.get_state(KEY)
    assert state.state == CircuitState.CLOSED
    assert state.failures == 0
    assert state.half_open_attempts == 0


def test_keys_are_independent(breaker):
    other = polling_key("depop")
    for _ in range(3):
        breaker.record_failure(KEY)

    assert breaker.can_execute(KEY) is False
    assert breaker.can_execute(other) is True


def test_reset_clears_state(breaker):
    for _ in range(3):
        breaker.record_failure(KEY)
    breaker.reset(KEY)
    assert breaker.can_execute(KEY) is True


def test_store_interface_cannot_be_instantiated():
    with pytest.raises(TypeError):
        CircuitBreakerStore()


def test_custom_store_is_used(clock):
    class RecordingStore(InMemoryCircuitBreakerStore):
        def __init__(self):
            super().__init__()
            self.writes = []

        def set(self, key, state):
            self.writes.append(key)
            super().set(key, state)

    store = RecordingStore()
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3), store=store, clock=clock)

    breaker.record_failure(KEY)

    assert KEY in store.writes
    assert breaker.get_state(KEY).failures == 1
