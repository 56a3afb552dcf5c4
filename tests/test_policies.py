# tests/test_policies.py
import pytest

from dte.domain.errors import ValidationError
from dte.domain.models import CancellationPolicy, RetryStrategy, SpawnOptions, WorkerOptions
from dte.storage.sqlite_backend import retry_delay_seconds


def test_retry_strategy_constructors():
    assert RetryStrategy.none().kind == "none"

    fixed = RetryStrategy.fixed(30)
    assert (fixed.kind, fixed.base_seconds) == ("fixed", 30)

    linear = RetryStrategy.linear()
    assert (linear.base_seconds, linear.max_seconds) == (10, 300)

    exp = RetryStrategy.exponential()
    assert (exp.base_seconds, exp.factor, exp.max_seconds) == (10, 2.0, 300)


@pytest.mark.parametrize(
    "build",
    [
        lambda: RetryStrategy.fixed(0),
        lambda: RetryStrategy.linear(base_seconds=-1),
        lambda: RetryStrategy.exponential(factor=1.0),
        lambda: RetryStrategy(kind="fixed"),
        lambda: CancellationPolicy(max_duration=0),
        lambda: CancellationPolicy(max_delay=-5),
    ],
)
def test_invalid_policies_raise_validation_error(build):
    with pytest.raises(ValidationError):
        build()


def test_policies_are_immutable():
    strategy = RetryStrategy.fixed(5)
    with pytest.raises(Exception):
        strategy.base_seconds = 10  # type: ignore[misc]


def test_spawn_options_with_keeps_unset_fields():
    base = SpawnOptions(max_attempts=3, idempotency_key="k1")
    updated = base.with_(headers={"trace": "abc"}, max_attempts=None)

    assert updated.max_attempts == 3
    assert updated.idempotency_key == "k1"
    assert updated.headers == {"trace": "abc"}
    assert base.headers is None


def test_worker_options_validation():
    with pytest.raises(ValidationError):
        WorkerOptions(poll_interval=0)
    assert ":" in WorkerOptions().worker_id


def test_retry_delays():
    assert retry_delay_seconds(None, 3) == 0
    assert retry_delay_seconds(RetryStrategy.none(), 3) == 0
    assert retry_delay_seconds(RetryStrategy.fixed(7), 4) == 7
    assert retry_delay_seconds(RetryStrategy.linear(10, 300), 3) == 30
    assert retry_delay_seconds(RetryStrategy.exponential(10, 2.0, 300), 1) == 10
    assert retry_delay_seconds(RetryStrategy.exponential(10, 2.0, 300), 3) == 40
    # capped
    assert retry_delay_seconds(RetryStrategy.exponential(10, 2.0, 300), 10) == 300
