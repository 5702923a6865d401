"""Bounded retry with backoff."""

import pytest

from atelier.platform.retry import backoff_delays, retry_with_backoff


class Flaky(Exception):
    pass


class Broken(Exception):
    pass


def _failing(errors, value="ok"):
    calls = []

    def func():
        calls.append(1)
        if errors:
            raise errors.pop(0)
        return value

    return func, calls


def test_backoff_delays_double_between_attempts():
    assert backoff_delays(3, 1.0) == [1.0, 2.0]
    assert backoff_delays(4, 0.5, multiplier=3.0) == [0.5, 1.5, 4.5]
    assert backoff_delays(1, 1.0) == []


def test_retries_until_success():
    slept = []
    func, calls = _failing([Flaky(), Flaky()])

    result = retry_with_backoff(
        func,
        is_retryable=lambda exc: isinstance(exc, Flaky),
        max_attempts=3,
        initial_delay=1.0,
        sleep=slept.append,
    )

    assert result == "ok"
    assert len(calls) == 3
    assert slept == [1.0, 2.0]


def test_unretryable_error_raises_immediately():
    slept = []
    func, calls = _failing([Broken()])

    with pytest.raises(Broken):
        retry_with_backoff(func, is_retryable=lambda exc: isinstance(exc, Flaky), max_attempts=3, sleep=slept.append)

    assert len(calls) == 1
    assert slept == []


def test_exhausted_attempts_reraise_last_error():
    slept = []
    last = Flaky("third")
    func, calls = _failing([Flaky("first"), Flaky("second"), last])

    with pytest.raises(Flaky) as excinfo:
        retry_with_backoff(
            func,
            is_retryable=lambda exc: isinstance(exc, Flaky),
            max_attempts=3,
            initial_delay=0.25,
            sleep=slept.append,
        )

    assert excinfo.value is last
    assert len(calls) == 3
    assert slept == [0.25, 0.5]


def test_attempts_default_to_settings(monkeypatch):
    from atelier.platform.config import settings

    monkeypatch.setattr(settings, "RETRY_MAX_ATTEMPTS", 2)
    func, calls = _failing([Flaky(), Flaky()])

    with pytest.raises(Flaky):
        retry_with_backoff(func, is_retryable=lambda exc: True, sleep=lambda _: None)

    assert len(calls) == 2
