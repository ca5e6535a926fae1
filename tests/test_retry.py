from __future__ import annotations

import pytest

from msi_toolkit.errors import ResourceReleaseTimeout
from msi_toolkit.retry import wait_until


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_returns_immediately_when_condition_holds() -> None:
    clock = FakeClock()
    assert wait_until(lambda: True, clock=clock, sleep=clock.sleep) == 1
    assert clock.sleeps == []


def test_polls_until_condition_holds() -> None:
    clock = FakeClock()
    answers = iter([False, False, False, True])
    attempts = wait_until(lambda: next(answers), timeout=1.0, interval=0.05, clock=clock, sleep=clock.sleep)
    assert attempts == 4
    assert clock.sleeps == pytest.approx([0.05, 0.05, 0.05])


def test_times_out_without_overshooting() -> None:
    clock = FakeClock()
    with pytest.raises(ResourceReleaseTimeout) as excinfo:
        wait_until(lambda: False, timeout=1.0, interval=0.375, clock=clock, sleep=clock.sleep)
    assert clock.sleeps == [0.375, 0.375, 0.25]
    assert clock.now == 1.0
    assert excinfo.value.attempts == 4
    assert excinfo.value.elapsed == 1.0


def test_backoff_grows_delay() -> None:
    clock = FakeClock()
    answers = iter([False, False, False, True])
    wait_until(lambda: next(answers), timeout=10, interval=0.1, backoff=2.0, clock=clock, sleep=clock.sleep)
    assert clock.sleeps == pytest.approx([0.1, 0.2, 0.4])
