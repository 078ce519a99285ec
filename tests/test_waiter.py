from __future__ import annotations

from unittest.mock import Mock

import pytest

from pvsync.errors import WaitTimeout
from pvsync.waiter import manual_sync_complete, rsync_destination_ready, status_present, wait_until


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_wait_until_returns_object_from_second_cycle_without_third_poll() -> None:
    clock = FakeClock()
    not_ready = {"metadata": {"name": "rd"}}
    ready = {"metadata": {"name": "rd"}, "status": {}}
    fetch = Mock(side_effect=[not_ready, ready, AssertionError("polled a third time")])

    result = wait_until(
        "ReplicationDestination 'ns1/rd'",
        fetch,
        status_present,
        poll_interval=5,
        timeout=60,
        sleep=clock.sleep,
        clock=clock,
    )

    assert result is ready
    assert fetch.call_count == 2
    assert clock.sleeps == [5]


def test_wait_until_with_ready_object_returns_immediately() -> None:
    clock = FakeClock()
    ready = {"status": {}}

    assert wait_until("x", lambda: ready, status_present, poll_interval=5, timeout=0, sleep=clock.sleep, clock=clock) is ready
    assert clock.sleeps == []


def test_wait_until_never_ready_times_out_only_after_bound_is_exceeded() -> None:
    clock = FakeClock()
    observed: list[float] = []

    def fetch() -> dict[str, object]:
        observed.append(clock.now)
        return {"metadata": {"name": "rs"}}

    with pytest.raises(WaitTimeout) as excinfo:
        wait_until("ReplicationSource 'ns1/rs'", fetch, status_present, poll_interval=5, timeout=10, sleep=clock.sleep, clock=clock)

    assert observed == [0, 5, 10, 15]
    assert clock.now > 10
    assert excinfo.value.identifier == "ReplicationSource 'ns1/rs'"
    assert excinfo.value.last_state == {"metadata": {"name": "rs"}}
    assert "ReplicationSource 'ns1/rs'" in str(excinfo.value)


def test_wait_until_fetch_error_aborts_without_retry() -> None:
    clock = FakeClock()
    fetch = Mock(side_effect=[{"metadata": {}}, RuntimeError("api down")])

    with pytest.raises(RuntimeError, match="api down"):
        wait_until("x", fetch, status_present, poll_interval=1, timeout=60, sleep=clock.sleep, clock=clock)

    assert fetch.call_count == 2


def test_wait_until_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        wait_until("x", lambda: {}, status_present, poll_interval=0, timeout=1)


def test_status_present_treats_empty_status_as_present() -> None:
    assert status_present({"status": {}})
    assert not status_present({"metadata": {}})
    assert not status_present({"status": None})


def test_rsync_destination_ready_requires_address_and_keys() -> None:
    assert not rsync_destination_ready({"status": {}})
    assert not rsync_destination_ready({"status": {"rsync": {"address": "10.0.0.1"}}})
    assert not rsync_destination_ready({"status": {"rsync": {"sshKeys": "keys"}}})
    assert rsync_destination_ready({"status": {"rsync": {"address": "10.0.0.1", "sshKeys": "keys"}}})


def test_manual_sync_complete_matches_trigger_value() -> None:
    predicate = manual_sync_complete("2026-10-19T00:00:00Z")

    assert not predicate({"spec": {}})
    assert not predicate({"status": {"lastManualSync": "older"}})
    assert predicate({"status": {"lastManualSync": "2026-10-19T00:00:00Z"}})


def test_manual_sync_complete_requires_trigger() -> None:
    with pytest.raises(ValueError):
        manual_sync_complete("")
