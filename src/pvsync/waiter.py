from __future__ import annotations

from typing import Any, Callable, TypeVar
import time

from .errors import WaitTimeout
from .observability import get_logger

T = TypeVar("T")

log = get_logger("waiter")


def wait_until(
    identifier: str,
    fetch: Callable[[], T],
    predicate: Callable[[T], bool],
    *,
    poll_interval: float,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Poll ``fetch`` until ``predicate`` accepts the fetched object.

    The first fetch happens immediately. Errors raised by ``fetch`` end the
    wait and propagate unchanged; only an unsatisfied predicate is retried.
    Raises ``WaitTimeout`` carrying the last fetched object once more than
    ``timeout`` seconds have elapsed.
    """
    if poll_interval <= 0:
        raise ValueError("poll_interval must be positive")
    if timeout < 0:
        raise ValueError("timeout must not be negative")

    started = clock()
    attempt = 0
    while True:
        attempt += 1
        current = fetch()
        if predicate(current):
            log.debug("wait condition satisfied", resource=identifier, attempts=attempt)
            return current

        elapsed = clock() - started
        if elapsed > timeout:
            raise WaitTimeout(identifier=identifier, timeout=timeout, last_state=current)
        log.debug("waiting for resource", resource=identifier, attempt=attempt, elapsed=round(elapsed, 1))
        sleep(poll_interval)


def status_present(obj: Any) -> bool:
    return isinstance(obj, dict) and isinstance(obj.get("status"), dict)


def rsync_destination_ready(obj: Any) -> bool:
    """The controller has published an address and the ssh key secret."""
    rsync = _status(obj).get("rsync") or {}
    return bool(rsync.get("address")) and bool(rsync.get("sshKeys"))


def manual_sync_complete(trigger: str) -> Callable[[Any], bool]:
    if not trigger:
        raise ValueError("manual trigger value must not be empty")

    def predicate(obj: Any) -> bool:
        return status_present(obj) and _status(obj).get("lastManualSync") == trigger

    return predicate


def _status(obj: Any) -> dict[str, Any]:
    if not isinstance(obj, dict):
        return {}
    status = obj.get("status")
    return status if isinstance(status, dict) else {}
