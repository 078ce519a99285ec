from __future__ import annotations

import re

from croniter import CroniterError, croniter

from .errors import InvalidSchedule

STANDARD_FIELD_COUNT = 5
DESCRIPTORS = frozenset({"@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"})
_EVERY_PREFIX = "@every "
_DURATION_PATTERN = re.compile(r"^(\d+(\.\d+)?(ns|us|µs|ms|s|m|h))+$")


def validate_schedule(expression: str) -> str:
    """Accept a five-field cronspec or a named descriptor.

    An empty expression means the relationship is only triggered manually.
    """
    stripped = expression.strip()
    if not stripped:
        return ""

    if stripped.startswith("@"):
        return _validate_descriptor(expression, stripped)

    fields = stripped.split()
    if len(fields) != STANDARD_FIELD_COUNT:
        raise InvalidSchedule(
            expression,
            f"expected {STANDARD_FIELD_COUNT} fields (minute hour day-of-month month day-of-week), found {len(fields)}",
        )
    normalized = " ".join(fields)
    try:
        croniter(normalized)
    except (CroniterError, ValueError, KeyError) as error:
        raise InvalidSchedule(expression, str(error) or error.__class__.__name__) from error
    return normalized


def _validate_descriptor(expression: str, stripped: str) -> str:
    if stripped.startswith(_EVERY_PREFIX):
        duration = stripped[len(_EVERY_PREFIX):].strip()
        if not _DURATION_PATTERN.match(duration):
            raise InvalidSchedule(expression, f"unparseable duration '{duration}'")
        return f"{_EVERY_PREFIX}{duration}"

    if stripped not in DESCRIPTORS:
        raise InvalidSchedule(expression, f"unrecognized descriptor '{stripped}'")
    try:
        croniter(stripped)
    except (CroniterError, ValueError, KeyError) as error:
        raise InvalidSchedule(expression, str(error) or error.__class__.__name__) from error
    return stripped
