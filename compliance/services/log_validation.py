"""
Log-Entry Validation Service.

Checks a candidate duty-status entry against the driver's already accepted
log sequence before it is recorded:

1. Required fields are present (a zero odometer counts as present)
2. The entry does not start inside an existing entry
3. A driving entry does not roll the odometer back

Problems with the candidate's data are collected and returned so a form can
show all of them at once. Input that cannot be interpreted at all (an
unparsable timestamp, a non-numeric odometer) raises MalformedLogError.
"""

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from django.utils import timezone

from .hos_service import (
    DutyStatus,
    LogEntry,
    MalformedLogError,
    snapshot_logs,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


REQUIRED_FIELDS = [
    ('driver_id', 'Driver ID is required'),
    ('vehicle_id', 'Vehicle ID is required'),
    ('duty_status', 'Duty status is required'),
    ('start_time', 'Start time is required'),
    ('location', 'Location is required'),
]

OVERLAP_ERROR = 'Log entry overlaps with existing entry'
ODOMETER_MISSING_ERROR = 'Odometer reading is required'
ODOMETER_DECREASE_ERROR = 'Odometer reading cannot decrease'


@dataclass
class ValidationResult:
    """Outcome of validating one candidate entry."""
    valid: bool
    errors: List[str] = field(default_factory=list)


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, Mapping):
        return not value
    return value is None


def _previous_entry(existing, start_time: Optional[datetime]) -> Optional[LogEntry]:
    """Latest existing entry starting at or before `start_time`."""
    if start_time is None:
        return existing[-1]
    earlier = [log for log in existing if log.start_time <= start_time]
    return earlier[-1] if earlier else None


def validate_log_entry(
    entry,
    existing_logs: Iterable,
    now: Optional[datetime] = None
) -> ValidationResult:
    """
    Validate a candidate log entry against the driver's existing entries.

    Args:
        entry: Candidate as a (possibly partial) mapping or a LogEntry
        existing_logs: Entries already accepted for the driver
        now: End of any open-ended existing entry (defaults to now)

    Returns:
        ValidationResult with every error found, in check order
    """
    if isinstance(entry, LogEntry):
        entry = asdict(entry)
    elif not isinstance(entry, Mapping):
        raise MalformedLogError(
            f"Log entry must be a LogEntry or mapping, got {type(entry).__name__}"
        )

    now = timezone.now() if now is None else parse_timestamp(now, 'now')
    existing = snapshot_logs(existing_logs)
    errors: List[str] = []

    # 1. Required fields
    for field_name, message in REQUIRED_FIELDS:
        if _is_blank(entry.get(field_name)):
            errors.append(message)

    odometer = entry.get('odometer')
    if odometer is None:
        errors.append(ODOMETER_MISSING_ERROR)
    elif isinstance(odometer, bool) or not isinstance(odometer, (int, float)):
        raise MalformedLogError(f"odometer must be a number, got {odometer!r}")
    elif not math.isfinite(odometer):
        raise MalformedLogError(f"odometer must be finite, got {odometer!r}")

    duty_status = entry.get('duty_status')
    if not _is_blank(duty_status) and not isinstance(duty_status, DutyStatus):
        try:
            duty_status = DutyStatus(duty_status)
        except ValueError:
            errors.append(f"Duty status '{duty_status}' is not recognized")
            duty_status = None

    # 2. Overlap with existing entries
    start_time = None
    start_value = entry.get('start_time')
    if not _is_blank(start_value):
        start_time = parse_timestamp(start_value, 'start_time')
        overlapping = any(
            log.start_time <= start_time < (log.end_time or now)
            for log in existing
        )
        if overlapping:
            errors.append(OVERLAP_ERROR)

    # 3. Odometer must not decrease while driving
    if duty_status == DutyStatus.DRIVING and odometer is not None and existing:
        previous = _previous_entry(existing, start_time)
        if previous is not None and odometer < previous.odometer:
            errors.append(ODOMETER_DECREASE_ERROR)

    if errors:
        logger.info(
            f"Rejected log entry for driver {entry.get('driver_id')!r}: {'; '.join(errors)}"
        )
    return ValidationResult(valid=not errors, errors=errors)
