"""
FMCSA Hours of Service (HOS) Compliance Service.

Interprets a driver's recorded duty-status log history against Federal Motor
Carrier Safety Administration regulations for property-carrying drivers.

FMCSA HOS Rules Evaluated:
==========================
1. 11-Hour Driving Limit: Max 11 hours driving in the trailing 14 hours
2. 14-Hour On-Duty Window: Max 14 hours on-duty in the trailing 14 hours
3. 60-Hour/7-Day and 70-Hour/8-Day Rules: Rolling on-duty cycle limits
4. 30-Minute Break: Required after 8 hours of cumulative driving
5. 34-Hour Restart: Off-duty period that restarts the cycle

Windows are measured in elapsed wall-clock time back from a reference
instant, never by calendar day. An entry belongs to a window when its start
time does, and then contributes its whole recorded duration.

References:
- https://www.fmcsa.dot.gov/regulations/hours-of-service
- 49 CFR 395.3
"""

import logging
import math
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone
from django.utils.dateparse import parse_datetime

logger = logging.getLogger(__name__)


# FMCSA HOS limits (property carrier)
DRIVE_TIME_LIMIT_HOURS = 11
SHIFT_TIME_LIMIT_HOURS = 14
DUTY_WINDOW_HOURS = 14
CYCLE_70_HOURS = 70
CYCLE_70_DAYS = 8
CYCLE_60_HOURS = 60
CYCLE_60_DAYS = 7
BREAK_REQUIRED_AFTER_DRIVING_MINUTES = 8 * 60
BREAK_DURATION_MINUTES = 30
RESTART_HOURS = 34


class HOSServiceError(Exception):
    """Base exception for HOS compliance errors."""
    pass


class MalformedLogError(HOSServiceError):
    """
    Raised when log input cannot be interpreted at all.

    Signals an integration bug upstream (bad timestamp, wrong types), not a
    user data problem, so it aborts the whole evaluation.
    """
    pass


class DutyStatus(Enum):
    """Driver duty status as recorded on the ELD."""
    OFF_DUTY = "off_duty"
    SLEEPER_BERTH = "sleeper_berth"
    DRIVING = "driving"
    ON_DUTY_NOT_DRIVING = "on_duty_not_driving"
    PERSONAL_CONVEYANCE = "personal_conveyance"
    YARD_MOVES = "yard_moves"

    @property
    def label(self) -> str:
        return self.value.replace('_', ' ').title()

    @classmethod
    def choices(cls) -> List[Tuple[str, str]]:
        return [(status.value, status.label) for status in cls]


ON_DUTY_STATUSES = frozenset({DutyStatus.DRIVING, DutyStatus.ON_DUTY_NOT_DRIVING})
REST_STATUSES = frozenset({DutyStatus.OFF_DUTY, DutyStatus.SLEEPER_BERTH})


class ViolationType(Enum):
    DRIVE_TIME_EXCEEDED = "drive_time_exceeded"
    SHIFT_TIME_EXCEEDED = "shift_time_exceeded"
    CYCLE_TIME_EXCEEDED = "cycle_time_exceeded"
    BREAK_REQUIRED = "break_required"


class Severity(Enum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class ClockStatus(Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


def parse_timestamp(value: Any, field_name: str = 'timestamp') -> datetime:
    """
    Coerce a datetime or ISO-8601 string into a timezone-aware datetime.

    Raises MalformedLogError for anything else, including naive datetimes.
    """
    if isinstance(value, str):
        try:
            parsed = parse_datetime(value.strip())
        except ValueError as e:
            raise MalformedLogError(f"Invalid {field_name}: {value!r} ({e})") from e
        if parsed is None:
            raise MalformedLogError(f"Unparsable {field_name}: {value!r}")
        value = parsed

    if not isinstance(value, datetime):
        raise MalformedLogError(
            f"{field_name} must be a datetime or ISO-8601 string, got {type(value).__name__}"
        )
    if timezone.is_naive(value):
        raise MalformedLogError(f"{field_name} must be timezone-aware: {value.isoformat()}")
    return value


def parse_duty_status(value: Any) -> DutyStatus:
    """Coerce a status value into a DutyStatus."""
    if isinstance(value, DutyStatus):
        return value
    try:
        return DutyStatus(value)
    except ValueError as e:
        raise MalformedLogError(f"Unknown duty status: {value!r}") from e


def _parse_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedLogError(f"{field_name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise MalformedLogError(f"{field_name} must be finite, got {value!r}")
    if value < 0:
        raise MalformedLogError(f"{field_name} cannot be negative: {value}")
    return value


@dataclass(frozen=True)
class Location:
    """Where a duty-status change was recorded."""
    city: str = ""
    state: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: str = ""

    @classmethod
    def from_value(cls, value: Any) -> Optional['Location']:
        if value is None or isinstance(value, Location):
            return value
        if isinstance(value, Mapping):
            return cls(
                city=value.get('city', ''),
                state=value.get('state', ''),
                latitude=value.get('latitude'),
                longitude=value.get('longitude'),
                address=value.get('address', ''),
            )
        if isinstance(value, str):
            return cls(address=value)
        raise MalformedLogError(f"Unsupported location value: {value!r}")

    def __str__(self) -> str:
        if self.city and self.state:
            return f"{self.city}, {self.state}"
        return self.address or self.city or self.state


@dataclass(frozen=True)
class LogEntry:
    """
    One contiguous period of a single duty status for a driver.

    `duration_minutes` is recorded by the caller and never derived from
    start/end times; an entry without it counts as zero minutes.
    """
    id: str
    driver_id: str
    vehicle_id: str
    duty_status: DutyStatus
    start_time: datetime
    odometer: float
    end_time: Optional[datetime] = None
    duration_minutes: Optional[float] = None
    location: Optional[Location] = None
    notes: str = ""

    def __post_init__(self):
        # Frozen, so normalised values go through object.__setattr__
        object.__setattr__(self, 'duty_status', parse_duty_status(self.duty_status))
        object.__setattr__(self, 'start_time', parse_timestamp(self.start_time, 'start_time'))
        if self.end_time is not None:
            object.__setattr__(self, 'end_time', parse_timestamp(self.end_time, 'end_time'))
        if self.duration_minutes is not None:
            _parse_number(self.duration_minutes, 'duration_minutes')
        _parse_number(self.odometer, 'odometer')
        object.__setattr__(self, 'location', Location.from_value(self.location))

    @classmethod
    def from_dict(cls, data: Mapping) -> 'LogEntry':
        """Build an entry from a payload mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {key: value for key, value in data.items() if key in known}
        kwargs.setdefault('id', str(uuid.uuid4()))
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise MalformedLogError(f"Incomplete log entry: {e}") from e

    @property
    def duration_hours(self) -> float:
        return (self.duration_minutes or 0) / 60


@dataclass(frozen=True)
class Violation:
    """A point-in-time HOS violation. The id is display-only."""
    id: str
    type: ViolationType
    description: str
    regulation_reference: str
    severity: Severity
    timestamp: datetime


@dataclass(frozen=True)
class HoursSummary:
    drive_remaining: float
    shift_remaining: float
    cycle_remaining: float
    break_required_in: int  # minutes


@dataclass(frozen=True)
class HOSClock:
    """Remaining time against one limit, as shown on the dashboard clocks."""
    label: str
    hours_remaining: float
    max_hours: float
    warning_threshold: float

    @property
    def status(self) -> ClockStatus:
        if self.hours_remaining <= 0:
            return ClockStatus.CRITICAL
        if self.hours_remaining <= self.warning_threshold:
            return ClockStatus.WARNING
        return ClockStatus.OK

    @property
    def percentage(self) -> float:
        return self.hours_remaining / self.max_hours * 100


@dataclass(frozen=True)
class ComplianceSummary:
    """Everything the compliance widget needs, evaluated at one instant."""
    timestamp: datetime
    cycle_type: int
    hours_summary: HoursSummary
    violations: List[Violation]
    hours_by_status: Dict[str, float]
    reset_eligible_at: Optional[datetime]
    break_warning_minutes: int = 60

    @property
    def is_compliant(self) -> bool:
        return len(self.violations) == 0

    @property
    def break_warning(self) -> bool:
        return self.hours_summary.break_required_in <= self.break_warning_minutes


def snapshot_logs(logs: Iterable) -> Tuple[LogEntry, ...]:
    """
    Owned, chronologically sorted copy of a caller's log sequence.

    Mappings are converted with LogEntry.from_dict. Anything that is not an
    iterable of entries raises MalformedLogError.
    """
    if logs is None or isinstance(logs, (str, bytes, Mapping)) or not isinstance(logs, Iterable):
        raise MalformedLogError(
            f"Log entries must be an iterable of entries, got {type(logs).__name__}"
        )

    entries = []
    for index, item in enumerate(logs):
        if isinstance(item, LogEntry):
            entries.append(item)
        elif isinstance(item, Mapping):
            try:
                entries.append(LogEntry.from_dict(item))
            except MalformedLogError as e:
                logger.warning(f"Rejecting log sequence, entry {index} is malformed: {e}")
                raise
        else:
            raise MalformedLogError(
                f"Log entry {index} must be a LogEntry or mapping, got {type(item).__name__}"
            )

    return tuple(sorted(entries, key=lambda entry: entry.start_time))


@dataclass(frozen=True)
class HOSConfig:
    """
    Configuration for HOS evaluation.

    Regulatory values default to the FMCSA constants above; the warning
    thresholds only drive display state. Overrides come from the
    HOS_CONFIG Django setting.
    """
    # Daily limits
    drive_limit_hours: float = DRIVE_TIME_LIMIT_HOURS
    shift_limit_hours: float = SHIFT_TIME_LIMIT_HOURS
    duty_window_hours: float = DUTY_WINDOW_HOURS

    # Cycle limits: cycle hours -> window days
    cycle_windows: Dict[int, int] = field(default_factory=lambda: {
        CYCLE_70_HOURS: CYCLE_70_DAYS,
        CYCLE_60_HOURS: CYCLE_60_DAYS,
    })

    # Break requirements
    break_after_driving_minutes: int = BREAK_REQUIRED_AFTER_DRIVING_MINUTES
    break_duration_minutes: int = BREAK_DURATION_MINUTES

    # Reset requirements
    restart_hours: float = RESTART_HOURS

    # Display thresholds
    break_warning_minutes: int = 60
    drive_warning_hours: float = 2.0
    shift_warning_hours: float = 2.0
    cycle_warning_hours: float = 10.0

    @classmethod
    def from_settings(cls) -> 'HOSConfig':
        overrides = dict(getattr(settings, 'HOS_CONFIG', None) or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ImproperlyConfigured(f"Unknown HOS_CONFIG keys: {', '.join(unknown)}")
        return cls(**overrides)


class ComplianceService:
    """
    Service for evaluating a driver's log history against FMCSA HOS rules.

    Every method is a pure function of its arguments: the log sequence is
    copied into a sorted snapshot on entry and the service keeps no state
    besides its frozen configuration.
    """

    def __init__(self, config: Optional[HOSConfig] = None):
        self.config = config or HOSConfig.from_settings()

    # ------------------------------------------------------------------
    # Time-window aggregation
    # ------------------------------------------------------------------

    def drive_time_remaining(self, logs: Iterable, now: Optional[datetime] = None) -> float:
        """Driving hours left under the 11-hour limit."""
        now = self._reference_time(now)
        minutes = self._windowed_minutes(
            snapshot_logs(logs), now,
            timedelta(hours=self.config.duty_window_hours),
            {DutyStatus.DRIVING},
        )
        remaining = self._remaining_hours(self.config.drive_limit_hours, minutes)
        logger.debug(f"Drive time: {minutes:.0f} min used, {remaining:.2f}h remaining")
        return remaining

    def shift_time_remaining(self, logs: Iterable, now: Optional[datetime] = None) -> float:
        """On-duty hours left in the 14-hour window."""
        now = self._reference_time(now)
        minutes = self._windowed_minutes(
            snapshot_logs(logs), now,
            timedelta(hours=self.config.duty_window_hours),
            ON_DUTY_STATUSES,
        )
        remaining = self._remaining_hours(self.config.shift_limit_hours, minutes)
        logger.debug(f"Shift time: {minutes:.0f} min used, {remaining:.2f}h remaining")
        return remaining

    def cycle_time_remaining(
        self,
        logs: Iterable,
        now: Optional[datetime] = None,
        cycle_type: int = CYCLE_70_HOURS
    ) -> float:
        """
        On-duty hours left in the 60/7 or 70/8 rolling cycle.

        Args:
            logs: Log entries for one driver
            now: Reference time (defaults to now)
            cycle_type: 70 for the 70-hour/8-day cycle, 60 for 60-hour/7-day

        Returns:
            Remaining hours, never negative
        """
        if cycle_type not in self.config.cycle_windows:
            raise HOSServiceError(
                f"Unsupported cycle type {cycle_type!r}; "
                f"expected one of {sorted(self.config.cycle_windows)}"
            )
        now = self._reference_time(now)
        minutes = self._windowed_minutes(
            snapshot_logs(logs), now,
            timedelta(days=self.config.cycle_windows[cycle_type]),
            ON_DUTY_STATUSES,
        )
        remaining = self._remaining_hours(cycle_type, minutes)
        logger.debug(
            f"Cycle {cycle_type}h: {minutes:.0f} min used, {remaining:.2f}h remaining"
        )
        return remaining

    def hours_by_status(self, logs: Iterable) -> Dict[DutyStatus, float]:
        """Total hours per duty status across the whole sequence."""
        hours = {status: 0.0 for status in DutyStatus}
        for entry in snapshot_logs(logs):
            hours[entry.duty_status] += entry.duration_hours
        return hours

    # ------------------------------------------------------------------
    # Break and reset
    # ------------------------------------------------------------------

    def break_due_minutes(self, logs: Iterable, now: Optional[datetime] = None) -> int:
        """
        Minutes of driving left before a 30-minute break becomes mandatory.

        A qualifying break is an off-duty or sleeper-berth entry of at least
        30 recorded minutes. Without one, the clock runs from the start of
        the first driving entry in wall-clock time.
        """
        now = self._reference_time(now)
        entries = snapshot_logs(logs)
        limit = self.config.break_after_driving_minutes

        last_break = next(
            (
                entry for entry in reversed(entries)
                if entry.duty_status in REST_STATUSES
                and (entry.duration_minutes or 0) >= self.config.break_duration_minutes
            ),
            None,
        )

        if last_break is None:
            first_driving = next(
                (entry for entry in entries if entry.duty_status == DutyStatus.DRIVING),
                None,
            )
            if first_driving is None:
                return limit
            elapsed = int((now - first_driving.start_time).total_seconds() / 60)
            return max(0, min(limit, limit - elapsed))

        driving_minutes = sum(
            entry.duration_minutes or 0
            for entry in entries
            if entry.duty_status == DutyStatus.DRIVING
            and entry.start_time > last_break.start_time
        )
        logger.debug(
            f"Last break at {last_break.start_time.isoformat()}, "
            f"{driving_minutes:.0f} min driven since"
        )
        return max(0, math.floor(limit - driving_minutes))

    def reset_eligibility(self, logs: Iterable, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        When the driver may take a 34-hour restart of the cycle.

        Uses the most recent off-duty/sleeper-berth entry without checking
        that the rest actually ran 34 consecutive hours.
        """
        now = self._reference_time(now)
        rest_entries = [
            entry for entry in snapshot_logs(logs)
            if entry.duty_status in REST_STATUSES
        ]
        if not rest_entries:
            return None

        latest = max(rest_entries, key=lambda entry: entry.start_time)
        eligible_at = latest.start_time + timedelta(hours=self.config.restart_hours)
        return eligible_at if eligible_at > now else now

    # ------------------------------------------------------------------
    # Violations and summaries
    # ------------------------------------------------------------------

    def check_violations(
        self,
        logs: Iterable,
        now: Optional[datetime] = None,
        cycle_type: int = CYCLE_70_HOURS
    ) -> List[Violation]:
        """
        Evaluate every HOS rule at `now`.

        Returns one Violation per failed rule in a fixed order; passing
        rules produce nothing.
        """
        now = self._reference_time(now)
        entries = snapshot_logs(logs)
        cycle_limit = f"{cycle_type}-hour/{self.config.cycle_windows.get(cycle_type, '?')}-day"

        checks = [
            (
                self.drive_time_remaining(entries, now) <= 0,
                ViolationType.DRIVE_TIME_EXCEEDED,
                f"{self.config.drive_limit_hours:g}-hour driving limit exceeded",
                '49 CFR 395.3(a)(1)',
                Severity.CRITICAL,
            ),
            (
                self.shift_time_remaining(entries, now) <= 0,
                ViolationType.SHIFT_TIME_EXCEEDED,
                f"{self.config.shift_limit_hours:g}-hour on-duty limit exceeded",
                '49 CFR 395.3(a)(2)',
                Severity.CRITICAL,
            ),
            (
                self.cycle_time_remaining(entries, now, cycle_type) <= 0,
                ViolationType.CYCLE_TIME_EXCEEDED,
                f"{cycle_limit} cycle limit exceeded",
                '49 CFR 395.3(b)',
                Severity.MAJOR,
            ),
            (
                self.break_due_minutes(entries, now) <= 0,
                ViolationType.BREAK_REQUIRED,
                f"{self.config.break_duration_minutes}-minute break required after "
                f"{self.config.break_after_driving_minutes // 60} hours of driving",
                '49 CFR 395.3(a)(3)(ii)',
                Severity.MAJOR,
            ),
        ]

        violations = [
            Violation(
                id=f"violation_{uuid.uuid4().hex}",
                type=violation_type,
                description=description,
                regulation_reference=reference,
                severity=severity,
                timestamp=now,
            )
            for failed, violation_type, description, reference, severity in checks
            if failed
        ]

        if violations:
            logger.info(
                f"{len(violations)} HOS violation(s) at {now.isoformat()}: "
                f"{', '.join(v.type.value for v in violations)}"
            )
        return violations

    def get_compliance_summary(
        self,
        logs: Iterable,
        now: Optional[datetime] = None,
        cycle_type: int = CYCLE_70_HOURS
    ) -> ComplianceSummary:
        """Evaluate all metrics from a single snapshot and reference time."""
        now = self._reference_time(now)
        entries = snapshot_logs(logs)

        hours_summary = HoursSummary(
            drive_remaining=self.drive_time_remaining(entries, now),
            shift_remaining=self.shift_time_remaining(entries, now),
            cycle_remaining=self.cycle_time_remaining(entries, now, cycle_type),
            break_required_in=self.break_due_minutes(entries, now),
        )
        summary = ComplianceSummary(
            timestamp=now,
            cycle_type=cycle_type,
            hours_summary=hours_summary,
            violations=self.check_violations(entries, now, cycle_type),
            hours_by_status={
                status.value: hours
                for status, hours in self.hours_by_status(entries).items()
            },
            reset_eligible_at=self.reset_eligibility(entries, now),
            break_warning_minutes=self.config.break_warning_minutes,
        )

        logger.info(
            f"Compliance summary over {len(entries)} entries: "
            f"drive {hours_summary.drive_remaining:.1f}h, "
            f"shift {hours_summary.shift_remaining:.1f}h, "
            f"cycle {hours_summary.cycle_remaining:.1f}h, "
            f"break in {hours_summary.break_required_in} min"
        )
        return summary

    def get_hos_clocks(
        self,
        logs: Iterable,
        now: Optional[datetime] = None,
        cycle_type: int = CYCLE_70_HOURS
    ) -> List[HOSClock]:
        """Drive, shift and cycle clocks for the dashboard."""
        now = self._reference_time(now)
        entries = snapshot_logs(logs)
        cycle_days = self.config.cycle_windows.get(cycle_type)

        return [
            HOSClock(
                label='Drive Time',
                hours_remaining=self.drive_time_remaining(entries, now),
                max_hours=self.config.drive_limit_hours,
                warning_threshold=self.config.drive_warning_hours,
            ),
            HOSClock(
                label='Shift Time',
                hours_remaining=self.shift_time_remaining(entries, now),
                max_hours=self.config.shift_limit_hours,
                warning_threshold=self.config.shift_warning_hours,
            ),
            HOSClock(
                label=f"Cycle ({cycle_type}h/{cycle_days}d)",
                hours_remaining=self.cycle_time_remaining(entries, now, cycle_type),
                max_hours=cycle_type,
                warning_threshold=self.config.cycle_warning_hours,
            ),
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reference_time(now: Optional[datetime]) -> datetime:
        if now is None:
            return timezone.now()
        return parse_timestamp(now, 'now')

    @staticmethod
    def _windowed_minutes(
        entries: Tuple[LogEntry, ...],
        now: datetime,
        window: timedelta,
        statuses
    ) -> float:
        # Membership is decided by start time alone; an entry exactly
        # `window` old is outside.
        return sum(
            entry.duration_minutes or 0
            for entry in entries
            if entry.duty_status in statuses and now - entry.start_time < window
        )

    @staticmethod
    def _remaining_hours(limit_hours: float, used_minutes: float) -> float:
        return max(0.0, (limit_hours * 60 - used_minutes) / 60)
