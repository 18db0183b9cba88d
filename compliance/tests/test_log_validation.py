"""
Tests for Log-Entry Validation.
"""

import pytest
from datetime import datetime, timedelta, timezone

from compliance.services.hos_service import DutyStatus, LogEntry, MalformedLogError
from compliance.services.log_validation import (
    validate_log_entry,
    OVERLAP_ERROR,
    ODOMETER_DECREASE_ERROR,
)


NOW = datetime(2024, 1, 15, 18, 0, 0, tzinfo=timezone.utc)


def existing_entry(status, start, end=None, odometer=0, minutes=None):
    return LogEntry(
        id=f"existing-{start.isoformat()}",
        driver_id='D1',
        vehicle_id='V1',
        duty_status=status,
        start_time=start,
        end_time=end,
        duration_minutes=minutes,
        odometer=odometer,
        location={'city': 'Memphis', 'state': 'TN'},
    )


class TestValidateLogEntry:
    """Test candidate entries against an existing sequence."""

    def setup_method(self):
        self.candidate = {
            'driver_id': 'D1',
            'vehicle_id': 'V1',
            'duty_status': 'driving',
            'start_time': NOW - timedelta(hours=1),
            'location': {'city': 'Nashville', 'state': 'TN'},
            'odometer': 1200,
        }
        self.existing = [
            existing_entry(DutyStatus.OFF_DUTY, NOW - timedelta(hours=12), NOW - timedelta(hours=4), odometer=1000),
            existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=4), NOW - timedelta(hours=2), odometer=1000),
        ]

    def test_valid_entry(self):
        result = validate_log_entry(self.candidate, self.existing, NOW)

        assert result.valid is True
        assert result.errors == []

    def test_valid_entry_with_no_history(self):
        result = validate_log_entry(self.candidate, [], NOW)

        assert result.valid is True

    def test_missing_required_fields_all_reported(self):
        result = validate_log_entry({}, self.existing, NOW)

        assert result.valid is False
        assert result.errors == [
            'Driver ID is required',
            'Vehicle ID is required',
            'Duty status is required',
            'Start time is required',
            'Location is required',
            'Odometer reading is required',
        ]

    def test_blank_strings_count_as_missing(self):
        candidate = {**self.candidate, 'driver_id': '  ', 'location': ''}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.errors == ['Driver ID is required', 'Location is required']

    def test_zero_odometer_is_present(self):
        candidate = {**self.candidate, 'duty_status': 'on_duty_not_driving', 'odometer': 0}

        result = validate_log_entry(candidate, [], NOW)

        assert result.valid is True

    def test_overlap_with_existing_entry(self):
        candidate = {**self.candidate, 'start_time': NOW - timedelta(hours=3)}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.valid is False
        assert result.errors == [OVERLAP_ERROR]

    def test_start_at_existing_start_overlaps(self):
        candidate = {**self.candidate, 'start_time': NOW - timedelta(hours=4)}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert OVERLAP_ERROR in result.errors

    def test_start_at_existing_end_does_not_overlap(self):
        candidate = {**self.candidate, 'start_time': NOW - timedelta(hours=2)}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.valid is True

    def test_open_ended_entry_runs_until_now(self):
        existing = [existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=1), odometer=1000)]

        inside = validate_log_entry(
            {**self.candidate, 'start_time': NOW - timedelta(minutes=30)}, existing, NOW
        )
        after = validate_log_entry(
            {**self.candidate, 'start_time': NOW + timedelta(minutes=10)}, existing, NOW
        )

        assert inside.errors == [OVERLAP_ERROR]
        assert after.valid is True

    def test_iso_string_start_time(self):
        candidate = {**self.candidate, 'start_time': '2024-01-15T15:00:00Z'}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.errors == [OVERLAP_ERROR]

    def test_odometer_cannot_decrease_while_driving(self):
        existing = [
            existing_entry(DutyStatus.ON_DUTY_NOT_DRIVING, NOW - timedelta(hours=4), NOW - timedelta(hours=3), odometer=150),
        ]
        candidate = {**self.candidate, 'start_time': NOW - timedelta(hours=2), 'odometer': 100}

        result = validate_log_entry(candidate, existing, NOW)

        assert result.valid is False
        assert result.errors == [ODOMETER_DECREASE_ERROR]

    def test_zero_odometer_after_higher_reading_while_driving(self):
        candidate = {**self.candidate, 'odometer': 0}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.errors == [ODOMETER_DECREASE_ERROR]

    def test_odometer_compared_with_latest_entry(self):
        existing = list(reversed(self.existing)) + [
            existing_entry(DutyStatus.OFF_DUTY, NOW - timedelta(days=3), NOW - timedelta(days=2), odometer=5000),
        ]

        result = validate_log_entry(self.candidate, existing, NOW)

        assert result.valid is True

    def test_lower_odometer_allowed_when_not_driving(self):
        candidate = {**self.candidate, 'duty_status': 'off_duty', 'odometer': 10}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.valid is True

    def test_overlap_and_odometer_both_reported(self):
        candidate = {**self.candidate, 'start_time': NOW - timedelta(hours=3), 'odometer': 50}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.errors == [OVERLAP_ERROR, ODOMETER_DECREASE_ERROR]

    def test_unknown_duty_status_reported(self):
        candidate = {**self.candidate, 'duty_status': 'napping'}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.valid is False
        assert result.errors == ["Duty status 'napping' is not recognized"]

    def test_log_entry_candidate(self):
        candidate = existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=1), odometer=1100)

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.valid is True

    def test_appending_valid_entries_keeps_sequence_valid(self):
        """A non-overlapping entry never makes later entries overlap."""
        first = existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=2), NOW - timedelta(hours=1), odometer=1100)
        assert validate_log_entry(first, self.existing, NOW).valid

        second = {**self.candidate, 'start_time': NOW - timedelta(minutes=30), 'odometer': 1150}
        result = validate_log_entry(second, self.existing + [first], NOW)

        assert result.valid is True

    def test_unparsable_start_time_raises(self):
        candidate = {**self.candidate, 'start_time': 'quarter past nine'}

        with pytest.raises(MalformedLogError):
            validate_log_entry(candidate, self.existing, NOW)

    def test_non_numeric_odometer_raises(self):
        candidate = {**self.candidate, 'odometer': '1,200 mi'}

        with pytest.raises(MalformedLogError):
            validate_log_entry(candidate, self.existing, NOW)

    def test_missing_existing_collection_raises(self):
        with pytest.raises(MalformedLogError):
            validate_log_entry(self.candidate, None, NOW)

    def test_non_finite_odometer_raises(self):
        for odometer in (float('nan'), float('inf')):
            candidate = {**self.candidate, 'odometer': odometer}

            with pytest.raises(MalformedLogError):
                validate_log_entry(candidate, self.existing, NOW)

    def test_backfilled_entry_compared_with_predecessor(self):
        """A backfilled reading only has to clear the entry just before it."""
        existing = [
            existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=10), NOW - timedelta(hours=9), odometer=100),
            existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=2), NOW - timedelta(hours=1), odometer=500),
        ]
        candidate = {**self.candidate, 'start_time': NOW - timedelta(hours=5), 'odometer': 300}

        result = validate_log_entry(candidate, existing, NOW)

        assert result.valid is True

    def test_backfilled_entry_below_predecessor_rejected(self):
        existing = [
            existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=10), NOW - timedelta(hours=9), odometer=100),
            existing_entry(DutyStatus.DRIVING, NOW - timedelta(hours=2), NOW - timedelta(hours=1), odometer=500),
        ]
        candidate = {**self.candidate, 'start_time': NOW - timedelta(hours=5), 'odometer': 50}

        result = validate_log_entry(candidate, existing, NOW)

        assert result.errors == [ODOMETER_DECREASE_ERROR]

    def test_entry_before_all_history_has_no_odometer_floor(self):
        candidate = {**self.candidate, 'start_time': NOW - timedelta(days=1), 'odometer': 10}

        result = validate_log_entry(candidate, self.existing, NOW)

        assert result.valid is True
