"""
Serializers for the HOS compliance engine.

Handles validation of log-entry form payloads and rendering of compliance
results for the dashboard.
"""

from rest_framework import serializers

from .services.hos_service import DutyStatus, LogEntry, Location
from .services.log_validation import validate_log_entry


class HoursField(serializers.FloatField):
    """Hours rendered with the one-decimal precision the dashboard shows."""

    def to_representation(self, value):
        return round(super().to_representation(value), 1)


class LocationSerializer(serializers.Serializer):
    city = serializers.CharField(required=False, allow_blank=True, default='')
    state = serializers.CharField(required=False, allow_blank=True, default='', max_length=2)
    latitude = serializers.FloatField(required=False, allow_null=True, min_value=-90, max_value=90)
    longitude = serializers.FloatField(required=False, allow_null=True, min_value=-180, max_value=180)
    address = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, data):
        """Require at least something to identify the place."""
        if not any(data.get(key) for key in ('city', 'state', 'address')) and (
            data.get('latitude') is None or data.get('longitude') is None
        ):
            raise serializers.ValidationError(
                'Location needs a city, state, address or coordinates.'
            )
        return data


class LogEntryInputSerializer(serializers.Serializer):
    """
    Input serializer for a new duty-status entry.

    Pass the driver's accepted entries as `existing_logs` in the context;
    the HOS log validator runs as object-level validation against them.
    An optional `now` in the context closes open-ended entries.
    """
    id = serializers.CharField(required=False, max_length=100)
    driver_id = serializers.CharField(max_length=100)
    vehicle_id = serializers.CharField(max_length=100)
    duty_status = serializers.ChoiceField(choices=DutyStatus.choices())
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField(required=False, allow_null=True)
    duration_minutes = serializers.FloatField(required=False, allow_null=True, min_value=0)
    odometer = serializers.FloatField(min_value=0)
    location = LocationSerializer()
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, data):
        """Check the entry against the driver's existing log sequence."""
        end_time = data.get('end_time')
        if end_time is not None and end_time < data['start_time']:
            raise serializers.ValidationError({
                'end_time': 'End time cannot be before start time.'
            })

        result = validate_log_entry(
            data,
            self.context.get('existing_logs', []),
            now=self.context.get('now'),
        )
        if not result.valid:
            raise serializers.ValidationError(result.errors)
        return data

    def to_log_entry(self) -> LogEntry:
        """Build the accepted LogEntry. Call after is_valid()."""
        data = dict(self.validated_data)
        data['location'] = Location.from_value(data['location'])
        return LogEntry.from_dict(data)


class ViolationSerializer(serializers.Serializer):
    id = serializers.CharField()
    type = serializers.CharField(source='type.value')
    description = serializers.CharField()
    regulation_reference = serializers.CharField()
    severity = serializers.CharField(source='severity.value')
    timestamp = serializers.DateTimeField()


class HoursSummarySerializer(serializers.Serializer):
    drive_remaining = HoursField()
    shift_remaining = HoursField()
    cycle_remaining = HoursField()
    break_required_in = serializers.IntegerField(help_text="Minutes until a 30-minute break is due")


class HOSClockSerializer(serializers.Serializer):
    label = serializers.CharField()
    hours_remaining = HoursField()
    max_hours = serializers.FloatField()
    status = serializers.CharField(source='status.value')
    percentage = HoursField()


class ComplianceSummarySerializer(serializers.Serializer):
    """
    Output serializer for the compliance widget.
    """
    timestamp = serializers.DateTimeField()
    cycle_type = serializers.IntegerField()
    is_compliant = serializers.BooleanField()
    break_warning = serializers.BooleanField()
    hours_summary = HoursSummarySerializer()
    violations = ViolationSerializer(many=True)
    hours_by_status = serializers.DictField(child=HoursField())
    reset_eligible_at = serializers.DateTimeField(allow_null=True)
