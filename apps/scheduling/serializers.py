from rest_framework import serializers

from .lifecycle import BookingRequest, ServiceLine
from .models import Appointment, AppointmentItem, AppointmentStatus
from .recurrence import RecurrenceRule, RecurrenceType


class AppointmentItemSerializer(serializers.ModelSerializer):
    service_name = serializers.CharField(source="service.name", read_only=True)

    class Meta:
        model = AppointmentItem
        fields = (
            "service_id",
            "service_name",
            "position",
            "quantity",
            "unit_price",
            "unit_duration",
        )


class AppointmentSerializer(serializers.ModelSerializer):
    client_name = serializers.CharField(source="client.name", read_only=True)
    professional_name = serializers.CharField(source="professional.display_name", read_only=True)
    items = AppointmentItemSerializer(many=True, read_only=True)

    class Meta:
        model = Appointment
        fields = (
            "id",
            "client_id",
            "client_name",
            "professional_id",
            "professional_name",
            "start_time",
            "end_time",
            "total_duration",
            "total_price",
            "status",
            "notes",
            "recurrence_group_id",
            "recurrence_index",
            "items",
            "confirmed_at",
            "checked_in_at",
            "started_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "cancelled_by_client",
            "rescheduled_at",
            "reschedule_reason",
            "no_show_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class ServiceLineSerializer(serializers.Serializer):
    service_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)


class RecurrenceSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=RecurrenceType.choices)
    interval = serializers.IntegerField(min_value=1, default=1)
    count = serializers.IntegerField(min_value=1, required=False)
    end_date = serializers.DateField(required=False)

    @staticmethod
    def to_rule(data) -> RecurrenceRule:
        return RecurrenceRule(
            type=RecurrenceType(data["type"]),
            interval=data["interval"],
            count=data.get("count"),
            end_date=data.get("end_date"),
        )


class AppointmentCreateSerializer(serializers.Serializer):
    client_id = serializers.IntegerField(min_value=1)
    professional_id = serializers.IntegerField(min_value=1)
    start_time = serializers.DateTimeField()
    services = ServiceLineSerializer(many=True, allow_empty=False)
    notes = serializers.CharField(allow_blank=True, required=False, default="")
    recurrence = RecurrenceSerializer(required=False)
    skip_conflict_check = serializers.BooleanField(default=False)
    override = serializers.BooleanField(default=False)

    def to_booking(self) -> BookingRequest:
        data = self.validated_data
        recurrence = data.get("recurrence")
        return BookingRequest(
            client_id=data["client_id"],
            professional_id=data["professional_id"],
            start_time=data["start_time"],
            services=[
                ServiceLine(
                    service_id=line["service_id"],
                    quantity=line["quantity"],
                    unit_price=line.get("unit_price"),
                )
                for line in data["services"]
            ],
            notes=data["notes"],
            recurrence=RecurrenceSerializer.to_rule(recurrence) if recurrence else None,
            skip_conflict_check=data["skip_conflict_check"],
            override=data["override"],
        )


class AppointmentUpdateSerializer(serializers.Serializer):
    notes = serializers.CharField(allow_blank=True, required=False)
    status = serializers.ChoiceField(choices=AppointmentStatus.choices, required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Nothing to update")
        return attrs


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=True, required=False, default="")
    cancelled_by_client = serializers.BooleanField(default=False)


class RescheduleSerializer(serializers.Serializer):
    start_time = serializers.DateTimeField()
    professional_id = serializers.IntegerField(min_value=1, required=False)
    reason = serializers.CharField(allow_blank=True, required=False, default="")
    skip_conflict_check = serializers.BooleanField(default=False)
    override = serializers.BooleanField(default=False)


class ConflictCheckSerializer(serializers.Serializer):
    professional_id = serializers.IntegerField(min_value=1)
    client_id = serializers.IntegerField(min_value=1, required=False)
    start_time = serializers.DateTimeField()
    duration = serializers.IntegerField(min_value=0)
    exclude_appointment_id = serializers.IntegerField(min_value=1, required=False)


class SlotSearchSerializer(serializers.Serializer):
    professional_id = serializers.IntegerField(min_value=1)
    date = serializers.DateField()
    service_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False, default=list)


class AvailabilityRangeSerializer(serializers.Serializer):
    professional_id = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    service_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False, default=list)
    include_slots = serializers.BooleanField(default=False)

    def validate(self, attrs):
        if attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError({"end_date": "end_date must not be before start_date"})
        return attrs


class ProfessionalsAvailabilitySerializer(serializers.Serializer):
    professional_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)
    date = serializers.DateField()
    service_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), required=False, default=list)


class StatusCountsSerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        start, end = attrs.get("start"), attrs.get("end")
        if start and end and end <= start:
            raise serializers.ValidationError({"end": "end must be after start"})
        return attrs
