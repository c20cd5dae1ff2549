import json
import logging
from datetime import timedelta

import boto3
from django.conf import settings
from django.utils import timezone

from config.correlation import get_correlation_id

from .models import INACTIVE_STATUSES, Appointment, Reminder

logger = logging.getLogger(__name__)

# reminders that may still be published
RETRYABLE_STATUSES = (Reminder.Status.PENDING, Reminder.Status.FAILED)


class ReminderScheduler:
    """
    Keeps the pending Reminder rows of an appointment in line with its start
    time. Callers treat it as fire-and-forget: failures are logged, never
    raised back into the booking flow.
    """

    def __init__(self, offsets=None, clock=timezone.now):
        self.offsets = offsets if offsets is not None else settings.SCHEDULING["REMINDERS"]
        self.clock = clock

    def schedule_reminders(self, appointment_id):
        try:
            appointment = Appointment.objects.filter(pk=appointment_id).first()
            if appointment is None:
                logger.warning("Appointment not found for reminder scheduling", extra={"appointment_id": appointment_id})
                return []
            if appointment.status in INACTIVE_STATUSES:
                return []

            now = self.clock()
            reminders = []
            for offset in self.offsets:
                send_at = appointment.start_time - timedelta(hours=offset["hours_before"])
                if send_at <= now:
                    continue
                reminders.append(
                    Reminder(
                        appointment=appointment,
                        kind=offset["kind"],
                        channels=list(offset["channels"]),
                        send_at=send_at,
                    )
                )
            created = Reminder.objects.bulk_create(reminders)
            logger.debug(
                "Scheduled reminders",
                extra={"appointment_id": appointment_id, "count": len(created)},
            )
            return created
        except Exception:
            logger.exception("Failed to schedule reminders", extra={"appointment_id": appointment_id})
            return []

    def cancel_reminders(self, appointment_id):
        try:
            return Reminder.objects.filter(
                appointment_id=appointment_id, status__in=RETRYABLE_STATUSES
            ).update(status=Reminder.Status.CANCELLED)
        except Exception:
            logger.exception("Failed to cancel reminders", extra={"appointment_id": appointment_id})
            return 0

    def reschedule_reminders(self, appointment_id):
        self.cancel_reminders(appointment_id)
        return self.schedule_reminders(appointment_id)


class ReminderQueue:
    """Publishes due reminders to the SQS queue consumed by the send-reminder function."""

    def __init__(self, queue_url=None, client=None):
        self.queue_url = queue_url or settings.SCHEDULING["REMINDER_QUEUE_URL"]
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("sqs", region_name=settings.AWS_REGION)
        return self._client

    @staticmethod
    def message_for(reminder):
        appointment = reminder.appointment
        client = appointment.client
        return {
            "notification_id": f"rem_{reminder.pk}",
            "type": "appointment.reminder",
            "correlation_id": get_correlation_id(),
            "reminder_kind": reminder.kind,
            "channels": reminder.channels,
            "tenant_id": appointment.tenant_id,
            "appointment_id": appointment.pk,
            "client_id": client.pk,
            "email": client.email or None,
            "phone_e164": client.phone or None,
            "variables": {
                "client_name": client.name,
                "professional_name": appointment.professional.display_name,
                "start_time": appointment.start_time.isoformat(),
                "end_time": appointment.end_time.isoformat(),
            },
        }

    def publish(self, reminder) -> str:
        resp = self.client.send_message(
            QueueUrl=self.queue_url,
            MessageBody=json.dumps(self.message_for(reminder)),
            MessageAttributes={
                "type": {"DataType": "String", "StringValue": "appointment.reminder"},
            },
        )
        return resp["MessageId"]
