import logging

from django.dispatch import receiver

from .events import (
    appointment_cancelled,
    appointment_completed,
    appointment_confirmed,
    appointment_created,
    appointment_rescheduled,
    appointment_status_changed,
)

logger = logging.getLogger(__name__)


@receiver(appointment_created)
def log_created(sender, event, **kwargs):
    logger.info(
        "Appointment created",
        extra={
            "appointment_id": event.appointment_id,
            "tenant_id": event.tenant_id,
            "recurrence_group_id": event.metadata.get("recurrence_group_id"),
        },
    )


@receiver(appointment_confirmed)
def log_confirmed(sender, event, **kwargs):
    logger.info("Appointment confirmed", extra={"appointment_id": event.appointment_id, "actor_id": event.actor_id})


@receiver(appointment_cancelled)
def log_cancelled(sender, event, **kwargs):
    logger.info(
        "Appointment cancelled",
        extra={
            "appointment_id": event.appointment_id,
            "reason": event.metadata.get("reason"),
            "cancelled_by_client": event.metadata.get("cancelled_by_client"),
            "hours_before_scheduled": event.metadata.get("hours_before_scheduled"),
        },
    )


@receiver(appointment_completed)
def log_completed(sender, event, **kwargs):
    logger.info("Appointment completed", extra={"appointment_id": event.appointment_id})


@receiver(appointment_rescheduled)
def log_rescheduled(sender, event, **kwargs):
    logger.info(
        "Appointment rescheduled",
        extra={
            "appointment_id": event.appointment_id,
            "previous_start_time": event.metadata.get("previous_start_time"),
            "start_time": event.appointment["start_time"],
        },
    )


@receiver(appointment_status_changed)
def log_status_changed(sender, event, **kwargs):
    logger.debug(
        "Appointment status changed",
        extra={
            "appointment_id": event.appointment_id,
            "previous_status": event.metadata.get("previous_status"),
            "new_status": event.metadata.get("new_status"),
        },
    )
