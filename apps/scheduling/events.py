"""
Domain events for appointment transitions.

Events are snapshotted when the transition happens but only dispatched once
the surrounding transaction commits (transaction.on_commit). A rolled-back
transition therefore never reaches a receiver.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from django.db import transaction
from django.dispatch import Signal
from django.utils import timezone

logger = logging.getLogger(__name__)

CREATED = "created"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"
RESCHEDULED = "rescheduled"
STATUS_CHANGED = "status_changed"

appointment_created = Signal()
appointment_confirmed = Signal()
appointment_cancelled = Signal()
appointment_completed = Signal()
appointment_rescheduled = Signal()
appointment_status_changed = Signal()

SIGNALS = {
    CREATED: appointment_created,
    CONFIRMED: appointment_confirmed,
    CANCELLED: appointment_cancelled,
    COMPLETED: appointment_completed,
    RESCHEDULED: appointment_rescheduled,
    STATUS_CHANGED: appointment_status_changed,
}


@dataclass(frozen=True)
class AppointmentEvent:
    name: str
    appointment: Dict[str, Any]
    actor_id: Optional[int]
    occurred_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def appointment_id(self):
        return self.appointment["id"]

    @property
    def tenant_id(self):
        return self.appointment["tenant_id"]


def snapshot(appointment) -> Dict[str, Any]:
    return {
        "id": appointment.pk,
        "tenant_id": appointment.tenant_id,
        "client_id": appointment.client_id,
        "professional_id": appointment.professional_id,
        "start_time": appointment.start_time.isoformat(),
        "end_time": appointment.end_time.isoformat(),
        "status": str(appointment.status),
        "total_duration": appointment.total_duration,
        "total_price": str(appointment.total_price),
        "recurrence_group_id": appointment.recurrence_group_id,
        "recurrence_index": appointment.recurrence_index,
        "items": [
            {
                "service_id": item.service_id,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "unit_duration": item.unit_duration,
            }
            for item in appointment.items.all()
        ],
    }


class EventPublisher:
    def __init__(self, clock=timezone.now):
        self.clock = clock

    def publish(self, name, appointment, actor=None, **metadata) -> AppointmentEvent:
        event = AppointmentEvent(
            name=name,
            appointment=snapshot(appointment),
            actor_id=getattr(actor, "pk", None),
            occurred_at=self.clock(),
            metadata=metadata,
        )
        transaction.on_commit(lambda: self.dispatch(event))
        return event

    @staticmethod
    def dispatch(event: AppointmentEvent) -> None:
        responses = SIGNALS[event.name].send_robust(sender=EventPublisher, event=event)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Appointment event receiver failed",
                    extra={
                        "event": event.name,
                        "appointment_id": event.appointment_id,
                        "receiver": getattr(receiver, "__qualname__", repr(receiver)),
                        "error": str(response),
                    },
                )
