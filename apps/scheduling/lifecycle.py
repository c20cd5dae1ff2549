"""
Appointment lifecycle: booking, status transitions and rescheduling.

Every operation runs in one explicit transaction. Booking and rescheduling
lock the professional row, then the client row, before checking for
conflicts, so the check and the write it guards cannot interleave with a
concurrent booking of the same agenda or the same client. Status changes
are conditional updates on the status read at the start of the operation.
Events and reminder bookkeeping are deferred to transaction.on_commit.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from django.db import transaction
from django.db.models import Count
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from apps.services.catalog import CatalogLookup
from apps.users.models import Client, Professional

from . import events
from .conflicts import ConflictChecker
from .exceptions import InvalidTransition, SchedulingConflict
from .models import Appointment, AppointmentItem, AppointmentStatus
from .recurrence import RecurrenceRule, RecurrenceType, generate_occurrences
from .reminders import ReminderScheduler
from .transitions import APPOINTMENT_STATE_MACHINE

logger = logging.getLogger(__name__)

# targets whose dedicated event is published alongside status_changed
_SPECIFIC_EVENTS = {
    AppointmentStatus.CONFIRMED: events.CONFIRMED,
    AppointmentStatus.COMPLETED: events.COMPLETED,
    AppointmentStatus.CANCELLED: events.CANCELLED,
}


@dataclass
class ServiceLine:
    service_id: int
    quantity: int = 1
    unit_price: Optional[Decimal] = None


@dataclass
class BookingRequest:
    client_id: int
    professional_id: int
    start_time: datetime
    services: List[ServiceLine] = field(default_factory=list)
    notes: str = ""
    recurrence: Optional[RecurrenceRule] = None
    skip_conflict_check: bool = False
    override: bool = False


class AppointmentLifecycle:
    def __init__(
        self,
        tenant,
        state_machine=APPOINTMENT_STATE_MACHINE,
        conflict_checker=None,
        catalog=None,
        reminders=None,
        publisher=None,
        clock=timezone.now,
    ):
        self.tenant = tenant
        self.state_machine = state_machine
        self.conflict_checker = conflict_checker or ConflictChecker()
        self.catalog = catalog or CatalogLookup()
        self.reminders = reminders or ReminderScheduler(clock=clock)
        self.publisher = publisher or events.EventPublisher(clock=clock)
        self.clock = clock

    # -- lookups ---------------------------------------------------------

    def queryset(self):
        return Appointment.objects.filter(tenant=self.tenant)

    def get(self, appointment_id) -> Appointment:
        appointment = self.queryset().filter(pk=appointment_id).first()
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        return appointment

    def series(self, appointment_id) -> List[Appointment]:
        """All appointments booked by the same recurring request, in order."""
        appointment = self.get(appointment_id)
        if not appointment.recurrence_group_id:
            return [appointment]
        return list(
            self.queryset()
            .filter(recurrence_group_id=appointment.recurrence_group_id)
            .order_by("recurrence_index")
        )

    def status_counts(self, start=None, end=None) -> Dict[str, int]:
        """Appointments per status, optionally limited to those starting in [start, end)."""
        appointments = self.queryset()
        if start is not None:
            appointments = appointments.filter(start_time__gte=start)
        if end is not None:
            appointments = appointments.filter(start_time__lt=end)
        counts = {str(value): 0 for value in AppointmentStatus.values}
        for row in appointments.order_by().values("status").annotate(total=Count("id")):
            counts[row["status"]] = row["total"]
        return counts

    def _lock_professional(self, professional_id) -> Professional:
        try:
            professional = Professional.objects.select_for_update().get(tenant=self.tenant, pk=professional_id)
        except Professional.DoesNotExist:
            raise NotFound(f"Professional {professional_id} not found")
        if not professional.is_available:
            raise ValidationError({"professional_id": "Professional is not taking bookings"})
        return professional

    def _lock_client(self, client_id, include_deleted=False) -> Client:
        clients = Client.objects.select_for_update().filter(tenant=self.tenant)
        if not include_deleted:
            clients = clients.filter(is_deleted=False)
        try:
            return clients.get(pk=client_id)
        except Client.DoesNotExist:
            raise NotFound(f"Client {client_id} not found")

    # -- booking ---------------------------------------------------------

    def _guard(self, result, override, start_time):
        if not result.has_conflict:
            return
        if override and result.can_override:
            logger.warning(
                "Booking conflict overridden",
                extra={
                    "tenant_id": self.tenant.pk,
                    "start_time": start_time.isoformat(),
                    "conflict_types": sorted({str(c.type) for c in result.conflicts}),
                },
            )
            return
        raise SchedulingConflict(result.conflicts, can_override=result.can_override, start_time=start_time)

    def _price_lines(self, lines):
        if not lines:
            raise ValidationError({"services": "At least one service is required"})
        if any(line.quantity < 1 for line in lines):
            raise ValidationError({"services": "Service quantity must be at least 1"})

        quotes = self.catalog.resolve(self.tenant, [line.service_id for line in lines])
        priced = []
        for position, line in enumerate(lines):
            quote = quotes[line.service_id]
            unit_price = line.unit_price if line.unit_price is not None else quote.unit_price
            priced.append((position, line, unit_price, quote.duration_minutes))

        total_duration = sum(line.quantity * duration for _, line, _, duration in priced)
        total_price = sum((line.quantity * price for _, line, price, _ in priced), Decimal("0"))
        if total_duration <= 0:
            raise ValidationError({"services": "Booked services must have a positive total duration"})
        return priced, total_duration, total_price

    def create(self, request: BookingRequest, actor=None) -> List[Appointment]:
        """
        Book a single appointment, or every occurrence of a recurring one.

        A recurring request is all-or-nothing: if any occurrence conflicts and
        the conflict cannot be overridden, nothing is persisted.
        """
        start = request.start_time
        # expand in local time so recurring slots keep their wall-clock hour
        local_start = timezone.localtime(start) if timezone.is_aware(start) else start
        series = generate_occurrences(local_start, request.recurrence or RecurrenceRule(RecurrenceType.NONE))
        recurring = series.group_id is not None

        created = []
        with transaction.atomic():
            priced, total_duration, total_price = self._price_lines(request.services)
            professional = self._lock_professional(request.professional_id)
            client = self._lock_client(request.client_id)

            for occurrence in series:
                if not request.skip_conflict_check:
                    result = self.conflict_checker.check_conflicts(
                        self.tenant.pk,
                        professional.pk,
                        client.pk,
                        occurrence.date,
                        total_duration,
                    )
                    self._guard(result, request.override, occurrence.date)

                appointment = Appointment.objects.create(
                    tenant=self.tenant,
                    client=client,
                    professional=professional,
                    start_time=occurrence.date,
                    end_time=occurrence.date + timedelta(minutes=total_duration),
                    total_duration=total_duration,
                    total_price=total_price,
                    status=self.state_machine.initial,
                    notes=request.notes,
                    recurrence_group_id=series.group_id,
                    recurrence_index=occurrence.index if recurring else None,
                    created_by=actor,
                )
                AppointmentItem.objects.bulk_create(
                    [
                        AppointmentItem(
                            appointment=appointment,
                            service_id=line.service_id,
                            position=position,
                            quantity=line.quantity,
                            unit_price=unit_price,
                            unit_duration=duration,
                        )
                        for position, line, unit_price, duration in priced
                    ]
                )
                self.publisher.publish(
                    events.CREATED,
                    appointment,
                    actor,
                    is_recurring=recurring,
                    recurrence_group_id=series.group_id,
                )
                created.append(appointment)

            ids = [a.pk for a in created]

            def schedule_reminders():
                for pk in ids:
                    self.reminders.schedule_reminders(pk)

            transaction.on_commit(schedule_reminders)

        logger.info(
            "Created appointments",
            extra={
                "tenant_id": self.tenant.pk,
                "client_id": client.pk,
                "professional_id": professional.pk,
                "count": len(created),
                "recurrence_group_id": series.group_id,
            },
        )
        return created

    # -- status transitions ----------------------------------------------

    @staticmethod
    def _audit_fields(target, actor, now):
        return {
            AppointmentStatus.CONFIRMED: {"confirmed_at": now, "confirmed_by": actor},
            AppointmentStatus.WAITING: {"checked_in_at": now},
            AppointmentStatus.IN_PROGRESS: {"started_at": now},
            AppointmentStatus.COMPLETED: {"completed_at": now, "completed_by": actor},
            AppointmentStatus.CANCELLED: {"cancelled_at": now, "cancelled_by": actor},
            AppointmentStatus.NO_SHOW: {"no_show_at": now},
        }.get(target, {})

    def _transition(self, appointment_id, target, actor=None, extra_fields=None, notes=None):
        now = self.clock()
        with transaction.atomic():
            appointment = self.get(appointment_id)
            current = appointment.status
            self.state_machine.validate(current, target)

            fields = {"status": target, "updated_at": now}
            fields.update(self._audit_fields(target, actor, now))
            fields.update(extra_fields or {})
            if notes is not None:
                fields["notes"] = notes

            updated = self.queryset().filter(pk=appointment.pk, status=current).update(**fields)
            if not updated:
                # someone else moved it since we read it
                latest = self.queryset().filter(pk=appointment.pk).values_list("status", flat=True).first()
                raise InvalidTransition(latest, target, expected=self.state_machine.sources_for(target))
            appointment.refresh_from_db()

            self.publisher.publish(
                events.STATUS_CHANGED,
                appointment,
                actor,
                previous_status=str(current),
                new_status=str(target),
            )
            specific = _SPECIFIC_EVENTS.get(target)
            if specific == events.CANCELLED:
                hours_before = (appointment.start_time - now).total_seconds() / 3600
                self.publisher.publish(
                    specific,
                    appointment,
                    actor,
                    reason=appointment.cancellation_reason,
                    cancelled_by_client=appointment.cancelled_by_client,
                    was_confirmed=current == AppointmentStatus.CONFIRMED,
                    hours_before_scheduled=round(max(0.0, hours_before), 2),
                )
            elif specific is not None:
                self.publisher.publish(specific, appointment, actor)

            if self.state_machine.is_terminal(target):
                pk = appointment.pk
                transaction.on_commit(lambda: self.reminders.cancel_reminders(pk))

        logger.info(
            "Appointment status changed",
            extra={
                "appointment_id": appointment.pk,
                "previous_status": str(current),
                "new_status": str(target),
            },
        )
        return appointment

    def confirm(self, appointment_id, actor=None) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.CONFIRMED, actor)

    def check_in(self, appointment_id, actor=None) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.WAITING, actor)

    def start_service(self, appointment_id, actor=None) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.IN_PROGRESS, actor)

    def complete(self, appointment_id, actor=None) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.COMPLETED, actor)

    def cancel(self, appointment_id, actor=None, reason="", cancelled_by_client=False) -> Appointment:
        return self._transition(
            appointment_id,
            AppointmentStatus.CANCELLED,
            actor,
            extra_fields={"cancellation_reason": reason or "", "cancelled_by_client": cancelled_by_client},
        )

    def mark_no_show(self, appointment_id, actor=None) -> Appointment:
        return self._transition(appointment_id, AppointmentStatus.NO_SHOW, actor)

    def update(self, appointment_id, actor=None, notes=None, status=None) -> Appointment:
        """Patch notes and, optionally, status. Status goes through the transition table."""
        if status is not None:
            return self._transition(appointment_id, status, actor, notes=notes)

        with transaction.atomic():
            appointment = self.get(appointment_id)
            if notes is not None:
                appointment.notes = notes
                appointment.save(update_fields=["notes", "updated_at"])
        return appointment

    # -- rescheduling ----------------------------------------------------

    def reschedule(
        self,
        appointment_id,
        new_start: datetime,
        actor=None,
        new_professional_id=None,
        reason="",
        skip_conflict_check=False,
        override=False,
    ) -> Appointment:
        """Move an appointment to a new start (and optionally professional); status is unchanged."""
        now = self.clock()
        movable = self.state_machine.states - self.state_machine.terminal_states
        with transaction.atomic():
            appointment = self.get(appointment_id)
            current = appointment.status
            if self.state_machine.is_terminal(current):
                raise InvalidTransition(current, expected=movable, operation="reschedule")

            professional = self._lock_professional(new_professional_id or appointment.professional_id)
            # same lock order as create; a soft-deleted client keeps their booked slots
            self._lock_client(appointment.client_id, include_deleted=True)
            if not skip_conflict_check:
                result = self.conflict_checker.check_conflicts(
                    self.tenant.pk,
                    professional.pk,
                    appointment.client_id,
                    new_start,
                    appointment.total_duration,
                    exclude_appointment_id=appointment.pk,
                )
                self._guard(result, override, new_start)

            previous_start = appointment.start_time
            previous_professional_id = appointment.professional_id
            updated = self.queryset().filter(pk=appointment.pk, status=current).update(
                start_time=new_start,
                end_time=new_start + timedelta(minutes=appointment.total_duration),
                professional=professional,
                rescheduled_at=now,
                rescheduled_by=actor,
                reschedule_reason=reason or "",
                updated_at=now,
            )
            if not updated:
                latest = self.queryset().filter(pk=appointment.pk).values_list("status", flat=True).first()
                raise InvalidTransition(latest, expected=movable, operation="reschedule")
            appointment.refresh_from_db()

            self.publisher.publish(
                events.RESCHEDULED,
                appointment,
                actor,
                previous_start_time=previous_start.isoformat(),
                previous_professional_id=(
                    previous_professional_id if previous_professional_id != professional.pk else None
                ),
                reason=reason or "",
            )
            pk = appointment.pk
            transaction.on_commit(lambda: self.reminders.reschedule_reminders(pk))

        logger.info(
            "Appointment rescheduled",
            extra={
                "appointment_id": appointment.pk,
                "previous_start_time": previous_start.isoformat(),
                "start_time": appointment.start_time.isoformat(),
            },
        )
        return appointment
