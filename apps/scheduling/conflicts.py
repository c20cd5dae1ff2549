import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from django.db import models
from django.utils import timezone

from apps.users.models import ProfessionalSchedule, ProfessionalTimeBlock

from .models import INACTIVE_STATUSES, Appointment

logger = logging.getLogger(__name__)


class ConflictType(models.TextChoices):
    PROFESSIONAL_BUSY = "professional_busy", "Professional busy"
    CLIENT_BUSY = "client_busy", "Client busy"
    BLOCKED_TIME = "blocked_time", "Blocked time"
    OUTSIDE_WORKING_HOURS = "outside_working_hours", "Outside working hours"


class Severity(models.TextChoices):
    ERROR = "error", "Error"
    WARNING = "warning", "Warning"


# an override never admits a double-booked professional
NON_OVERRIDABLE = frozenset({ConflictType.PROFESSIONAL_BUSY})


@dataclass(frozen=True)
class Conflict:
    type: str
    start_time: datetime
    end_time: datetime
    description: str
    severity: str = Severity.ERROR
    appointment_id: Optional[int] = None

    def as_dict(self):
        return {
            "type": str(self.type),
            "appointment_id": self.appointment_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "description": self.description,
            "severity": str(self.severity),
        }


@dataclass(frozen=True)
class ConflictResult:
    conflicts: Tuple[Conflict, ...] = field(default_factory=tuple)

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)

    @property
    def can_override(self) -> bool:
        return not any(c.type in NON_OVERRIDABLE for c in self.conflicts)

    def as_dict(self):
        return {
            "has_conflict": self.has_conflict,
            "can_override": self.can_override,
            "conflicts": [c.as_dict() for c in self.conflicts],
        }


def overlapping(queryset, start_time, end_time):
    """Rows whose [start_time, end_time) intersects the given half-open interval."""
    return queryset.filter(start_time__lt=end_time, end_time__gt=start_time)


def time_blocks(tenant_id, professional_id):
    return ProfessionalTimeBlock.objects.filter(professional__tenant_id=tenant_id, professional_id=professional_id)


def active_schedules(tenant_id, professional_id):
    return ProfessionalSchedule.objects.filter(
        professional__tenant_id=tenant_id, professional_id=professional_id, is_active=True
    )


def _hhmm(moment):
    if timezone.is_aware(moment):
        moment = timezone.localtime(moment)
    return moment.strftime("%H:%M")


class ConflictChecker:
    """
    Read-only overlap checks for a prospective booking.

    Run it inside the same transaction as the write that depends on it; the
    lifecycle locks the professional row first so concurrent bookings for the
    same agenda are serialised.
    """

    def __init__(self, check_client=True, check_time_blocks=True, check_working_hours=True):
        self.check_client = check_client
        self.check_time_blocks = check_time_blocks
        self.check_working_hours = check_working_hours

    def check_conflicts(
        self,
        tenant_id,
        professional_id,
        client_id,
        start_time: datetime,
        duration: int,
        exclude_appointment_id=None,
    ) -> ConflictResult:
        if not duration or duration <= 0:
            return ConflictResult()

        end_time = start_time + timedelta(minutes=duration)
        active = (
            Appointment.objects.filter(tenant_id=tenant_id)
            .exclude(status__in=INACTIVE_STATUSES)
            .select_related("client", "professional__user")
        )
        if exclude_appointment_id is not None:
            active = active.exclude(pk=exclude_appointment_id)

        conflicts: List[Conflict] = []
        conflicts += self._professional_conflicts(active, professional_id, start_time, end_time)
        if client_id is not None and self.check_client:
            conflicts += self._client_conflicts(active, client_id, professional_id, start_time, end_time)
        if self.check_time_blocks:
            conflicts += self._blocked_time_conflicts(tenant_id, professional_id, start_time, end_time)
        if self.check_working_hours:
            outside = self._working_hours_conflict(tenant_id, professional_id, start_time, end_time)
            if outside is not None:
                conflicts.append(outside)

        result = ConflictResult(tuple(conflicts))
        if result.has_conflict:
            logger.info(
                "Conflicts detected for booking",
                extra={
                    "tenant_id": tenant_id,
                    "professional_id": professional_id,
                    "start_time": start_time.isoformat(),
                    "conflict_types": sorted({str(c.type) for c in conflicts}),
                },
            )
        return result

    def _professional_conflicts(self, active, professional_id, start_time, end_time):
        rows = overlapping(active.filter(professional_id=professional_id), start_time, end_time)
        return [
            Conflict(
                type=ConflictType.PROFESSIONAL_BUSY,
                appointment_id=apt.pk,
                start_time=apt.start_time,
                end_time=apt.end_time,
                description=(
                    f"Professional already booked with {apt.client.name} "
                    f"from {_hhmm(apt.start_time)} to {_hhmm(apt.end_time)}"
                ),
                severity=Severity.ERROR,
            )
            for apt in rows.order_by("start_time")
        ]

    def _client_conflicts(self, active, client_id, professional_id, start_time, end_time):
        # same-professional overlaps are already reported as PROFESSIONAL_BUSY
        rows = overlapping(
            active.filter(client_id=client_id).exclude(professional_id=professional_id),
            start_time,
            end_time,
        )
        return [
            Conflict(
                type=ConflictType.CLIENT_BUSY,
                appointment_id=apt.pk,
                start_time=apt.start_time,
                end_time=apt.end_time,
                description=(
                    f"Client already booked with {apt.professional.display_name} "
                    f"from {_hhmm(apt.start_time)} to {_hhmm(apt.end_time)}"
                ),
                severity=Severity.WARNING,
            )
            for apt in rows.order_by("start_time")
        ]

    def _blocked_time_conflicts(self, tenant_id, professional_id, start_time, end_time):
        blocks = overlapping(time_blocks(tenant_id, professional_id), start_time, end_time)
        return [
            Conflict(
                type=ConflictType.BLOCKED_TIME,
                start_time=block.start_time,
                end_time=block.end_time,
                description=block.reason or "Time blocked by the professional",
            )
            for block in blocks.order_by("start_time")
        ]

    def _working_hours_conflict(self, tenant_id, professional_id, start_time, end_time):
        schedules = active_schedules(tenant_id, professional_id)
        if not schedules.exists():
            return None

        local_start = timezone.localtime(start_time) if timezone.is_aware(start_time) else start_time
        local_end = timezone.localtime(end_time) if timezone.is_aware(end_time) else end_time
        schedule = schedules.filter(day_of_week=local_start.weekday()).first()
        if schedule is None:
            return Conflict(
                type=ConflictType.OUTSIDE_WORKING_HOURS,
                start_time=start_time,
                end_time=end_time,
                description="Professional does not work on this day",
            )

        def at(t):
            return datetime.combine(local_start.date(), t, tzinfo=local_start.tzinfo)

        if local_start < at(schedule.start_time) or local_end > at(schedule.end_time):
            return Conflict(
                type=ConflictType.OUTSIDE_WORKING_HOURS,
                start_time=start_time,
                end_time=end_time,
                description=(
                    f"Outside working hours ({schedule.start_time:%H:%M} - {schedule.end_time:%H:%M})"
                ),
            )

        if schedule.break_start and schedule.break_end:
            break_start, break_end = at(schedule.break_start), at(schedule.break_end)
            if local_start < break_end and local_end > break_start:
                return Conflict(
                    type=ConflictType.OUTSIDE_WORKING_HOURS,
                    start_time=break_start,
                    end_time=break_end,
                    description=(
                        f"Overlaps the professional's break "
                        f"({schedule.break_start:%H:%M} - {schedule.break_end:%H:%M})"
                    ),
                )
        return None
