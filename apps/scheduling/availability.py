"""
Free-slot search over a professional's agenda.

Slots are cut from the published weekly schedule (split around the break),
stepped by the slot interval, and dropped when they fall outside the
bookable window or overlap an active appointment or a time block. A
professional with no schedule for the day offers no slots.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from django.conf import settings
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from apps.services.catalog import CatalogLookup
from apps.users.models import Professional

from .conflicts import ConflictChecker, active_schedules, overlapping, time_blocks
from .models import INACTIVE_STATUSES, Appointment

logger = logging.getLogger(__name__)

# used when no services are given
DEFAULT_DURATION_MINUTES = 30


@dataclass(frozen=True)
class TimeSlot:
    start_time: datetime
    end_time: datetime

    def as_dict(self):
        return {"start_time": self.start_time.isoformat(), "end_time": self.end_time.isoformat()}


@dataclass(frozen=True)
class DayAvailability:
    date: date
    slots: Tuple[TimeSlot, ...]

    @property
    def available(self) -> bool:
        return bool(self.slots)

    def as_dict(self, include_slots=False):
        data = {"date": self.date.isoformat(), "available": self.available, "total_slots": len(self.slots)}
        if include_slots:
            data["slots"] = [slot.as_dict() for slot in self.slots]
        return data


@dataclass(frozen=True)
class ProfessionalAvailability:
    professional_id: int
    professional_name: str
    date: date
    slots: Tuple[TimeSlot, ...]

    @property
    def available(self) -> bool:
        return bool(self.slots)

    def as_dict(self):
        return {
            "professional_id": self.professional_id,
            "professional_name": self.professional_name,
            "date": self.date.isoformat(),
            "available": self.available,
            "slots": [slot.as_dict() for slot in self.slots],
        }


class AvailabilityFinder:
    def __init__(
        self,
        tenant,
        catalog=None,
        clock=timezone.now,
        slot_interval: Optional[int] = None,
        min_advance: Optional[int] = None,
        max_advance: Optional[int] = None,
    ):
        config = settings.SCHEDULING
        self.tenant = tenant
        self.catalog = catalog or CatalogLookup()
        self.clock = clock
        self.slot_interval = slot_interval or config["SLOT_INTERVAL_MINUTES"]
        self.min_advance = min_advance if min_advance is not None else config["MIN_ADVANCE_BOOKING_MINUTES"]
        self.max_advance = max_advance if max_advance is not None else config["MAX_ADVANCE_BOOKING_MINUTES"]

    def services_duration(self, service_ids) -> int:
        """Total minutes of the given services; unknown or inactive ids raise NotFound."""
        if not service_ids:
            return DEFAULT_DURATION_MINUTES
        quotes = self.catalog.resolve(self.tenant, service_ids)
        return sum(quote.duration_minutes for quote in quotes.values())

    def _professional(self, professional_id) -> Professional:
        professional = (
            Professional.objects.select_related("user").filter(tenant=self.tenant, pk=professional_id).first()
        )
        if professional is None:
            raise NotFound(f"Professional {professional_id} not found")
        return professional

    def _working_periods(self, professional_id, day: date) -> List[Tuple[datetime, datetime]]:
        schedule = active_schedules(self.tenant.pk, professional_id).filter(day_of_week=day.weekday()).first()
        if schedule is None:
            return []

        def at(t):
            return timezone.make_aware(datetime.combine(day, t))

        start, end = at(schedule.start_time), at(schedule.end_time)
        if schedule.break_start and schedule.break_end:
            return [(start, at(schedule.break_start)), (at(schedule.break_end), end)]
        return [(start, end)]

    def _busy(self, professional_id, day_start, day_end):
        appointments = overlapping(
            Appointment.objects.filter(tenant=self.tenant, professional_id=professional_id).exclude(
                status__in=INACTIVE_STATUSES
            ),
            day_start,
            day_end,
        )
        blocks = overlapping(time_blocks(self.tenant.pk, professional_id), day_start, day_end)
        return [(row.start_time, row.end_time) for row in appointments] + [
            (row.start_time, row.end_time) for row in blocks
        ]

    def _slots(self, professional, day: date, duration: int) -> Tuple[TimeSlot, ...]:
        if not professional.is_available:
            return ()
        periods = self._working_periods(professional.pk, day)
        if not periods:
            return ()

        now = self.clock()
        earliest = now + timedelta(minutes=self.min_advance)
        latest = now + timedelta(minutes=self.max_advance)
        day_start = timezone.make_aware(datetime.combine(day, time.min))
        busy = self._busy(professional.pk, day_start, day_start + timedelta(days=1))

        length, step = timedelta(minutes=duration), timedelta(minutes=self.slot_interval)
        slots = []
        for period_start, period_end in periods:
            start = period_start
            while start + length <= period_end:
                end = start + length
                taken = any(start < busy_end and end > busy_start for busy_start, busy_end in busy)
                if earliest <= start <= latest and not taken:
                    slots.append(TimeSlot(start, end))
                start += step
        return tuple(slots)

    def available_slots(self, professional_id, day: date, service_ids=None, duration=None) -> Tuple[TimeSlot, ...]:
        professional = self._professional(professional_id)
        if duration is None:
            duration = self.services_duration(service_ids)
        slots = self._slots(professional, day, duration)
        logger.debug(
            "Computed available slots",
            extra={
                "tenant_id": self.tenant.pk,
                "professional_id": professional.pk,
                "date": day.isoformat(),
                "duration": duration,
                "slots": len(slots),
            },
        )
        return slots

    def availability_range(self, professional_id, start_date: date, end_date: date, service_ids=None):
        """One DayAvailability per day from start_date to end_date, inclusive."""
        if end_date < start_date:
            raise ValidationError({"end_date": "end_date must not be before start_date"})
        days = (end_date - start_date).days + 1
        max_days = settings.SCHEDULING["MAX_AVAILABILITY_DAYS"]
        if days > max_days:
            raise ValidationError({"end_date": f"At most {max_days} days can be searched at once"})

        professional = self._professional(professional_id)
        duration = self.services_duration(service_ids)
        result = []
        for offset in range(days):
            day = start_date + timedelta(days=offset)
            result.append(DayAvailability(day, self._slots(professional, day, duration)))
        return result

    def professionals_availability(self, professional_ids, day: date, service_ids=None):
        """Slots of several professionals on one day; ids outside the tenant are skipped."""
        duration = self.services_duration(service_ids)
        professionals = Professional.objects.select_related("user").filter(
            tenant=self.tenant, pk__in=professional_ids
        )
        by_id = {p.pk: p for p in professionals}
        result = []
        for professional_id in professional_ids:
            professional = by_id.get(professional_id)
            if professional is None:
                continue
            result.append(
                ProfessionalAvailability(
                    professional_id=professional.pk,
                    professional_name=professional.display_name,
                    date=day,
                    slots=self._slots(professional, day, duration),
                )
            )
        return result

    def is_slot_available(self, professional_id, start_time: datetime, duration: int, exclude_appointment_id=None):
        """
        True when the whole slot sits inside one working period and overlaps
        neither a time block nor another active appointment of the professional.
        """
        professional = self._professional(professional_id)
        if not professional.is_available or duration <= 0:
            return False

        end_time = start_time + timedelta(minutes=duration)
        day = timezone.localtime(start_time).date()
        periods = self._working_periods(professional.pk, day)
        if not any(period_start <= start_time and end_time <= period_end for period_start, period_end in periods):
            return False

        result = ConflictChecker(check_client=False, check_working_hours=False).check_conflicts(
            self.tenant.pk,
            professional.pk,
            None,
            start_time,
            duration,
            exclude_appointment_id=exclude_appointment_id,
        )
        return not result.has_conflict
