import logging
from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.scheduling.exceptions import InvalidTransition
from apps.scheduling.lifecycle import AppointmentLifecycle
from apps.scheduling.models import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)

AUTO_CANCEL_REASON = "auto_cancelled"


class Command(BaseCommand):
    help = (
        "Cancels pending appointments that were never confirmed and marks "
        "appointments whose client never showed up as no-show."
    )

    def add_arguments(self, parser):
        parser.add_argument("--dry-run", action="store_true")

    def handle(self, *args, **options):
        now = timezone.now()
        config = settings.SCHEDULING

        unconfirmed = Appointment.objects.filter(
            status=AppointmentStatus.PENDING,
            created_at__lte=now - timedelta(minutes=config["CONFIRMATION_TIMEOUT_MINUTES"]),
        )
        missed = Appointment.objects.filter(
            status__in=[AppointmentStatus.CONFIRMED, AppointmentStatus.WAITING],
            start_time__lte=now - timedelta(minutes=config["NO_SHOW_GRACE_MINUTES"]),
        )

        if options["dry_run"]:
            self.stdout.write(f"Would cancel {unconfirmed.count()} and mark {missed.count()} as no-show")
            return

        cancelled = self._apply(unconfirmed, lambda lc, pk: lc.cancel(pk, reason=AUTO_CANCEL_REASON))
        no_shows = self._apply(missed, lambda lc, pk: lc.mark_no_show(pk))

        self.stdout.write(f"Expired appointments: {cancelled} cancelled, {no_shows} no-show")

    def _apply(self, queryset, operation):
        done = 0
        lifecycles = {}
        for appointment in list(queryset.select_related("tenant").order_by("pk")):
            lifecycle = lifecycles.get(appointment.tenant_id)
            if lifecycle is None:
                lifecycle = lifecycles[appointment.tenant_id] = AppointmentLifecycle(appointment.tenant)
            try:
                operation(lifecycle, appointment.pk)
            except InvalidTransition as exc:
                # moved on since we listed it
                logger.info(
                    "Skipped appointment during expiry",
                    extra={"appointment_id": appointment.pk, "status": exc.current},
                )
                continue
            done += 1
        return done
