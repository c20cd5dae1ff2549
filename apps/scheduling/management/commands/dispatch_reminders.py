import logging

from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db.models import F, Q
from django.utils import timezone

from apps.scheduling.models import INACTIVE_STATUSES, Reminder
from apps.scheduling.reminders import ReminderQueue

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Publishes due appointment reminders to the reminder queue."

    def add_arguments(self, parser):
        parser.add_argument(
            "--batch-size",
            type=int,
            default=settings.SCHEDULING["REMINDER_BATCH_SIZE"],
        )
        parser.add_argument(
            "--max-attempts",
            type=int,
            default=settings.SCHEDULING["REMINDER_MAX_ATTEMPTS"],
            help="Failed reminders are retried until they reach this many publish attempts.",
        )

    def handle(self, *args, **options):
        queue = ReminderQueue()
        if not queue.queue_url:
            raise CommandError("REMINDER_QUEUE_URL is not configured")

        now = timezone.now()
        due = Reminder.objects.filter(send_at__lte=now).filter(
            Q(status=Reminder.Status.PENDING)
            | Q(status=Reminder.Status.FAILED, attempts__lt=options["max_attempts"])
        )

        skipped = due.filter(appointment__status__in=INACTIVE_STATUSES).update(status=Reminder.Status.CANCELLED)
        if skipped:
            self.stdout.write(f"Cancelled {skipped} reminders of inactive appointments")

        sent = failed = 0
        queryset = due.select_related("appointment__client", "appointment__professional__user").order_by("pk")

        # walk by pk so a reminder that fails again is not picked twice in one run
        last_pk = 0
        while True:
            batch = list(queryset.filter(pk__gt=last_pk)[: options["batch_size"]])
            if not batch:
                break
            last_pk = batch[-1].pk

            for reminder in batch:
                try:
                    message_id = queue.publish(reminder)
                except (BotoCoreError, ClientError) as exc:
                    Reminder.objects.filter(pk=reminder.pk).update(
                        status=Reminder.Status.FAILED,
                        attempts=F("attempts") + 1,
                        last_error=str(exc),
                    )
                    logger.warning("Reminder publish failed", extra={"reminder_id": reminder.pk, "error": str(exc)})
                    failed += 1
                    continue

                Reminder.objects.filter(pk=reminder.pk).update(
                    status=Reminder.Status.SENT,
                    attempts=F("attempts") + 1,
                    sent_at=now,
                )
                logger.debug("Reminder published", extra={"reminder_id": reminder.pk, "message_id": message_id})
                sent += 1

            self.stdout.write(f"Processed {len(batch)} reminders...")

        self.stdout.write(f"Reminder dispatch complete: {sent} sent, {failed} failed")
