"""The service's recurring jobs and their cadences."""

from rendezvous.core.config import Settings
from rendezvous.jobs.runner import ScheduledJob, parse_clock
from rendezvous.services.container import Services


def build_jobs(services: Services, settings: Settings) -> list[ScheduledJob]:
    return [
        ScheduledJob(
            name="expire_stale_initiations",
            func=services.appointments.expire_stale_initiations,
            interval_seconds=settings.expiry_interval_seconds,
        ),
        ScheduledJob(
            name="send_due_reminders",
            func=services.reminders.send_due_reminders,
            interval_seconds=settings.reminder_interval_seconds,
        ),
        ScheduledJob(
            name="rebuild_reminder_index",
            func=services.reminders.rebuild_index,
            daily_at=parse_clock(settings.reminder_index_rebuild_at),
            run_on_start=True,
        ),
        ScheduledJob(
            name="process_due_evaluations",
            func=services.evaluations.process_due_evaluations,
            daily_at=parse_clock(settings.evaluation_run_at),
        ),
        ScheduledJob(
            name="process_due_payouts",
            func=services.payouts.process_due_payouts,
            interval_seconds=settings.payout_interval_seconds,
        ),
    ]
