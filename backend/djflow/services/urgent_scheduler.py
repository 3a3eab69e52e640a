"""
Urgent Job Scheduler for DJ Flow.

When an Urgent job lands in a worker's queue, every other active job of
that worker has its due date pushed back by `urgent_shift_days` working
days (compounding from the current due date).

Per shifted job:
- due_date = add_working_days(due_date, shift_days)
- original_due_date keeps the first-ever due date (set once)
- shifted_by_job_id = the urgent job
- one append-only sla_shift_logs row
- one deadline_approaching notification

Each job is its own unit of work: the due date update is rolled back if
its log row cannot be written. A failed job is logged and reported while
the rest of the batch continues. The urgent job itself is never touched.
Running the cascade again for the same urgent job only picks up jobs that
have no log row for it yet.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from djflow.core.config import settings
from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.models.enums import ACTIVE_JOB_STATUSES, NotificationEvent
from djflow.models.schemas import JobInDB, SLAShiftLog
from djflow.services.business_days import add_working_days, get_deadline_urgency, working_days_between
from djflow.services.holiday_calendar import HolidayCalendar, load_holiday_calendar
from djflow.services.notifications import NotificationDispatcher


logger = logging.getLogger(__name__)


@dataclass
class ShiftedJob:
    job_id: int
    previous_due_date: date
    new_due_date: date
    original_due_date: date
    log_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "previous_due_date": self.previous_due_date.isoformat(),
            "new_due_date": self.new_due_date.isoformat(),
            "original_due_date": self.original_due_date.isoformat(),
            "log_id": self.log_id,
        }


@dataclass
class ShiftResult:
    """Outcome of one urgent cascade."""
    urgent_job_id: int
    assignee_id: int
    shift_days: int
    shifted: list[ShiftedJob] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "urgent_job_id": self.urgent_job_id,
            "assignee_id": self.assignee_id,
            "shift_days": self.shift_days,
            "success": self.success,
            "shifted_count": len(self.shifted),
            "shifted": [item.to_dict() for item in self.shifted],
            "skipped": self.skipped,
            "failed": self.failed,
        }


class UrgentJobScheduler:
    """Push back an assignee's other active jobs to make room for urgent work."""

    def __init__(
        self,
        db: Optional[SupabaseClient] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        shift_days: Optional[int] = None
    ):
        self.db = db or get_supabase_client()
        self.dispatcher = dispatcher or NotificationDispatcher(self.db)
        self.shift_days = shift_days if shift_days is not None else settings.urgent_shift_days

    def shift(self, urgent_job_id: int, assignee_id: int) -> ShiftResult:
        """
        Run the cascade for an urgent job assigned to `assignee_id`.

        Never raises: store failures end up in `ShiftResult.failed`.
        Safe to call again after a partial failure.
        """
        result = ShiftResult(
            urgent_job_id=urgent_job_id,
            assignee_id=assignee_id,
            shift_days=self.shift_days
        )

        try:
            calendar = load_holiday_calendar(self.db)
            rows = self.db.get_active_jobs_for_assignee(
                assignee_id,
                urgent_job_id,
                [status.value for status in ACTIVE_JOB_STATUSES]
            )
        except Exception as e:
            logger.error(f"Urgent job {urgent_job_id}: could not load the queue of user {assignee_id}: {e}")
            result.failed.append({"job_id": None, "error": str(e)})
            return result

        logger.info(
            f"Urgent job {urgent_job_id}: shifting {len(rows)} active jobs of user {assignee_id} "
            f"by {self.shift_days} working days"
        )

        for row in rows:
            job_id = row.get("id")
            try:
                job = JobInDB(**row)

                if job.due_date is None:
                    result.skipped.append({"job_id": job.id, "reason": "no_due_date"})
                    continue

                if self.db.has_shift_log(job.id, urgent_job_id):
                    result.skipped.append({"job_id": job.id, "reason": "already_shifted"})
                    continue

                result.shifted.append(self._shift_one(job, urgent_job_id, calendar))
            except Exception as e:
                logger.error(f"Failed to shift job {job_id} for urgent job {urgent_job_id}: {e}")
                result.failed.append({"job_id": job_id, "error": str(e)})

        today = date.today()
        for item in result.shifted:
            self.dispatcher.notify(
                NotificationEvent.DEADLINE_APPROACHING,
                item.job_id,
                {
                    "shift_days": self.shift_days,
                    "reason_job_id": urgent_job_id,
                    "reason": "urgent_job",
                    "previous_due_date": item.previous_due_date.isoformat(),
                    "new_due_date": item.new_due_date.isoformat(),
                    "working_days_left": working_days_between(today, item.new_due_date, calendar),
                    "urgency": get_deadline_urgency(item.new_due_date, today),
                }
            )

        if result.failed:
            logger.warning(
                f"Urgent job {urgent_job_id}: {len(result.failed)} of {len(rows)} jobs not shifted; "
                f"re-run the cascade to retry"
            )

        return result

    def _shift_one(self, job: JobInDB, urgent_job_id: int, calendar: HolidayCalendar) -> ShiftedJob:
        """Move one job's due date and log it, restoring the job if logging fails."""
        new_due = add_working_days(job.due_date, self.shift_days, calendar)
        first_due = job.original_due_date or job.due_date
        entry = SLAShiftLog(
            job_id=job.id,
            urgent_job_id=urgent_job_id,
            original_due_date=first_due,
            new_due_date=new_due,
            shift_days=self.shift_days
        )

        with self.db.transaction() as tx:
            tx.store_original("jobs", job.id, {
                "due_date": job.due_date.isoformat(),
                "original_due_date": job.original_due_date.isoformat() if job.original_due_date else None,
                "shifted_by_job_id": job.shifted_by_job_id,
            })
            self.db.update_job_due_date(job.id, new_due, first_due, urgent_job_id)

            log = self.db.append_shift_log(
                entry.model_dump(mode="json", exclude={"id", "created_at"})
            )
            tx.add_created("sla_shift_logs", log["id"])

        logger.debug(f"Job {job.id}: due {job.due_date} -> {new_due} (urgent job {urgent_job_id})")
        return ShiftedJob(
            job_id=job.id,
            previous_due_date=job.due_date,
            new_due_date=new_due,
            original_due_date=first_due,
            log_id=log["id"]
        )
