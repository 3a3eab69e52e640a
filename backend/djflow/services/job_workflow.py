"""
Job Workflow Service for DJ Flow.

Application layer that sequences routing, approval, assignment, the
urgent cascade and notifications. Every command returns the job as
stored after the command, plus whatever the command produced.

Job state machine:
    draft → pending_approval(level k) → … → approved → assigned → in_progress → completed
    pending_approval → rework | rejected
    rework → pending_approval (new round)
    draft | rework → assigned (skip-flow)
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.core.exceptions import (
    InvalidTransitionError,
    PersistenceError,
    ResourceNotFoundError,
    ValidationError,
)
from djflow.models.enums import (
    Action,
    ActivityAction,
    ApprovalDecision,
    JobPriority,
    JobStatus,
    LevelOutcomeType,
    NotificationEvent,
    Role,
)
from djflow.models.schemas import JobActivity, JobInDB
from djflow.services.approval_engine import ApprovalFlowEngine, LevelOutcome, RouteDecision
from djflow.services.auto_assignment import AssignmentResult, AutoAssignmentResolver
from djflow.services.business_days import calculate_due_date
from djflow.services.holiday_calendar import load_holiday_calendar
from djflow.services.notifications import NotificationDispatcher
from djflow.services.permissions import CapabilityEvaluator
from djflow.services.urgent_scheduler import ShiftResult, UrgentJobScheduler


logger = logging.getLogger(__name__)


TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.DRAFT: {JobStatus.PENDING_APPROVAL, JobStatus.ASSIGNED},
    JobStatus.PENDING_APPROVAL: {JobStatus.APPROVED, JobStatus.REWORK, JobStatus.REJECTED},
    JobStatus.APPROVED: {JobStatus.ASSIGNED},
    JobStatus.ASSIGNED: {JobStatus.ASSIGNED, JobStatus.IN_PROGRESS},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED},
    JobStatus.REWORK: {JobStatus.PENDING_APPROVAL, JobStatus.ASSIGNED},
    JobStatus.COMPLETED: set(),
    JobStatus.REJECTED: set(),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class JobCommandResult:
    """What a workflow command did."""
    job: JobInDB
    route: Optional[RouteDecision] = None
    outcome: Optional[LevelOutcome] = None
    assignment: Optional[AssignmentResult] = None
    shift: Optional[ShiftResult] = None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "job": self.job.model_dump(mode="json"),
            "route": self.route.to_dict() if self.route else None,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "assignment": self.assignment.to_dict() if self.assignment else None,
            "urgent_shift": self.shift.to_dict() if self.shift else None,
        }


class JobWorkflowService:
    """Commands that move a job through its lifecycle."""

    def __init__(self, db: Optional[SupabaseClient] = None):
        self.db = db or get_supabase_client()
        self.engine = ApprovalFlowEngine(self.db)
        self.resolver = AutoAssignmentResolver(self.db)
        self.dispatcher = NotificationDispatcher(self.db)
        self.scheduler = UrgentJobScheduler(self.db, self.dispatcher)
        self.permissions = CapabilityEvaluator(self.db)

    # ==========================================
    # CREATION & SUBMISSION
    # ==========================================

    def create_job(
        self,
        requester_id: int,
        project_id: int,
        job_type_id: int,
        subject: str,
        priority: JobPriority = JobPriority.NORMAL,
        due_date: Optional[date] = None,
        submit: bool = True
    ) -> JobCommandResult:
        """
        Create a job and, unless kept as a draft, route it.

        Routing happens before anything is written, so a missing or
        broken flow leaves no job behind.
        """
        self.permissions.require(requester_id, Action.CREATE_JOB, project_id)
        priority = JobPriority(priority)

        job_type = self.db.get_job_type(job_type_id)
        if job_type is None:
            raise ResourceNotFoundError(
                f"Job type {job_type_id} not found",
                resource_type="job_type",
                resource_id=job_type_id
            )

        route = self.engine.route(project_id, job_type_id)

        if due_date is None:
            due_date = calculate_due_date(
                date.today(),
                job_type.get("sla_working_days"),
                load_holiday_calendar(self.db)
            )

        job = JobInDB(**self.db.insert_job({
            "project_id": project_id,
            "job_type_id": job_type_id,
            "requester_id": requester_id,
            "subject": subject,
            "priority": priority.value,
            "status": JobStatus.DRAFT.value,
            "approval_round": 0,
            "flow_id": route.flow.id,
            "due_date": due_date.isoformat(),
        }))
        logger.info(f"Created job {job.id} ({priority.value}) in project {project_id}")
        self._record_activity(job, ActivityAction.CREATED, requester_id)

        result = self._enter_flow(job, route, requester_id) if submit else JobCommandResult(job, route=route)

        event = NotificationEvent.URGENT_IMPACT if job.is_urgent else NotificationEvent.JOB_CREATED
        self.dispatcher.notify(event, job.id, {"priority": priority.value, "skip": route.skip})

        return result

    def submit_job(self, job_id: int, user_id: int) -> JobCommandResult:
        """Send a draft, or a job returned for rework, into its flow."""
        job = self._load_job(job_id)
        if job.requester_id != user_id:
            self.permissions.require(user_id, Action.SUBMIT_JOB, job.project_id)

        self._check_transition(job, JobStatus.PENDING_APPROVAL)
        route = self.engine.route(job.project_id, job.job_type_id)
        return self._enter_flow(job, route, user_id)

    def _enter_flow(self, job: JobInDB, route: RouteDecision, user_id: int) -> JobCommandResult:
        if route.skip:
            return self._assign(job, route, user_id)
        started = self.engine.start(job, route.flow)
        self._record_activity(
            started, ActivityAction.SUBMITTED, user_id,
            from_status=job.status,
            details={"approval_round": started.approval_round, "flow_id": route.flow.id}
        )
        return JobCommandResult(started, route=route)

    # ==========================================
    # APPROVAL
    # ==========================================

    def approve(
        self,
        job_id: int,
        approver_id: int,
        comment: Optional[str] = None,
        level: Optional[int] = None
    ) -> JobCommandResult:
        job = self._load_job(job_id)
        self.permissions.require(approver_id, Action.APPROVE_JOB, job.project_id)

        outcome = self.engine.record_decision(
            job_id, approver_id, ApprovalDecision.APPROVE, comment, level
        )
        if outcome.outcome != LevelOutcomeType.NOOP:
            self._record_activity(
                outcome.job, ActivityAction.APPROVED, approver_id,
                from_status=job.status,
                details={"level": outcome.level, "outcome": outcome.outcome.value}
            )
        if outcome.outcome != LevelOutcomeType.APPROVED:
            return JobCommandResult(outcome.job, outcome=outcome)

        route = RouteDecision(flow=self.engine.flow_for_job(outcome.job))
        result = self._assign(outcome.job, route, approver_id)
        result.outcome = outcome

        manual = result.assignment.needs_manual_assignment
        # Admins hear about approved jobs nobody was assigned to
        extra = self.db.get_user_ids_with_role(Role.ADMIN.value) if manual else []
        self.dispatcher.notify(
            NotificationEvent.JOB_APPROVED,
            job_id,
            {"approved_by": approver_id, "needs_manual_assignment": manual},
            extra_user_ids=extra
        )
        return result

    def reject(
        self,
        job_id: int,
        approver_id: int,
        comment: str,
        final: bool = False,
        level: Optional[int] = None
    ) -> JobCommandResult:
        job = self._load_job(job_id)
        self.permissions.require(approver_id, Action.APPROVE_JOB, job.project_id)

        outcome = self.engine.record_decision(
            job_id, approver_id, ApprovalDecision.REJECT, comment, level, final
        )
        if outcome.outcome != LevelOutcomeType.NOOP:
            self._record_activity(
                outcome.job, ActivityAction.REJECTED, approver_id,
                from_status=job.status,
                details={"level": outcome.level, "comment": comment, "final": final}
            )
        if outcome.outcome in (LevelOutcomeType.REWORK, LevelOutcomeType.REJECTED):
            self.dispatcher.notify(
                NotificationEvent.JOB_REJECTED,
                job_id,
                {"reason": comment, "rejected_by": approver_id, "final": final}
            )
        return JobCommandResult(outcome.job, outcome=outcome)

    # ==========================================
    # ASSIGNMENT
    # ==========================================

    def _assign(self, job: JobInDB, route: RouteDecision, user_id: Optional[int]) -> JobCommandResult:
        """Resolve the assignee and, if there is one, assign and run the urgent cascade."""
        assignment = self.resolver.assign(job, route)
        if assignment.needs_manual_assignment:
            logger.info(f"Job {job.id} approved without an assignee; waiting for manual assignment")
            return JobCommandResult(job, route=route, assignment=assignment)

        assigned = self._transition(job, JobStatus.ASSIGNED, {
            "assignee_id": assignment.assignee_id,
            "assigned_at": _now(),
            "current_level": None,
        })
        logger.info(f"Job {job.id} assigned to {assignment.assignee_id} via {assignment.source.value}")
        self._record_activity(
            assigned, ActivityAction.ASSIGNED, user_id,
            from_status=job.status,
            details={"assignee_id": assignment.assignee_id, "source": assignment.source.value}
        )

        self.dispatcher.notify(
            NotificationEvent.JOB_ASSIGNED,
            job.id,
            {"source": assignment.source.value}
        )
        return JobCommandResult(
            assigned,
            route=route,
            assignment=assignment,
            shift=self._run_urgent_shift(assigned)
        )

    def assign_manually(self, job_id: int, assignee_id: int, acting_user_id: int) -> JobCommandResult:
        """Assign (or reassign) an approved job by hand."""
        job = self._load_job(job_id)
        self.permissions.require(acting_user_id, Action.ASSIGN_JOB, job.project_id)

        if job.status not in (JobStatus.APPROVED, JobStatus.ASSIGNED):
            raise InvalidTransitionError(
                f"Job {job.id} cannot be assigned while {job.status.value}",
                job_id=job.id,
                current_status=job.status.value,
                target_status=JobStatus.ASSIGNED.value
            )

        previous_assignee = job.assignee_id
        assigned = self._transition(job, JobStatus.ASSIGNED, {
            "assignee_id": assignee_id,
            "assigned_at": _now(),
        })
        self._record_activity(
            assigned, ActivityAction.ASSIGNED, acting_user_id,
            from_status=job.status,
            details={
                "assignee_id": assignee_id,
                "source": "manual",
                "previous_assignee_id": previous_assignee,
            }
        )

        self.dispatcher.notify(
            NotificationEvent.JOB_ASSIGNED,
            job.id,
            {"source": "manual", "assigned_by": acting_user_id}
        )

        shift = None
        if previous_assignee != assignee_id:
            shift = self._run_urgent_shift(assigned)

        return JobCommandResult(assigned, shift=shift)

    def _run_urgent_shift(self, job: JobInDB) -> Optional[ShiftResult]:
        if not job.is_urgent or job.assignee_id is None:
            return None
        return self.scheduler.shift(job.id, job.assignee_id)

    def rerun_urgent_shift(self, job_id: int, acting_user_id: int) -> ShiftResult:
        """Retry the cascade for an urgent job; already-shifted jobs are left alone."""
        job = self._load_job(job_id)
        self.permissions.require(acting_user_id, Action.ASSIGN_JOB, job.project_id)

        if not job.is_urgent or job.assignee_id is None:
            raise ValidationError(
                f"Job {job.id} is not an assigned urgent job",
                field="priority",
                value=job.priority.value
            )
        return self.scheduler.shift(job.id, job.assignee_id)

    # ==========================================
    # EXECUTION
    # ==========================================

    def start_job(self, job_id: int, user_id: int) -> JobCommandResult:
        job = self._load_job(job_id)
        self._require_worker(job, user_id)
        started = self._transition(job, JobStatus.IN_PROGRESS, {"started_at": _now()})
        self._record_activity(started, ActivityAction.STARTED, user_id, from_status=job.status)
        return JobCommandResult(started)

    def complete_job(self, job_id: int, user_id: int) -> JobCommandResult:
        job = self._load_job(job_id)
        self._require_worker(job, user_id)
        completed = self._transition(job, JobStatus.COMPLETED, {"completed_at": _now()})
        self._record_activity(completed, ActivityAction.COMPLETED, user_id, from_status=job.status)
        self.dispatcher.notify(NotificationEvent.JOB_COMPLETED, job.id, {"completed_by": user_id})
        return JobCommandResult(completed)

    def _require_worker(self, job: JobInDB, user_id: int) -> None:
        """The assignee needs WORK_JOB; anyone else working the job needs ASSIGN_JOB."""
        action = Action.WORK_JOB if job.assignee_id == user_id else Action.ASSIGN_JOB
        self.permissions.require(user_id, action, job.project_id)

    def get_activities(self, job_id: int) -> list[JobActivity]:
        """Activity trail of a job, oldest first."""
        job = self._load_job(job_id)
        return [JobActivity(**row) for row in self.db.get_job_activities(job.id)]

    # ==========================================
    # HELPERS
    # ==========================================

    def _check_transition(self, job: JobInDB, target: JobStatus) -> None:
        if target not in TRANSITIONS[job.status]:
            raise InvalidTransitionError(
                f"Job {job.id} cannot move from {job.status.value} to {target.value}",
                job_id=job.id,
                current_status=job.status.value,
                target_status=target.value
            )

    def _transition(self, job: JobInDB, target: JobStatus, extra: dict) -> JobInDB:
        """Move a job to `target` if its status is still the one we read."""
        self._check_transition(job, target)
        updated = self.db.compare_and_set_job(
            job.id,
            {"status": job.status.value},
            {"status": target.value, **extra}
        )
        if updated is None:
            current = self._load_job(job.id)
            raise InvalidTransitionError(
                f"Job {job.id} changed to {current.status.value} concurrently",
                job_id=job.id,
                current_status=current.status.value,
                target_status=target.value
            )
        return JobInDB(**updated)

    def _record_activity(
        self,
        job: JobInDB,
        action: ActivityAction,
        user_id: Optional[int],
        from_status: Optional[JobStatus] = None,
        details: Optional[dict] = None
    ) -> None:
        """Append to the job's activity trail. A failed write is logged, never raised."""
        entry = JobActivity(
            job_id=job.id,
            user_id=user_id,
            action=action,
            from_status=from_status,
            to_status=job.status,
            details=details or {}
        )
        try:
            self.db.append_job_activity(entry.model_dump(mode="json", exclude={"id", "created_at"}))
        except PersistenceError as e:
            logger.error(f"Failed to record {action.value} activity for job {job.id}: {e}")

    def _load_job(self, job_id: int) -> JobInDB:
        row = self.db.get_job(job_id)
        if row is None:
            raise ResourceNotFoundError(
                f"Job {job_id} not found",
                resource_type="job",
                resource_id=job_id
            )
        return JobInDB(**row)
