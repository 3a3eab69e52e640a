"""
Approval Flow Engine for DJ Flow.

Routes a job to a flow and walks it through the flow's levels.

Routing order for (project, job type):
1. The flow stored for that exact job type, if active. A skip-flow
   routes straight to the matrix assignee; a leveled one is used as is.
2. The project's active default flow (job type = null).
3. Otherwise RoutingError.

Level completion:
- ANY: the first APPROVE completes the level.
- ALL: the level completes once every pool member approved this round.
- REJECT (any logic) sends the job to rework, or to rejected when final.
- Completing a level is a compare-and-set on (status, current_level,
  approval_round). A decision that loses the race, or arrives for a
  level the job already left, is a NOOP rather than an error.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.core.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    PermissionDeniedError,
    ResourceNotFoundError,
    RoutingError,
    ValidationError,
)
from djflow.models.enums import (
    ApprovalDecision,
    ApprovalLogic,
    JobStatus,
    LevelOutcomeType,
)
from djflow.models.schemas import ApprovalDecisionRecord, ApprovalFlowInDB, ApprovalLevel, JobInDB
from djflow.services.approval_flows import validate_flow


logger = logging.getLogger(__name__)


@dataclass
class RouteDecision:
    """Which flow a job follows and, for skip-flows, who gets it."""
    flow: ApprovalFlowInDB
    skip: bool = False
    assignee_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "skip": self.skip,
            "flow_id": self.flow.id,
            "assignee_id": self.assignee_id,
            "levels": len(self.flow.levels),
        }


@dataclass
class LevelOutcome:
    """Result of recording one approver decision."""
    outcome: LevelOutcomeType
    job: JobInDB
    level: Optional[int]
    next_level: Optional[int] = None
    pending_approvers: list[int] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.outcome not in (LevelOutcomeType.NOOP, LevelOutcomeType.RECORDED)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "level": self.level,
            "next_level": self.next_level,
            "pending_approvers": self.pending_approvers,
            "reason": self.reason,
            "job": self.job.model_dump(mode="json"),
        }


class ApprovalFlowEngine:
    """Route jobs and record approval decisions against their flow."""

    def __init__(self, db: Optional[SupabaseClient] = None):
        self.db = db or get_supabase_client()

    # ==========================================
    # ROUTING
    # ==========================================

    def route(self, project_id: int, job_type_id: Optional[int]) -> RouteDecision:
        """
        Pick the flow for a new job.

        Raises:
            ConfigurationError: The chosen flow is unusable as stored
            RoutingError: No active flow of any kind applies
        """
        if job_type_id is not None:
            row = self.db.find_flow_for_key(project_id, job_type_id)
            if row and row.get("is_active", True):
                flow = ApprovalFlowInDB(**row)
                if flow.skip_approval:
                    return RouteDecision(
                        flow=flow,
                        skip=True,
                        assignee_id=self._matrix_assignee(project_id, job_type_id)
                    )
                validate_flow(flow)
                return RouteDecision(flow=flow)

        row = self.db.find_flow_for_key(project_id, None)
        if row and row.get("is_active", True):
            flow = ApprovalFlowInDB(**row)
            validate_flow(flow)
            return RouteDecision(flow=flow)

        raise RoutingError(
            f"No approval flow configured for project {project_id}, job type {job_type_id}",
            project_id=project_id,
            job_type_id=job_type_id
        )

    def _matrix_assignee(self, project_id: int, job_type_id: int) -> int:
        entry = self.db.get_matrix_entry(project_id, job_type_id)
        assignee_id = entry.get("assignee_id") if entry else None
        if assignee_id is None:
            raise ConfigurationError(
                f"Skip-flow for job type {job_type_id} has no assignee in the assignment matrix",
                missing="assignee",
                project_id=project_id,
                job_type_id=job_type_id
            )
        return assignee_id

    def flow_for_job(self, job: JobInDB) -> ApprovalFlowInDB:
        """The flow a job was routed to, re-routing if it was never recorded."""
        if job.flow_id is not None:
            row = self.db.get_approval_flow(job.flow_id)
            if row:
                return ApprovalFlowInDB(**row)
            logger.warning(f"Flow {job.flow_id} of job {job.id} is gone; re-routing")
        return self.route(job.project_id, job.job_type_id).flow

    # ==========================================
    # LEVEL PROGRESSION
    # ==========================================

    def start(self, job: JobInDB, flow: ApprovalFlowInDB) -> JobInDB:
        """
        Put a draft or reworked job on level 1 of a new approval round.

        Raises:
            InvalidTransitionError: Job is not in draft or rework
        """
        if job.status not in (JobStatus.DRAFT, JobStatus.REWORK):
            raise InvalidTransitionError(
                f"Job {job.id} cannot be submitted from {job.status.value}",
                job_id=job.id,
                current_status=job.status.value,
                target_status=JobStatus.PENDING_APPROVAL.value
            )

        updated = self.db.compare_and_set_job(
            job.id,
            {"status": job.status.value, "approval_round": job.approval_round},
            {
                "status": JobStatus.PENDING_APPROVAL.value,
                "current_level": 1,
                "approval_round": job.approval_round + 1,
                "flow_id": flow.id,
            }
        )
        if updated is None:
            current = self._load_job(job.id)
            raise InvalidTransitionError(
                f"Job {job.id} changed while being submitted",
                job_id=job.id,
                current_status=current.status.value,
                target_status=JobStatus.PENDING_APPROVAL.value
            )

        logger.info(f"Job {job.id} entered approval round {job.approval_round + 1} at level 1")
        return JobInDB(**updated)

    def record_decision(
        self,
        job_id: int,
        approver_id: int,
        decision: ApprovalDecision,
        comment: Optional[str] = None,
        level: Optional[int] = None,
        final: bool = False
    ) -> LevelOutcome:
        """
        Record one approver's decision on the job's current level.

        Args:
            job_id: Job being decided
            approver_id: Acting user, must be in the current level's pool
            decision: APPROVE or REJECT
            comment: Required when rejecting
            level: Level the approver saw; a stale value yields NOOP
            final: Reject terminally instead of returning for rework

        Raises:
            PermissionDeniedError: Approver is not in the level's pool
            ValidationError: Reject without a comment
        """
        job = self._load_job(job_id)

        if job.status != JobStatus.PENDING_APPROVAL or job.current_level is None:
            return LevelOutcome(
                LevelOutcomeType.NOOP, job, level,
                reason=f"Job is {job.status.value}, not pending approval"
            )

        if level is not None and level != job.current_level:
            return LevelOutcome(
                LevelOutcomeType.NOOP, job, level,
                reason=f"Job is at level {job.current_level}, not {level}"
            )

        level = job.current_level
        flow = self.flow_for_job(job)
        current = self._level(flow, level, job)

        if approver_id not in current.approvers:
            raise PermissionDeniedError(
                f"User {approver_id} is not an approver for level {level}",
                user_id=approver_id,
                action="approve_job"
            )

        if decision == ApprovalDecision.REJECT and not (comment or "").strip():
            raise ValidationError("A comment is required when rejecting", field="comment")

        existing = self.db.get_job_approvals(job.id, job.approval_round, level)
        if any(row["approver_id"] == approver_id for row in existing):
            return LevelOutcome(
                LevelOutcomeType.NOOP, job, level,
                reason="Approver already decided on this level"
            )

        record = ApprovalDecisionRecord(
            job_id=job.id,
            level=level,
            approval_round=job.approval_round,
            approver_id=approver_id,
            decision=decision,
            comment=comment
        )
        self.db.insert_job_approval(record.model_dump(mode="json", exclude={"id", "created_at"}))

        guard = {
            "status": JobStatus.PENDING_APPROVAL.value,
            "current_level": level,
            "approval_round": job.approval_round,
        }

        if decision == ApprovalDecision.REJECT:
            target = JobStatus.REJECTED if final else JobStatus.REWORK
            return self._complete(job, guard, level, {
                "status": target.value,
                "current_level": None,
            }, LevelOutcomeType.REJECTED if final else LevelOutcomeType.REWORK)

        if current.logic == ApprovalLogic.ALL:
            # Re-read after our insert so concurrent approvers see each other
            approved = {
                row["approver_id"]
                for row in self.db.get_job_approvals(job.id, job.approval_round, level)
                if row["decision"] == ApprovalDecision.APPROVE.value
            }
            pending = [a for a in current.approvers if a not in approved]
            if pending:
                return LevelOutcome(
                    LevelOutcomeType.RECORDED, job, level,
                    pending_approvers=pending
                )

        if level < len(flow.levels):
            outcome = self._complete(job, guard, level, {
                "current_level": level + 1,
            }, LevelOutcomeType.ADVANCED)
            if outcome.outcome == LevelOutcomeType.ADVANCED:
                outcome.next_level = level + 1
            return outcome

        return self._complete(job, guard, level, {
            "status": JobStatus.APPROVED.value,
            "current_level": None,
        }, LevelOutcomeType.APPROVED)

    def _complete(
        self,
        job: JobInDB,
        guard: dict,
        level: int,
        update: dict,
        outcome: LevelOutcomeType
    ) -> LevelOutcome:
        """Apply a level completion only if nobody else completed it first."""
        updated = self.db.compare_and_set_job(job.id, guard, update)
        if updated is None:
            logger.info(f"Level {level} of job {job.id} was already completed by another decision")
            return LevelOutcome(
                LevelOutcomeType.NOOP, self._load_job(job.id), level,
                reason="Level already completed"
            )

        logger.info(f"Job {job.id} level {level}: {outcome.value}")
        return LevelOutcome(outcome, JobInDB(**updated), level)

    def _level(self, flow: ApprovalFlowInDB, level: int, job: JobInDB) -> ApprovalLevel:
        for lvl in flow.levels:
            if lvl.level == level:
                return lvl
        raise ConfigurationError(
            f"Flow {flow.id} has no level {level} for job {job.id}",
            missing="levels",
            project_id=flow.project_id,
            job_type_id=flow.job_type_id,
            level=level
        )

    def _load_job(self, job_id: int) -> JobInDB:
        row = self.db.get_job(job_id)
        if row is None:
            raise ResourceNotFoundError(
                f"Job {job_id} not found",
                resource_type="job",
                resource_id=job_id
            )
        return JobInDB(**row)
