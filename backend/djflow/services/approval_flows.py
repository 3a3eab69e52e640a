"""
Approval Flow Repository for DJ Flow.

Stores per-project, per-job-type approval flows and the assignment matrix.

Rules enforced on save:
- One flow per (project, job type) slot; the null job type slot is the
  project's default flow. Saving into an occupied slot replaces that row.
- Levels are renumbered 1..N in order.
- An active flow must be usable: a leveled flow needs at least one level
  and every level needs at least one approver; a skip-flow needs a job
  type and a matrix assignee for it.
- A matrix assignee cannot be cleared while an active skip-flow routes
  its job type.
"""
import logging
from typing import Iterable, Optional

from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.core.exceptions import ConfigurationError, ResourceNotFoundError, ValidationError
from djflow.models.enums import ApprovalLogic
from djflow.models.schemas import (
    ApprovalFlowBase,
    ApprovalFlowInDB,
    ApprovalFlowSave,
    ApprovalLevel,
    JobTypeAssignment,
)


logger = logging.getLogger(__name__)


# ==========================================
# LEVEL OPERATIONS
# ==========================================

def renumber_levels(levels: Iterable[ApprovalLevel]) -> list[ApprovalLevel]:
    """Keep level order, rewrite numbers so that levels[i].level == i + 1."""
    ordered = sorted(levels, key=lambda lvl: lvl.level)
    return [lvl.model_copy(update={"level": i + 1}) for i, lvl in enumerate(ordered)]


def add_level(
    levels: list[ApprovalLevel],
    approvers: list[int],
    logic: ApprovalLogic = ApprovalLogic.ANY
) -> list[ApprovalLevel]:
    """Append a level after the current last one."""
    new_level = ApprovalLevel(level=len(levels) + 1, approvers=approvers, logic=logic)
    return renumber_levels([*levels, new_level])


def remove_level(levels: list[ApprovalLevel], level_number: int) -> list[ApprovalLevel]:
    """Drop one level and close the gap it leaves."""
    remaining = [lvl for lvl in levels if lvl.level != level_number]
    if len(remaining) == len(levels):
        raise ValidationError(
            f"Level {level_number} does not exist",
            field="level",
            value=level_number
        )
    return renumber_levels(remaining)


def validate_flow(flow: ApprovalFlowBase) -> None:
    """
    Raise ConfigurationError if the flow cannot be used for routing.

    Skip-flows are checked for their job type only; the matrix entry
    is checked by the caller that has store access.
    """
    if flow.skip_approval:
        if flow.is_default:
            raise ConfigurationError(
                "A project's default flow cannot skip approval",
                missing="job_type",
                project_id=flow.project_id
            )
        return

    if not flow.levels:
        raise ConfigurationError(
            "Approval flow has no levels",
            missing="levels",
            project_id=flow.project_id,
            job_type_id=flow.job_type_id
        )

    for lvl in flow.levels:
        if not lvl.approvers:
            raise ConfigurationError(
                f"Approval level {lvl.level} has no approvers",
                missing="approvers",
                project_id=flow.project_id,
                job_type_id=flow.job_type_id,
                level=lvl.level
            )

    if flow.include_team_lead and flow.team_lead_id is None:
        logger.warning(
            f"Flow for project {flow.project_id} includes a team lead but none is set; "
            f"assignment will fall back to the department manager"
        )


def _flow_row(flow: ApprovalFlowBase) -> dict:
    return flow.model_dump(
        mode="json",
        include={
            "project_id",
            "job_type_id",
            "name",
            "is_active",
            "skip_approval",
            "levels",
            "include_team_lead",
            "team_lead_id",
        }
    )


class ApprovalFlowRepository:
    """Load, validate and persist approval flows and the assignment matrix."""

    def __init__(self, db: Optional[SupabaseClient] = None):
        self.db = db or get_supabase_client()

    # ==========================================
    # FLOWS
    # ==========================================

    def list_flows(self, project_id: Optional[int] = None) -> list[ApprovalFlowInDB]:
        return [ApprovalFlowInDB(**row) for row in self.db.get_approval_flows(project_id)]

    def get_flow(self, flow_id: int) -> ApprovalFlowInDB:
        row = self.db.get_approval_flow(flow_id)
        if row is None:
            raise ResourceNotFoundError(
                f"Approval flow {flow_id} not found",
                resource_type="approval_flow",
                resource_id=flow_id
            )
        return ApprovalFlowInDB(**row)

    def get_flow_for(self, project_id: int, job_type_id: Optional[int]) -> Optional[ApprovalFlowInDB]:
        """The flow stored in a (project, job type) slot, active or not."""
        row = self.db.find_flow_for_key(project_id, job_type_id)
        return ApprovalFlowInDB(**row) if row else None

    def save_flow(self, flow: ApprovalFlowSave) -> ApprovalFlowInDB:
        """
        Validate and persist a flow.

        Inactive flows may be saved incomplete; they are validated again
        when activated.
        """
        flow = flow.model_copy(update={"levels": renumber_levels(flow.levels)})

        if flow.is_active:
            validate_flow(flow)
            if flow.skip_approval:
                self._require_matrix_assignee(flow.project_id, flow.job_type_id)

        occupant = self.db.find_flow_for_key(flow.project_id, flow.job_type_id)
        flow_id = flow.id
        if occupant is not None:
            if flow_id is not None and occupant["id"] != flow_id:
                # Saving an existing flow into a slot another flow holds
                raise ValidationError(
                    "Another flow already exists for this project and job type",
                    field="job_type_id",
                    value=flow.job_type_id
                )
            flow_id = occupant["id"]
        elif flow_id is not None and self.db.get_approval_flow(flow_id) is None:
            raise ResourceNotFoundError(
                f"Approval flow {flow_id} not found",
                resource_type="approval_flow",
                resource_id=flow_id
            )

        row = _flow_row(flow)
        if flow_id is not None:
            row["id"] = flow_id

        saved = ApprovalFlowInDB(**self.db.save_approval_flow(row))
        logger.info(
            f"Saved approval flow {saved.id} for project {saved.project_id} "
            f"(job type {saved.job_type_id}, skip={saved.skip_approval}, levels={len(saved.levels)})"
        )
        return saved

    def delete_flow(self, flow_id: int) -> ApprovalFlowInDB:
        flow = self.get_flow(flow_id)
        self.db.delete_approval_flow(flow_id)
        logger.info(f"Deleted approval flow {flow_id}")
        return flow

    def add_level(
        self,
        flow_id: int,
        approvers: list[int],
        logic: ApprovalLogic = ApprovalLogic.ANY
    ) -> ApprovalFlowInDB:
        flow = self.get_flow(flow_id)
        updated = ApprovalFlowSave(
            **flow.model_dump(exclude={"levels", "created_at", "updated_at"}),
            levels=add_level(flow.levels, approvers, logic)
        )
        return self.save_flow(updated)

    def remove_level(self, flow_id: int, level_number: int) -> ApprovalFlowInDB:
        flow = self.get_flow(flow_id)
        updated = ApprovalFlowSave(
            **flow.model_dump(exclude={"levels", "created_at", "updated_at"}),
            levels=remove_level(flow.levels, level_number)
        )
        return self.save_flow(updated)

    def bulk_create_skip_flows(self, project_id: int, job_type_ids: list[int]) -> dict:
        """
        Create (or re-activate) skip-flows for several job types at once.

        Job types without a matrix assignee are refused and reported.
        """
        matrix = {
            row["job_type_id"]: row.get("assignee_id")
            for row in self.db.get_assignment_matrix(project_id)
        }

        created: list[ApprovalFlowInDB] = []
        refused: list[int] = []

        for job_type_id in job_type_ids:
            if matrix.get(job_type_id) is None:
                refused.append(job_type_id)
                continue

            created.append(self.save_flow(ApprovalFlowSave(
                project_id=project_id,
                job_type_id=job_type_id,
                name="Skip approval",
                skip_approval=True,
            )))

        if refused:
            logger.warning(
                f"Skip-flows refused for project {project_id}: job types {refused} have no assignee"
            )

        return {"created": created, "refused": refused}

    # ==========================================
    # ASSIGNMENT MATRIX
    # ==========================================

    def get_matrix(self, project_id: int) -> list[JobTypeAssignment]:
        return [JobTypeAssignment(**row) for row in self.db.get_assignment_matrix(project_id)]

    def save_matrix(self, project_id: int, entries: list[JobTypeAssignment]) -> list[JobTypeAssignment]:
        """Upsert matrix rows, refusing to clear an assignee a skip-flow depends on."""
        for entry in entries:
            if entry.assignee_id is not None:
                continue
            flow = self.get_flow_for(project_id, entry.job_type_id)
            if flow and flow.is_active and flow.skip_approval:
                raise ConfigurationError(
                    f"Job type {entry.job_type_id} is routed by a skip-flow and needs an assignee",
                    missing="assignee",
                    project_id=project_id,
                    job_type_id=entry.job_type_id
                )

        rows = self.db.save_assignment_matrix(
            project_id,
            [entry.model_dump() for entry in entries]
        )
        return [JobTypeAssignment(**row) for row in rows]

    def _require_matrix_assignee(self, project_id: int, job_type_id: Optional[int]) -> int:
        entry = self.db.get_matrix_entry(project_id, job_type_id) if job_type_id is not None else None
        assignee_id = entry.get("assignee_id") if entry else None
        if assignee_id is None:
            raise ConfigurationError(
                f"Skip-flow for job type {job_type_id} has no assignee in the assignment matrix",
                missing="assignee",
                project_id=project_id,
                job_type_id=job_type_id
            )
        return assignee_id
