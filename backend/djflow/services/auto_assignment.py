"""
Auto Assignment Resolver for DJ Flow.

Picks a worker for a job once approval is done (or skipped).
First match wins:
1. Skip-routed job → the assignment matrix entry (mandatory)
2. Flow includes a team lead and one is set → the team lead
3. Flow includes a team lead but none is set → manager of the project's department
4. Otherwise → nobody; an admin or manager assigns manually
"""
import logging
from dataclasses import dataclass
from typing import Optional

from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.core.exceptions import ConfigurationError
from djflow.models.enums import AssignmentSource
from djflow.models.schemas import JobInDB
from djflow.services.approval_engine import RouteDecision


logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    assignee_id: Optional[int]
    source: AssignmentSource

    @property
    def needs_manual_assignment(self) -> bool:
        return self.assignee_id is None

    def to_dict(self) -> dict:
        return {"assignee_id": self.assignee_id, "source": self.source.value}


class AutoAssignmentResolver:
    """Resolve the assignee of a job from its route and flow settings."""

    def __init__(self, db: Optional[SupabaseClient] = None):
        self.db = db or get_supabase_client()

    def assign(self, job: JobInDB, route: RouteDecision) -> AssignmentResult:
        flow = route.flow

        if route.skip:
            assignee_id = route.assignee_id
            if assignee_id is None:
                entry = self.db.get_matrix_entry(job.project_id, job.job_type_id)
                assignee_id = entry.get("assignee_id") if entry else None
            if assignee_id is None:
                raise ConfigurationError(
                    f"Skip-flow for job type {job.job_type_id} has no assignee in the assignment matrix",
                    missing="assignee",
                    project_id=job.project_id,
                    job_type_id=job.job_type_id
                )
            return AssignmentResult(assignee_id, AssignmentSource.SKIP_MATRIX)

        if flow.include_team_lead and flow.team_lead_id is not None:
            return AssignmentResult(flow.team_lead_id, AssignmentSource.TEAM_LEAD)

        if flow.include_team_lead:
            manager_id = self._department_manager(job.project_id)
            if manager_id is not None:
                return AssignmentResult(manager_id, AssignmentSource.DEPARTMENT_MANAGER)
            logger.warning(
                f"Job {job.id}: no team lead and no department manager for project "
                f"{job.project_id}; manual assignment required"
            )

        return AssignmentResult(None, AssignmentSource.MANUAL)

    def _department_manager(self, project_id: int) -> Optional[int]:
        project = self.db.get_project(project_id)
        if not project or project.get("department_id") is None:
            return None
        department = self.db.get_department(project["department_id"])
        return department.get("manager_id") if department else None
