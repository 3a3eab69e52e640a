"""
Capability evaluation for DJ Flow.

A single `can(user, action, project)` check over the user's active
`user_roles` rows. Admins can do everything. Other roles grant a fixed
set of actions within their scope:

- tenant scope (or no scope): every project
- bud scope: projects whose department_id is the scope id
- project scope: the one project
"""
import logging
from typing import Optional

from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.core.exceptions import PermissionDeniedError
from djflow.models.enums import Action, Role, ScopeLevel


logger = logging.getLogger(__name__)


ROLE_ACTIONS: dict[Role, set[Action]] = {
    Role.APPROVER: {Action.APPROVE_JOB},
    Role.MANAGER: {Action.CREATE_JOB, Action.SUBMIT_JOB, Action.ASSIGN_JOB, Action.WORK_JOB},
    Role.REQUESTER: {Action.CREATE_JOB, Action.SUBMIT_JOB},
    Role.ASSIGNEE: {Action.WORK_JOB},
}


class CapabilityEvaluator:
    """Answer whether a user may perform an action, optionally within a project."""

    def __init__(self, db: Optional[SupabaseClient] = None):
        self.db = db or get_supabase_client()
        self._project_departments: dict[int, Optional[int]] = {}

    def is_admin(self, user_id: int) -> bool:
        return any(row["role_name"] == Role.ADMIN.value for row in self.db.get_user_roles(user_id))

    def can(self, user_id: int, action: Action, project_id: Optional[int] = None) -> bool:
        for row in self.db.get_user_roles(user_id):
            try:
                role = Role(row["role_name"])
            except ValueError:
                continue

            if role == Role.ADMIN:
                return True
            if action in ROLE_ACTIONS.get(role, set()) and self._in_scope(row, project_id):
                return True

        return False

    def require(self, user_id: int, action: Action, project_id: Optional[int] = None) -> None:
        """Raise PermissionDeniedError unless `can` allows the action."""
        if not self.can(user_id, action, project_id):
            logger.info(f"User {user_id} denied {action.value} on project {project_id}")
            raise PermissionDeniedError(
                f"User {user_id} may not {action.value.replace('_', ' ')}",
                user_id=user_id,
                action=action.value
            )

    def _in_scope(self, role_row: dict, project_id: Optional[int]) -> bool:
        scope_level = role_row.get("scope_level")
        if scope_level in (None, ScopeLevel.TENANT.value):
            return True
        if project_id is None:
            return False

        scope_id = role_row.get("scope_id")
        if scope_level == ScopeLevel.PROJECT.value:
            return scope_id == project_id
        if scope_level == ScopeLevel.BUD.value:
            return scope_id is not None and scope_id == self._department_of(project_id)
        return False

    def _department_of(self, project_id: int) -> Optional[int]:
        if project_id not in self._project_departments:
            project = self.db.get_project(project_id)
            self._project_departments[project_id] = project.get("department_id") if project else None
        return self._project_departments[project_id]
