"""
Tests for capability evaluation.
"""
import pytest

from helpers import ADMIN_ID, DEPARTMENT_ID, ORPHAN_PROJECT_ID, OUTSIDER_ID, PROJECT_ID, REQUESTER_ID


def _grant(mock_data, user_id, role_name, scope_level=None, scope_id=None, is_active=True):
    mock_data["user_roles"].append({
        "id": len(mock_data["user_roles"]) + 1,
        "user_id": user_id,
        "role_name": role_name,
        "scope_level": scope_level,
        "scope_id": scope_id,
        "is_active": is_active,
    })


@pytest.fixture
def evaluator(fresh_mock_client):
    from djflow.services.permissions import CapabilityEvaluator
    return CapabilityEvaluator(fresh_mock_client)


class TestCapabilityEvaluator:
    """Tests for CapabilityEvaluator."""

    @pytest.mark.unit
    def test_admin_can_do_everything(self, org, evaluator):
        from djflow.models.enums import Action

        assert all(evaluator.can(ADMIN_ID, action, PROJECT_ID) for action in Action)
        assert evaluator.is_admin(ADMIN_ID)

    @pytest.mark.unit
    def test_requester_can_create_but_not_assign(self, org, evaluator):
        from djflow.models.enums import Action

        assert evaluator.can(REQUESTER_ID, Action.CREATE_JOB, PROJECT_ID)
        assert not evaluator.can(REQUESTER_ID, Action.ASSIGN_JOB, PROJECT_ID)
        assert not evaluator.can(REQUESTER_ID, Action.MANAGE_FLOWS)

    @pytest.mark.unit
    def test_user_without_roles(self, org, evaluator):
        from djflow.core.exceptions import PermissionDeniedError
        from djflow.models.enums import Action

        with pytest.raises(PermissionDeniedError) as exc_info:
            evaluator.require(OUTSIDER_ID, Action.CREATE_JOB, PROJECT_ID)

        assert exc_info.value.status_code == 403
        assert exc_info.value.details["action"] == "create_job"

    @pytest.mark.unit
    def test_project_scope(self, org, mock_data, evaluator):
        from djflow.models.enums import Action

        _grant(mock_data, 600, "requester", "project", PROJECT_ID)

        assert evaluator.can(600, Action.CREATE_JOB, PROJECT_ID)
        assert not evaluator.can(600, Action.CREATE_JOB, ORPHAN_PROJECT_ID)
        assert not evaluator.can(600, Action.CREATE_JOB)

    @pytest.mark.unit
    def test_department_scope(self, org, mock_data, evaluator):
        from djflow.models.enums import Action

        _grant(mock_data, 601, "manager", "bud", DEPARTMENT_ID)

        assert evaluator.can(601, Action.ASSIGN_JOB, PROJECT_ID)
        assert not evaluator.can(601, Action.ASSIGN_JOB, ORPHAN_PROJECT_ID)

    @pytest.mark.unit
    def test_inactive_role_is_ignored(self, org, mock_data, evaluator):
        from djflow.models.enums import Action

        _grant(mock_data, 602, "admin", is_active=False)

        assert not evaluator.can(602, Action.MANAGE_FLOWS)
