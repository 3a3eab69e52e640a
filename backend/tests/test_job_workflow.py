"""
Tests for the Job Workflow Service.

Covers the full lifecycle across routing, approval, assignment, the
urgent cascade and notifications, using the in-memory store.
"""
import pytest
from datetime import date
from unittest.mock import patch

from helpers import (
    ADMIN_ID,
    ASSIGNEE_ID,
    JOB_TYPE_ID,
    MANAGER_ID,
    ORPHAN_PROJECT_ID,
    OUTSIDER_ID,
    PROJECT_ID,
    REQUESTER_ID,
    SKIP_JOB_TYPE_ID,
    TEAM_LEAD_ID,
    level,
)


@pytest.fixture
def service(fresh_mock_client, org):
    from djflow.services.job_workflow import JobWorkflowService
    return JobWorkflowService(fresh_mock_client)


@pytest.fixture
def two_level_flow(create_test_flow):
    return create_test_flow(
        job_type_id=None,
        levels=[level(1, [21, 22]), level(2, [23])],
        include_team_lead=True,
        team_lead_id=TEAM_LEAD_ID,
    )


@pytest.fixture
def skip_flow(create_test_flow, create_test_assignment):
    create_test_assignment(job_type_id=SKIP_JOB_TYPE_ID, assignee_id=ASSIGNEE_ID)
    return create_test_flow(job_type_id=SKIP_JOB_TYPE_ID, skip_approval=True)


def _create(service, **overrides):
    params = {
        "requester_id": REQUESTER_ID,
        "project_id": PROJECT_ID,
        "job_type_id": JOB_TYPE_ID,
        "subject": "Homepage banner",
    }
    params.update(overrides)
    return service.create_job(**params)


class TestCreateJob:
    """Tests for job creation and submission."""

    @pytest.mark.unit
    def test_create_routes_to_first_level(self, service, two_level_flow, frozen_monday):
        from djflow.models.enums import JobStatus

        result = _create(service)

        assert result.job.status == JobStatus.PENDING_APPROVAL
        assert result.job.current_level == 1
        assert result.job.flow_id == two_level_flow["id"]
        # Banner SLA is 3 working days from Monday 14 April 2025
        assert result.job.due_date == date(2025, 4, 17)

    @pytest.mark.unit
    def test_create_notifies_job_created(self, service, mock_data, two_level_flow):
        result = _create(service)

        types = {row["type"] for row in mock_data["notifications"] if row["job_id"] == result.job.id}
        assert types == {"job_created"}

    @pytest.mark.unit
    def test_draft_then_submit(self, service, two_level_flow):
        from djflow.models.enums import JobStatus

        draft = _create(service, submit=False)
        assert draft.job.status == JobStatus.DRAFT

        submitted = service.submit_job(draft.job.id, REQUESTER_ID)

        assert submitted.job.status == JobStatus.PENDING_APPROVAL
        assert submitted.job.approval_round == 1

    @pytest.mark.unit
    def test_skip_flow_assigns_immediately(self, service, skip_flow):
        from djflow.models.enums import AssignmentSource, JobStatus

        result = _create(service, job_type_id=SKIP_JOB_TYPE_ID)

        assert result.route.skip is True
        assert result.job.status == JobStatus.ASSIGNED
        assert result.job.assignee_id == ASSIGNEE_ID
        assert result.assignment.source == AssignmentSource.SKIP_MATRIX

    @pytest.mark.unit
    def test_missing_flow_leaves_no_job(self, service, mock_data):
        from djflow.core.exceptions import RoutingError

        with pytest.raises(RoutingError):
            _create(service)

        assert mock_data["jobs"] == []

    @pytest.mark.unit
    def test_unknown_job_type(self, service, two_level_flow):
        from djflow.core.exceptions import ResourceNotFoundError

        with pytest.raises(ResourceNotFoundError):
            _create(service, job_type_id=555)

    @pytest.mark.unit
    def test_outsider_cannot_create(self, service, two_level_flow):
        from djflow.core.exceptions import PermissionDeniedError

        with pytest.raises(PermissionDeniedError):
            _create(service, requester_id=OUTSIDER_ID)

    @pytest.mark.unit
    def test_explicit_due_date_is_kept(self, service, two_level_flow):
        result = _create(service, due_date=date(2025, 6, 2))

        assert result.job.due_date == date(2025, 6, 2)


class TestApprovalWorkflow:
    """Tests for approve/reject through the service."""

    @pytest.mark.unit
    def test_full_approval_assigns_team_lead(self, service, mock_data, two_level_flow):
        from djflow.models.enums import AssignmentSource, JobStatus, LevelOutcomeType

        job_id = _create(service).job.id

        first = service.approve(job_id, 21)
        assert first.outcome.outcome == LevelOutcomeType.ADVANCED

        final = service.approve(job_id, 23)

        assert final.outcome.outcome == LevelOutcomeType.APPROVED
        assert final.job.status == JobStatus.ASSIGNED
        assert final.job.assignee_id == TEAM_LEAD_ID
        assert final.assignment.source == AssignmentSource.TEAM_LEAD

        types = [row["type"] for row in mock_data["notifications"] if row["job_id"] == job_id]
        assert "job_assigned" in types
        assert "job_approved" in types

    @pytest.mark.unit
    def test_missing_team_lead_falls_back_to_manager(self, service, create_test_flow):
        create_test_flow(job_type_id=None, levels=[level(1, [21])], include_team_lead=True)

        job_id = _create(service).job.id
        result = service.approve(job_id, 21)

        assert result.job.assignee_id == MANAGER_ID

    @pytest.mark.unit
    def test_unassigned_approval_notifies_admins(self, service, mock_data, create_test_flow):
        from djflow.models.enums import JobStatus

        create_test_flow(job_type_id=None, levels=[level(1, [21])])

        job_id = _create(service).job.id
        result = service.approve(job_id, 21)

        assert result.job.status == JobStatus.APPROVED
        assert result.assignment.needs_manual_assignment
        approved_recipients = {
            row["user_id"] for row in mock_data["notifications"]
            if row["type"] == "job_approved"
        }
        assert approved_recipients == {REQUESTER_ID, ADMIN_ID}

    @pytest.mark.unit
    def test_reject_and_resubmit(self, service, mock_data, two_level_flow):
        from djflow.models.enums import JobStatus, LevelOutcomeType

        job_id = _create(service).job.id

        rejected = service.reject(job_id, 22, "Logo too small")
        assert rejected.outcome.outcome == LevelOutcomeType.REWORK
        assert rejected.job.status == JobStatus.REWORK
        assert any(row["type"] == "job_rejected" for row in mock_data["notifications"])

        resubmitted = service.submit_job(job_id, REQUESTER_ID)

        assert resubmitted.job.status == JobStatus.PENDING_APPROVAL
        assert resubmitted.job.approval_round == 2
        assert resubmitted.job.current_level == 1

    @pytest.mark.unit
    def test_final_reject_cannot_resubmit(self, service, two_level_flow):
        from djflow.core.exceptions import InvalidTransitionError

        job_id = _create(service).job.id
        service.reject(job_id, 21, "Not needed", final=True)

        with pytest.raises(InvalidTransitionError):
            service.submit_job(job_id, REQUESTER_ID)


class TestAssignment:
    """Tests for manual assignment and the urgent cascade."""

    @pytest.mark.unit
    def test_manual_assignment(self, service, create_test_flow):
        from djflow.models.enums import JobStatus

        create_test_flow(job_type_id=None, levels=[level(1, [21])])
        job_id = _create(service).job.id
        service.approve(job_id, 21)

        result = service.assign_manually(job_id, ASSIGNEE_ID, MANAGER_ID)

        assert result.job.status == JobStatus.ASSIGNED
        assert result.job.assignee_id == ASSIGNEE_ID

    @pytest.mark.unit
    def test_requester_cannot_assign(self, service, create_test_flow):
        from djflow.core.exceptions import PermissionDeniedError

        create_test_flow(job_type_id=None, levels=[level(1, [21])])
        job_id = _create(service).job.id
        service.approve(job_id, 21)

        with pytest.raises(PermissionDeniedError):
            service.assign_manually(job_id, ASSIGNEE_ID, REQUESTER_ID)

    @pytest.mark.unit
    def test_cannot_assign_pending_job(self, service, two_level_flow):
        from djflow.core.exceptions import InvalidTransitionError

        job_id = _create(service).job.id

        with pytest.raises(InvalidTransitionError):
            service.assign_manually(job_id, ASSIGNEE_ID, ADMIN_ID)

    @pytest.mark.unit
    def test_urgent_skip_job_shifts_assignee_queue(self, service, fresh_mock_client, skip_flow, create_test_job):
        queued = create_test_job(status="assigned", due_date=date(2025, 4, 22))
        finished = create_test_job(status="completed", due_date=date(2025, 4, 22))

        result = _create(service, job_type_id=SKIP_JOB_TYPE_ID, priority="Urgent", due_date=date(2025, 4, 21))

        assert result.shift is not None
        assert [item.job_id for item in result.shift.shifted] == [queued["id"]]
        assert fresh_mock_client.get_job(queued["id"])["due_date"] == "2025-04-24"
        assert fresh_mock_client.get_job(finished["id"])["due_date"] == "2025-04-22"
        assert fresh_mock_client.get_job(result.job.id)["due_date"] == "2025-04-21"

    @pytest.mark.unit
    def test_normal_job_does_not_shift(self, service, skip_flow, create_test_job):
        create_test_job(status="assigned", due_date=date(2025, 4, 22))

        result = _create(service, job_type_id=SKIP_JOB_TYPE_ID)

        assert result.shift is None

    @pytest.mark.unit
    def test_rerun_requires_urgent_job(self, service, skip_flow):
        from djflow.core.exceptions import ValidationError

        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id

        with pytest.raises(ValidationError):
            service.rerun_urgent_shift(job_id, ADMIN_ID)

    @pytest.mark.unit
    def test_rerun_skips_already_shifted(self, service, skip_flow, create_test_job):
        create_test_job(status="assigned", due_date=date(2025, 4, 22))
        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID, priority="Urgent").job.id

        rerun = service.rerun_urgent_shift(job_id, ADMIN_ID)

        assert rerun.shifted == []
        assert len(rerun.skipped) == 1


class TestExecution:
    """Tests for start and complete."""

    @pytest.mark.unit
    def test_assignee_starts_and_completes(self, service, mock_data, skip_flow):
        from djflow.models.enums import JobStatus

        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id

        started = service.start_job(job_id, ASSIGNEE_ID)
        completed = service.complete_job(job_id, ASSIGNEE_ID)

        assert started.job.status == JobStatus.IN_PROGRESS
        assert completed.job.status == JobStatus.COMPLETED
        assert completed.job.completed_at is not None
        assert any(row["type"] == "job_completed" for row in mock_data["notifications"])

    @pytest.mark.unit
    def test_outsider_cannot_start(self, service, skip_flow):
        from djflow.core.exceptions import PermissionDeniedError

        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id

        with pytest.raises(PermissionDeniedError):
            service.start_job(job_id, OUTSIDER_ID)

    @pytest.mark.unit
    def test_cannot_complete_before_start(self, service, skip_flow):
        from djflow.core.exceptions import InvalidTransitionError

        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id

        with pytest.raises(InvalidTransitionError):
            service.complete_job(job_id, ASSIGNEE_ID)


class TestDecisionPermissions:
    """Tests for the capability checks on approve, reject and work."""

    @pytest.fixture
    def scoped_approver(self, mock_data):
        """An approver whose role only covers the side project."""
        mock_data["user_roles"].append({
            "id": len(mock_data["user_roles"]) + 1,
            "user_id": 24,
            "role_name": "approver",
            "scope_level": "project",
            "scope_id": ORPHAN_PROJECT_ID,
            "is_active": True,
        })
        return 24

    @pytest.mark.unit
    def test_approver_out_of_scope_cannot_approve(self, service, mock_data, create_test_flow, scoped_approver):
        from djflow.core.exceptions import PermissionDeniedError
        from djflow.models.enums import JobStatus

        create_test_flow(job_type_id=None, levels=[level(1, [scoped_approver])])
        job_id = _create(service).job.id

        with pytest.raises(PermissionDeniedError) as exc_info:
            service.approve(job_id, scoped_approver)

        assert exc_info.value.details["action"] == "approve_job"
        assert mock_data["job_approvals"] == []
        assert service.db.get_job(job_id)["status"] == JobStatus.PENDING_APPROVAL.value

    @pytest.mark.unit
    def test_approver_out_of_scope_cannot_reject(self, service, mock_data, create_test_flow, scoped_approver):
        from djflow.core.exceptions import PermissionDeniedError

        create_test_flow(job_type_id=None, levels=[level(1, [scoped_approver])])
        job_id = _create(service).job.id

        with pytest.raises(PermissionDeniedError):
            service.reject(job_id, scoped_approver, "Wrong format")

        assert mock_data["job_approvals"] == []

    @pytest.mark.unit
    def test_assignee_without_role_cannot_start(self, service, skip_flow):
        from djflow.core.exceptions import PermissionDeniedError

        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id
        service.assign_manually(job_id, OUTSIDER_ID, MANAGER_ID)

        with pytest.raises(PermissionDeniedError):
            service.start_job(job_id, OUTSIDER_ID)

    @pytest.mark.unit
    def test_manager_can_start_for_assignee(self, service, skip_flow):
        from djflow.models.enums import JobStatus

        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id

        result = service.start_job(job_id, MANAGER_ID)

        assert result.job.status == JobStatus.IN_PROGRESS


class TestUrgentCascadeOnAssignment:
    """Tests for the cascade after approval and manual assignment."""

    @pytest.mark.unit
    def test_approved_urgent_job_shifts_team_lead_queue(
        self, service, fresh_mock_client, two_level_flow, create_test_job
    ):
        peer = create_test_job(status="assigned", due_date=date(2025, 4, 22), assignee_id=TEAM_LEAD_ID)

        job_id = _create(service, priority="Urgent", due_date=date(2025, 4, 21)).job.id
        first = service.approve(job_id, 21)
        assert first.shift is None

        final = service.approve(job_id, 23)

        assert final.job.assignee_id == TEAM_LEAD_ID
        assert [item.job_id for item in final.shift.shifted] == [peer["id"]]
        assert fresh_mock_client.get_job(peer["id"])["due_date"] == "2025-04-24"

    @pytest.mark.unit
    def test_approved_urgent_job_shifts_manager_queue(
        self, service, fresh_mock_client, create_test_flow, create_test_job
    ):
        create_test_flow(job_type_id=None, levels=[level(1, [21])], include_team_lead=True)
        peer = create_test_job(status="in_progress", due_date=date(2025, 4, 25), assignee_id=MANAGER_ID)

        job_id = _create(service, priority="Urgent", due_date=date(2025, 4, 21)).job.id
        result = service.approve(job_id, 21)

        assert result.job.assignee_id == MANAGER_ID
        assert [item.job_id for item in result.shift.shifted] == [peer["id"]]
        assert fresh_mock_client.get_job(peer["id"])["due_date"] == "2025-04-29"

    @pytest.mark.unit
    def test_manual_assignment_runs_cascade_once_per_assignee(
        self, service, fresh_mock_client, mock_data, create_test_flow, create_test_job
    ):
        create_test_flow(job_type_id=None, levels=[level(1, [21])])
        peer = create_test_job(status="assigned", due_date=date(2025, 4, 22))
        lead_peer = create_test_job(status="assigned", due_date=date(2025, 4, 22), assignee_id=TEAM_LEAD_ID)

        job_id = _create(service, priority="Urgent", due_date=date(2025, 4, 21)).job.id
        approved = service.approve(job_id, 21)
        assert approved.shift is None

        first = service.assign_manually(job_id, ASSIGNEE_ID, MANAGER_ID)
        assert [item.job_id for item in first.shift.shifted] == [peer["id"]]
        assert fresh_mock_client.get_job(peer["id"])["due_date"] == "2025-04-24"

        again = service.assign_manually(job_id, ASSIGNEE_ID, MANAGER_ID)
        assert again.shift is None
        assert fresh_mock_client.get_job(peer["id"])["due_date"] == "2025-04-24"
        assert len(mock_data["sla_shift_logs"]) == 1

        moved = service.assign_manually(job_id, TEAM_LEAD_ID, MANAGER_ID)
        assert [item.job_id for item in moved.shift.shifted] == [lead_peer["id"]]
        assert fresh_mock_client.get_job(lead_peer["id"])["due_date"] == "2025-04-24"

    @pytest.mark.unit
    @pytest.mark.edge
    def test_cascade_failure_does_not_fail_create(
        self, service, fresh_mock_client, mock_data, skip_flow, create_test_job
    ):
        from djflow.core.exceptions import PersistenceError
        from djflow.models.enums import JobStatus

        broken = create_test_job(status="assigned", due_date=date(2025, 4, 22))
        healthy = create_test_job(status="in_progress", due_date=date(2025, 4, 25))
        real_lookup = fresh_mock_client.has_shift_log

        def flaky_lookup(job_id, urgent_job_id):
            if job_id == broken["id"]:
                raise PersistenceError("Shift log lookup failed", table="sla_shift_logs", operation="read")
            return real_lookup(job_id, urgent_job_id)

        with patch.object(fresh_mock_client, "has_shift_log", side_effect=flaky_lookup):
            result = _create(service, job_type_id=SKIP_JOB_TYPE_ID, priority="Urgent", due_date=date(2025, 4, 21))

        assert result.job.status == JobStatus.ASSIGNED
        assert fresh_mock_client.get_job(result.job.id)["status"] == "assigned"
        assert not result.shift.success
        assert [item["job_id"] for item in result.shift.failed] == [broken["id"]]
        assert fresh_mock_client.get_job(healthy["id"])["due_date"] == "2025-04-29"
        assert fresh_mock_client.get_job(broken["id"])["due_date"] == "2025-04-22"


class TestActivityTrail:
    """Tests for the append-only job activity trail."""

    @pytest.mark.unit
    def test_skip_job_lifecycle_trail(self, service, skip_flow):
        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id
        service.start_job(job_id, ASSIGNEE_ID)
        service.complete_job(job_id, ASSIGNEE_ID)

        trail = service.get_activities(job_id)

        assert [a.action.value for a in trail] == ["created", "assigned", "started", "completed"]
        assigned = trail[1]
        assert assigned.user_id == REQUESTER_ID
        assert assigned.from_status.value == "draft"
        assert assigned.to_status.value == "assigned"
        assert assigned.details == {"assignee_id": ASSIGNEE_ID, "source": "skip_matrix"}
        assert trail[3].user_id == ASSIGNEE_ID

    @pytest.mark.unit
    def test_decisions_are_recorded(self, service, two_level_flow):
        job_id = _create(service).job.id
        service.approve(job_id, 21)
        service.reject(job_id, 23, "Wrong colours")

        trail = service.get_activities(job_id)

        assert [a.action.value for a in trail] == ["created", "submitted", "approved", "rejected"]
        approved, rejected = trail[2], trail[3]
        assert approved.user_id == 21
        assert approved.details == {"level": 1, "outcome": "advanced"}
        assert rejected.user_id == 23
        assert rejected.to_status.value == "rework"
        assert rejected.details["comment"] == "Wrong colours"

    @pytest.mark.unit
    def test_stale_decision_is_not_recorded(self, service, two_level_flow):
        job_id = _create(service).job.id
        service.approve(job_id, 21)

        stale = service.approve(job_id, 22, level=1)

        assert stale.outcome.outcome.value == "noop"
        assert [a.action.value for a in service.get_activities(job_id)] == ["created", "submitted", "approved"]

    @pytest.mark.unit
    def test_manual_reassignment_keeps_previous_assignee(self, service, skip_flow):
        job_id = _create(service, job_type_id=SKIP_JOB_TYPE_ID).job.id

        service.assign_manually(job_id, TEAM_LEAD_ID, MANAGER_ID)

        last = service.get_activities(job_id)[-1]
        assert last.user_id == MANAGER_ID
        assert last.details == {
            "assignee_id": TEAM_LEAD_ID,
            "source": "manual",
            "previous_assignee_id": ASSIGNEE_ID,
        }

    @pytest.mark.unit
    @pytest.mark.edge
    def test_failed_activity_write_does_not_fail_command(self, service, fresh_mock_client, mock_data, two_level_flow):
        from djflow.core.exceptions import PersistenceError
        from djflow.models.enums import JobStatus

        with patch.object(
            fresh_mock_client,
            "append_job_activity",
            side_effect=PersistenceError("Insert failed", table="job_activities", operation="write")
        ):
            result = _create(service)

        assert result.job.status == JobStatus.PENDING_APPROVAL
        assert fresh_mock_client.get_job(result.job.id) is not None
        assert mock_data["job_activities"] == []

    @pytest.mark.unit
    def test_unknown_job(self, service):
        from djflow.core.exceptions import ResourceNotFoundError

        with pytest.raises(ResourceNotFoundError):
            service.get_activities(4242)
