"""
Enum types that match the PostgreSQL ENUM / check-constraint values in Supabase.
These must stay in sync with the database schema.
"""
from enum import Enum


class JobStatus(str, Enum):
    """
    Job lifecycle status.
    Matches: check (status in ('draft', 'pending_approval', 'approved', 'assigned',
             'in_progress', 'completed', 'rejected', 'rework'))
    """
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"  # Terminal
    REWORK = "rework"  # Returned to requester


# Jobs in these statuses are still in someone's queue and get shifted by urgent work
ACTIVE_JOB_STATUSES = (
    JobStatus.PENDING_APPROVAL,
    JobStatus.APPROVED,
    JobStatus.ASSIGNED,
    JobStatus.IN_PROGRESS,
    JobStatus.REWORK,
)


class JobPriority(str, Enum):
    """Job priority. Only Urgent triggers the SLA shift."""
    LOW = "Low"
    NORMAL = "Normal"
    URGENT = "Urgent"


class ApprovalLogic(str, Enum):
    """How many approvers of a level must approve."""
    ANY = "any"
    ALL = "all"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class LevelOutcomeType(str, Enum):
    """Result of recording one approver decision."""
    RECORDED = "recorded"  # Level still waiting on other approvers (ALL logic)
    ADVANCED = "advanced"  # Job moved to the next level
    APPROVED = "approved"  # Last level completed
    REWORK = "rework"
    REJECTED = "rejected"
    NOOP = "noop"  # Stale or racing decision, nothing changed


class HolidayType(str, Enum):
    GOVERNMENT = "government"
    COMPANY = "company"


class NotificationEvent(str, Enum):
    """Event types understood by the notification sink."""
    JOB_CREATED = "job_created"
    JOB_APPROVED = "job_approved"
    JOB_REJECTED = "job_rejected"
    JOB_ASSIGNED = "job_assigned"
    JOB_COMPLETED = "job_completed"
    DEADLINE_APPROACHING = "deadline_approaching"
    URGENT_IMPACT = "urgent_impact"


class AssignmentSource(str, Enum):
    """Which rule produced an assignee."""
    SKIP_MATRIX = "skip_matrix"
    TEAM_LEAD = "team_lead"
    DEPARTMENT_MANAGER = "department_manager"
    MANUAL = "manual"


class Role(str, Enum):
    ADMIN = "admin"
    APPROVER = "approver"
    MANAGER = "manager"
    REQUESTER = "requester"
    ASSIGNEE = "assignee"


class ScopeLevel(str, Enum):
    """Breadth of a role assignment."""
    TENANT = "tenant"
    BUD = "bud"  # Business unit / department
    PROJECT = "project"


class Action(str, Enum):
    """Capabilities checked by the permission evaluator."""
    CREATE_JOB = "create_job"
    SUBMIT_JOB = "submit_job"
    APPROVE_JOB = "approve_job"
    ASSIGN_JOB = "assign_job"
    WORK_JOB = "work_job"
    MANAGE_FLOWS = "manage_flows"
    MANAGE_HOLIDAYS = "manage_holidays"


class ActivityAction(str, Enum):
    """What a job_activities row records."""
    CREATED = "created"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
