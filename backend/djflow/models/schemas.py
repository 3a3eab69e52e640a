"""
Pydantic schemas for data validation and serialization.
Covers approval flows, the assignment matrix, jobs, approval decisions,
SLA shift logs, job activities and holidays.
"""
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import (
    ActivityAction,
    ApprovalDecision,
    ApprovalLogic,
    HolidayType,
    JobPriority,
    JobStatus,
)


# ==========================================
# BASE SCHEMAS
# ==========================================

class TimestampMixin(BaseModel):
    """Mixin for created_at timestamp."""
    created_at: Optional[datetime] = None


# ==========================================
# APPROVAL FLOW SCHEMAS
# ==========================================

class ApprovalLevel(BaseModel):
    """One sequential approval stage with its own approver pool."""
    level: int = Field(..., ge=1)
    approvers: list[int] = Field(default_factory=list)
    logic: ApprovalLogic = ApprovalLogic.ANY

    @field_validator("approvers")
    @classmethod
    def dedupe_approvers(cls, v: list[int]) -> list[int]:
        """Keep the first occurrence of each approver."""
        return list(dict.fromkeys(v))


class ApprovalFlowBase(BaseModel):
    """Base approval flow fields."""
    project_id: int
    job_type_id: Optional[int] = None  # None = the project's default flow
    name: Optional[str] = Field(None, max_length=200)
    is_active: bool = True
    skip_approval: bool = False
    levels: list[ApprovalLevel] = Field(default_factory=list)
    include_team_lead: bool = False
    team_lead_id: Optional[int] = None

    @property
    def is_default(self) -> bool:
        return self.job_type_id is None


class ApprovalFlowSave(ApprovalFlowBase):
    """Schema for creating or replacing a flow."""
    id: Optional[int] = None


class ApprovalFlowInDB(ApprovalFlowBase, TimestampMixin):
    """Schema for approval flow as stored in database."""
    id: int
    updated_at: Optional[datetime] = None


# ==========================================
# ASSIGNMENT MATRIX SCHEMAS
# ==========================================

class JobTypeAssignment(BaseModel):
    """Default assignee for one job type within a project."""
    project_id: int
    job_type_id: int
    assignee_id: Optional[int] = None


# ==========================================
# JOB SCHEMAS
# ==========================================

class JobBase(BaseModel):
    """Base job fields."""
    project_id: int
    job_type_id: int
    subject: str = Field("", max_length=500)
    priority: JobPriority = JobPriority.NORMAL
    due_date: Optional[date] = None


class JobInDB(JobBase, TimestampMixin):
    """Schema for job as stored in database."""
    id: int
    requester_id: Optional[int] = None
    status: JobStatus = JobStatus.DRAFT
    flow_id: Optional[int] = None
    current_level: Optional[int] = None
    approval_round: int = 0
    original_due_date: Optional[date] = None
    shifted_by_job_id: Optional[int] = None
    assignee_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_urgent(self) -> bool:
        return self.priority == JobPriority.URGENT


# ==========================================
# APPROVAL DECISION SCHEMAS
# ==========================================

class ApprovalDecisionRecord(TimestampMixin):
    """One approver's decision on one level of one approval round."""
    id: Optional[int] = None
    job_id: int
    level: int = Field(..., ge=1)
    approval_round: int = Field(1, ge=1)
    approver_id: int
    decision: ApprovalDecision
    comment: Optional[str] = None


# ==========================================
# SLA SHIFT LOG SCHEMAS
# ==========================================

class SLAShiftLog(TimestampMixin):
    """Immutable record of one urgent-driven due date change."""
    id: Optional[int] = None
    job_id: int
    urgent_job_id: int
    original_due_date: date  # The job's first-ever due date
    new_due_date: date
    shift_days: int = Field(..., ge=1)


# ==========================================
# JOB ACTIVITY SCHEMAS
# ==========================================

class JobActivity(TimestampMixin):
    """Append-only audit row: who did what to a job."""
    id: Optional[int] = None
    job_id: int
    user_id: Optional[int] = None  # None = done by the system
    action: ActivityAction
    from_status: Optional[JobStatus] = None
    to_status: Optional[JobStatus] = None
    details: dict = Field(default_factory=dict)


# ==========================================
# HOLIDAY SCHEMAS
# ==========================================

class HolidayBase(BaseModel):
    """Base holiday fields."""
    name: str = Field(..., min_length=1, max_length=100)
    holiday_date: date
    holiday_type: HolidayType = HolidayType.GOVERNMENT
    is_recurring: bool = False


class HolidayCreate(HolidayBase):
    pass


class HolidayUpdate(BaseModel):
    """Partial holiday update; at least one field must be set."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    holiday_date: Optional[date] = None
    holiday_type: Optional[HolidayType] = None
    is_recurring: Optional[bool] = None

    @model_validator(mode='after')
    def require_a_field(self) -> 'HolidayUpdate':
        if not self.model_dump(exclude_none=True):
            raise ValueError("No fields to update")
        return self


class HolidayInDB(HolidayBase, TimestampMixin):
    """Schema for holiday as stored in database."""
    id: int


# ==========================================
# IMPORT SCHEMAS
# ==========================================

class HolidayImportSummary(BaseModel):
    """Counts returned by a holiday spreadsheet import."""
    added: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
