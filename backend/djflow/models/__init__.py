# Data models - Enums and Pydantic Schemas
from .enums import (
    JobStatus,
    JobPriority,
    ApprovalLogic,
    ApprovalDecision,
    LevelOutcomeType,
    HolidayType,
    NotificationEvent,
    AssignmentSource,
    Role,
    ScopeLevel,
    Action,
    ActivityAction,
)
from .schemas import (
    ApprovalLevel,
    ApprovalFlowSave,
    ApprovalFlowInDB,
    JobTypeAssignment,
    JobInDB,
    ApprovalDecisionRecord,
    SLAShiftLog,
    JobActivity,
    HolidayCreate,
    HolidayUpdate,
    HolidayInDB,
    HolidayImportSummary,
)

__all__ = [
    # Enums
    "JobStatus",
    "JobPriority",
    "ApprovalLogic",
    "ApprovalDecision",
    "LevelOutcomeType",
    "HolidayType",
    "NotificationEvent",
    "AssignmentSource",
    "Role",
    "ScopeLevel",
    "Action",
    "ActivityAction",
    # Approval Flow Schemas
    "ApprovalLevel",
    "ApprovalFlowSave",
    "ApprovalFlowInDB",
    "JobTypeAssignment",
    # Job Schemas
    "JobInDB",
    "ApprovalDecisionRecord",
    "SLAShiftLog",
    "JobActivity",
    # Holiday Schemas
    "HolidayCreate",
    "HolidayUpdate",
    "HolidayInDB",
    "HolidayImportSummary",
]
