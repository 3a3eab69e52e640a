# Services - Business Logic Layer
"""
DJ Flow Services Module.

This module provides the core business logic for:
- Holiday-aware working day arithmetic
- Approval flow storage, routing and level progression
- Auto assignment and the urgent SLA cascade
- Notification dispatch and capability checks
"""

# Holiday Calendar & Business Days
from .holiday_calendar import (
    HolidayCalendar,
    load_holiday_calendar,
    invalidate_holiday_cache,
)
from .business_days import (
    is_weekend,
    is_working_day,
    add_working_days,
    working_days_between,
    calculate_due_date,
    get_deadline_urgency,
)

# Approval Flows
from .approval_flows import (
    ApprovalFlowRepository,
    renumber_levels,
    add_level,
    remove_level,
    validate_flow,
)
from .approval_engine import (
    ApprovalFlowEngine,
    RouteDecision,
    LevelOutcome,
)

# Assignment & Scheduling
from .auto_assignment import AutoAssignmentResolver, AssignmentResult
from .urgent_scheduler import UrgentJobScheduler, ShiftResult, ShiftedJob

# Notifications & Permissions
from .notifications import NotificationDispatcher, NotificationResult
from .permissions import CapabilityEvaluator

# Workflow
from .job_workflow import JobWorkflowService, JobCommandResult


__all__ = [
    # Holiday Calendar & Business Days
    "HolidayCalendar",
    "load_holiday_calendar",
    "invalidate_holiday_cache",
    "is_weekend",
    "is_working_day",
    "add_working_days",
    "working_days_between",
    "calculate_due_date",
    "get_deadline_urgency",

    # Approval Flows
    "ApprovalFlowRepository",
    "renumber_levels",
    "add_level",
    "remove_level",
    "validate_flow",
    "ApprovalFlowEngine",
    "RouteDecision",
    "LevelOutcome",

    # Assignment & Scheduling
    "AutoAssignmentResolver",
    "AssignmentResult",
    "UrgentJobScheduler",
    "ShiftResult",
    "ShiftedJob",

    # Notifications & Permissions
    "NotificationDispatcher",
    "NotificationResult",
    "CapabilityEvaluator",

    # Workflow
    "JobWorkflowService",
    "JobCommandResult",
]
