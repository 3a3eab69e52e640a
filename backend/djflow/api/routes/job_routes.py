"""
Job API Routes for DJ Flow.

Create jobs and move them through approval, assignment and execution.
The acting user is read from the X-User-Id header.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Path, Query
from pydantic import BaseModel, Field

from djflow.core.database import get_supabase_client
from djflow.models.enums import JobPriority, JobStatus
from djflow.services.job_workflow import JobWorkflowService


router = APIRouter(prefix="/api/jobs", tags=["Jobs"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class JobCreate(BaseModel):
    """Request body for creating a job."""
    project_id: int
    job_type_id: int
    subject: str = Field(..., min_length=1, max_length=500)
    priority: JobPriority = JobPriority.NORMAL
    due_date: Optional[date] = Field(None, description="Defaults to the job type SLA in working days")
    submit: bool = Field(True, description="False keeps the job as a draft")


class ApproveRequest(BaseModel):
    comment: Optional[str] = None
    level: Optional[int] = Field(None, ge=1, description="Level the approver is deciding")


class RejectRequest(BaseModel):
    comment: Optional[str] = Field(None, description="Required; sent to the requester")
    final: bool = Field(False, description="Reject terminally instead of returning for rework")
    level: Optional[int] = Field(None, ge=1)


class AssignRequest(BaseModel):
    assignee_id: int


# ==========================================
# JOB QUERIES
# ==========================================

@router.get(
    "",
    summary="List Jobs"
)
async def list_jobs(
    assignee_id: Optional[int] = Query(None),
    status: Optional[JobStatus] = Query(None),
    project_id: Optional[int] = Query(None)
) -> dict:
    db = get_supabase_client()
    jobs = db.list_jobs(
        assignee_id=assignee_id,
        status=status.value if status else None,
        project_id=project_id
    )
    return {"jobs": jobs, "count": len(jobs)}


@router.get(
    "/{job_id}",
    summary="Get Job"
)
async def get_job(job_id: int = Path(...)) -> dict:
    db = get_supabase_client()
    job = db.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get(
    "/{job_id}/approvals",
    summary="Approval History",
    description="Every recorded approve/reject decision for the job"
)
async def get_approvals(job_id: int = Path(...)) -> dict:
    db = get_supabase_client()
    approvals = db.get_job_approvals(job_id)
    return {"job_id": job_id, "approvals": approvals, "count": len(approvals)}


@router.get(
    "/{job_id}/shift-logs",
    summary="SLA Shift Logs",
    description="Due date shifts applied to this job, and shifts this job caused as urgent work"
)
async def get_shift_logs(job_id: int = Path(...)) -> dict:
    db = get_supabase_client()
    return {
        "job_id": job_id,
        "shifted": db.get_shift_logs(job_id=job_id),
        "caused": db.get_shift_logs(urgent_job_id=job_id),
    }


@router.get(
    "/{job_id}/activities",
    summary="Activity Trail",
    description="Who created, submitted, decided, assigned, started and completed the job, oldest first"
)
async def get_activities(job_id: int = Path(...)) -> dict:
    service = JobWorkflowService(get_supabase_client())
    activities = [a.model_dump(mode="json") for a in service.get_activities(job_id)]
    return {"job_id": job_id, "activities": activities, "count": len(activities)}


# ==========================================
# JOB COMMANDS
# ==========================================

@router.post(
    "",
    summary="Create Job",
    description="Create a job and route it to its approval flow (or straight to the assignee)"
)
async def create_job(
    body: JobCreate,
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    result = service.create_job(
        requester_id=x_user_id,
        project_id=body.project_id,
        job_type_id=body.job_type_id,
        subject=body.subject,
        priority=body.priority,
        due_date=body.due_date,
        submit=body.submit,
    )
    return result.to_dict()


@router.post("/{job_id}/submit", summary="Submit Job")
async def submit_job(
    job_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    return service.submit_job(job_id, x_user_id).to_dict()


@router.post("/{job_id}/approve", summary="Approve Current Level")
async def approve_job(
    body: ApproveRequest,
    job_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    return service.approve(job_id, x_user_id, body.comment, body.level).to_dict()


@router.post("/{job_id}/reject", summary="Reject Current Level")
async def reject_job(
    body: RejectRequest,
    job_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    return service.reject(job_id, x_user_id, body.comment, body.final, body.level).to_dict()


@router.post("/{job_id}/assign", summary="Assign Job Manually")
async def assign_job(
    body: AssignRequest,
    job_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    return service.assign_manually(job_id, body.assignee_id, x_user_id).to_dict()


@router.post("/{job_id}/start", summary="Start Work")
async def start_job(
    job_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    return service.start_job(job_id, x_user_id).to_dict()


@router.post("/{job_id}/complete", summary="Complete Job")
async def complete_job(
    job_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    return service.complete_job(job_id, x_user_id).to_dict()


@router.post(
    "/{job_id}/urgent-shift",
    summary="Re-run Urgent Shift",
    description="Retry the due date cascade of an urgent job; jobs already shifted are skipped"
)
async def rerun_urgent_shift(
    job_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    service = JobWorkflowService(get_supabase_client())
    return service.rerun_urgent_shift(job_id, x_user_id).to_dict()
