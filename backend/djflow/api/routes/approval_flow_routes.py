"""
Approval Flow API Routes for DJ Flow.

Manage per-project approval flows, their levels, skip-flows and the
job type assignment matrix. Writes require the manage_flows capability
of the user named in the X-User-Id header.
"""
from typing import Optional

from fastapi import APIRouter, Header, Path, Query
from pydantic import BaseModel, Field

from djflow.core.database import get_supabase_client
from djflow.models.enums import Action, ApprovalLogic
from djflow.models.schemas import ApprovalFlowSave, JobTypeAssignment
from djflow.services.approval_engine import ApprovalFlowEngine
from djflow.services.approval_flows import ApprovalFlowRepository
from djflow.services.permissions import CapabilityEvaluator


router = APIRouter(prefix="/api/approval-flows", tags=["Approval Flows"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class LevelCreate(BaseModel):
    """Request body for appending a level."""
    approvers: list[int] = Field(..., min_length=1, description="Approver pool (user ids)")
    logic: ApprovalLogic = Field(ApprovalLogic.ANY, description="any: one approval, all: every approver")


class MatrixEntry(BaseModel):
    job_type_id: int
    assignee_id: Optional[int] = None


class MatrixSave(BaseModel):
    """Request body for saving a project's assignment matrix."""
    entries: list[MatrixEntry]


class BulkSkipFlows(BaseModel):
    """Request body for creating skip-flows for several job types."""
    project_id: int
    job_type_ids: list[int] = Field(..., min_length=1)


def _require_manager(user_id: int, project_id: Optional[int] = None) -> None:
    CapabilityEvaluator(get_supabase_client()).require(user_id, Action.MANAGE_FLOWS, project_id)


# ==========================================
# ROUTING & MATRIX
# ==========================================

@router.get(
    "",
    summary="List Approval Flows",
    description="Get approval flows, optionally for one project"
)
async def list_flows(
    project_id: Optional[int] = Query(None, description="Filter by project")
) -> dict:
    repository = ApprovalFlowRepository(get_supabase_client())
    flows = repository.list_flows(project_id)
    return {
        "flows": [flow.model_dump(mode="json") for flow in flows],
        "count": len(flows)
    }


@router.get(
    "/route-preview",
    summary="Preview Routing",
    description="Show which flow a new job of this project and job type would follow"
)
async def preview_route(
    project_id: int = Query(...),
    job_type_id: Optional[int] = Query(None)
) -> dict:
    engine = ApprovalFlowEngine(get_supabase_client())
    return engine.route(project_id, job_type_id).to_dict()


@router.get(
    "/matrix/{project_id}",
    summary="Get Assignment Matrix",
    description="Default assignee per job type for a project"
)
async def get_matrix(project_id: int = Path(...)) -> dict:
    repository = ApprovalFlowRepository(get_supabase_client())
    return {
        "project_id": project_id,
        "entries": [entry.model_dump() for entry in repository.get_matrix(project_id)]
    }


@router.put(
    "/matrix/{project_id}",
    summary="Save Assignment Matrix",
    description="Upsert default assignees; clearing one used by a skip-flow is refused"
)
async def save_matrix(
    body: MatrixSave,
    project_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id, project_id)
    repository = ApprovalFlowRepository(get_supabase_client())
    saved = repository.save_matrix(project_id, [
        JobTypeAssignment(project_id=project_id, **entry.model_dump())
        for entry in body.entries
    ])
    return {
        "success": True,
        "entries": [entry.model_dump() for entry in saved]
    }


@router.post(
    "/skip-flows/bulk",
    summary="Create Skip-Flows",
    description="Create skip-flows for several job types; types without an assignee are refused"
)
async def bulk_create_skip_flows(
    body: BulkSkipFlows,
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id, body.project_id)
    repository = ApprovalFlowRepository(get_supabase_client())
    result = repository.bulk_create_skip_flows(body.project_id, body.job_type_ids)
    return {
        "success": not result["refused"],
        "created": [flow.model_dump(mode="json") for flow in result["created"]],
        "refused_job_type_ids": result["refused"]
    }


# ==========================================
# FLOW CRUD
# ==========================================

@router.get(
    "/{flow_id}",
    summary="Get Approval Flow"
)
async def get_flow(flow_id: int = Path(...)) -> dict:
    repository = ApprovalFlowRepository(get_supabase_client())
    return repository.get_flow(flow_id).model_dump(mode="json")


@router.post(
    "",
    summary="Save Approval Flow",
    description="Create a flow, or replace the one occupying the same project/job type slot"
)
async def create_flow(
    body: ApprovalFlowSave,
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id, body.project_id)
    repository = ApprovalFlowRepository(get_supabase_client())
    flow = repository.save_flow(body)
    return {"success": True, "flow": flow.model_dump(mode="json")}


@router.put(
    "/{flow_id}",
    summary="Update Approval Flow"
)
async def update_flow(
    body: ApprovalFlowSave,
    flow_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id, body.project_id)
    repository = ApprovalFlowRepository(get_supabase_client())
    flow = repository.save_flow(body.model_copy(update={"id": flow_id}))
    return {"success": True, "flow": flow.model_dump(mode="json")}


@router.delete(
    "/{flow_id}",
    summary="Delete Approval Flow"
)
async def delete_flow(
    flow_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    repository = ApprovalFlowRepository(get_supabase_client())
    flow = repository.get_flow(flow_id)
    _require_manager(x_user_id, flow.project_id)
    repository.delete_flow(flow_id)
    return {"success": True, "deleted": flow.model_dump(mode="json")}


# ==========================================
# LEVELS
# ==========================================

@router.post(
    "/{flow_id}/levels",
    summary="Add Level",
    description="Append an approval level after the last one"
)
async def add_level(
    body: LevelCreate,
    flow_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    repository = ApprovalFlowRepository(get_supabase_client())
    _require_manager(x_user_id, repository.get_flow(flow_id).project_id)
    flow = repository.add_level(flow_id, body.approvers, body.logic)
    return {"success": True, "flow": flow.model_dump(mode="json")}


@router.delete(
    "/{flow_id}/levels/{level}",
    summary="Remove Level",
    description="Remove a level; the levels after it move up by one"
)
async def remove_level(
    flow_id: int = Path(...),
    level: int = Path(..., ge=1),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    repository = ApprovalFlowRepository(get_supabase_client())
    _require_manager(x_user_id, repository.get_flow(flow_id).project_id)
    flow = repository.remove_level(flow_id, level)
    return {"success": True, "flow": flow.model_dump(mode="json")}
