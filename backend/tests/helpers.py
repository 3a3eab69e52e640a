"""
Test helper values and functions for DJ Flow.

IDs of the users, projects and job types seeded by the `org` fixture,
plus small builders for stored rows and API calls.
"""
from datetime import date
from typing import Dict, Any, List, Optional

from fastapi.testclient import TestClient


ADMIN_ID = 1
REQUESTER_ID = 5
APPROVER_IDS = (21, 22, 23)
ASSIGNEE_ID = 40
TEAM_LEAD_ID = 50
MANAGER_ID = 900
OUTSIDER_ID = 999

PROJECT_ID = 10
ORPHAN_PROJECT_ID = 11
DEPARTMENT_ID = 1
JOB_TYPE_ID = 100
SKIP_JOB_TYPE_ID = 101


def level(number: int, approvers: List[int], logic: str = "any") -> Dict[str, Any]:
    """Stored shape of one approval level."""
    return {"level": number, "approvers": list(approvers), "logic": logic}


def as_user(user_id: int) -> Dict[str, str]:
    """Headers identifying the acting user."""
    return {"X-User-Id": str(user_id)}


def create_job(
    client: TestClient,
    *,
    requester_id: int = REQUESTER_ID,
    project_id: int = PROJECT_ID,
    job_type_id: int = JOB_TYPE_ID,
    subject: str = "Homepage banner",
    priority: str = "Normal",
    due_date: Optional[date] = None,
    submit: bool = True,
) -> Dict[str, Any]:
    """
    Create a job via API.

    Returns the response body or raises assertion error.
    """
    payload = {
        "project_id": project_id,
        "job_type_id": job_type_id,
        "subject": subject,
        "priority": priority,
        "submit": submit,
    }
    if due_date:
        payload["due_date"] = due_date.isoformat()

    response = client.post("/api/jobs", json=payload, headers=as_user(requester_id))
    assert response.status_code == 200, f"Failed to create job: {response.text}"
    return response.json()
