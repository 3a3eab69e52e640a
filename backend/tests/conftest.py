"""
Pytest fixtures and configuration for DJ Flow tests.

Provides:
- In-memory Supabase table mock driven through the real SupabaseClient methods
- Test client with the mock patched into every route module
- Time freezing utilities
- Organisation, flow, job and holiday factories
"""
import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

import pytest
from datetime import date, datetime, timezone
from typing import Generator, Dict, Any, Optional, List
from unittest.mock import patch

from fastapi.testclient import TestClient
from freezegun import freeze_time

from djflow.core.database import SupabaseClient
from djflow.main import app
from djflow.services.holiday_calendar import invalidate_holiday_cache

from helpers import (
    ADMIN_ID,
    APPROVER_IDS,
    ASSIGNEE_ID,
    DEPARTMENT_ID,
    JOB_TYPE_ID,
    MANAGER_ID,
    ORPHAN_PROJECT_ID,
    OUTSIDER_ID,
    PROJECT_ID,
    REQUESTER_ID,
    SKIP_JOB_TYPE_ID,
    TEAM_LEAD_ID,
)


TABLES = (
    "approval_flows",
    "project_job_assignments",
    "holidays",
    "jobs",
    "job_approvals",
    "sla_shift_logs",
    "job_activities",
    "projects",
    "departments",
    "job_types",
    "user_roles",
    "notification_settings",
    "notifications",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _next_id(rows: list) -> int:
    return max((row.get("id") or 0 for row in rows), default=0) + 1


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)

    def execute(self):
        return self


class MockSupabaseTable:
    """Mock Supabase query builder over one in-memory table."""

    def __init__(self, table_name: str, mock_data: Dict[str, list]):
        self.table_name = table_name
        self.mock_data = mock_data
        self._filters = []
        self._order_by = None
        self._order_desc = False
        self._limit = None
        self._range_start = 0
        self._range_end = None
        self._update_data = None
        self._delete = False
        self._pending = None

    @property
    def rows(self) -> list:
        return self.mock_data.setdefault(self.table_name, [])

    def select(self, fields: str = "*", count: str = None):
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self._filters.append(("neq", column, value))
        return self

    def in_(self, column: str, values: list):
        self._filters.append(("in", column, values))
        return self

    def gte(self, column: str, value: Any):
        self._filters.append(("gte", column, value))
        return self

    def lte(self, column: str, value: Any):
        self._filters.append(("lte", column, value))
        return self

    def is_(self, column: str, value: Any):
        """IS filter (for null checks)."""
        self._filters.append(("is", column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self._order_by = column
        self._order_desc = desc
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range_start = start
        self._range_end = end
        return self

    def _store(self, item: dict) -> dict:
        row = dict(item)
        if row.get("id") is None:
            row["id"] = _next_id(self.rows)
        row.setdefault("created_at", _now_iso())
        self.rows.append(row)
        return row

    def insert(self, data: Any):
        """Mock insert; rows are written on execute()."""
        items = data if isinstance(data, list) else [data]
        self._pending = lambda: [self._store(item) for item in items]
        return self

    def upsert(self, data: Any, on_conflict: str = None):
        """Mock upsert keyed on the on_conflict columns (id by default)."""
        items = data if isinstance(data, list) else [data]
        keys = [key.strip() for key in (on_conflict or "id").split(",")]

        def _apply():
            results = []
            for item in items:
                existing = next(
                    (row for row in self.rows if all(row.get(k) == item.get(k) for k in keys)),
                    None
                )
                if existing:
                    existing.update(item)
                    existing["updated_at"] = _now_iso()
                    results.append(existing)
                else:
                    results.append(self._store(item))
            return results

        self._pending = _apply
        return self

    def update(self, data: dict):
        """Mock update operation - returns self for chaining."""
        self._update_data = data
        return self

    def delete(self):
        """Mock delete operation - returns self for chaining."""
        self._delete = True
        return self

    def _apply_filters(self, results: list) -> list:
        """Apply all filters to results."""
        for op, column, value in self._filters:
            if op == "eq":
                results = [r for r in results if r.get(column) == value]
            elif op == "neq":
                results = [r for r in results if r.get(column) != value]
            elif op == "in":
                results = [r for r in results if r.get(column) in value]
            elif op == "gte":
                results = [r for r in results if r.get(column) is not None and r.get(column) >= value]
            elif op == "lte":
                results = [r for r in results if r.get(column) is not None and r.get(column) <= value]
            elif op == "is":
                expected = None if value in ("null", None) else value
                results = [r for r in results if r.get(column) is expected]

        return results

    def execute(self):
        """Execute the query and return results."""
        if self._pending is not None:
            return MockSupabaseResponse(self._pending())

        results = self._apply_filters(list(self.rows))

        # Handle update
        if self._update_data is not None:
            for result in results:
                result.update(self._update_data)
            return MockSupabaseResponse(results)

        # Handle delete
        if self._delete:
            for result in results:
                self.rows.remove(result)
            return MockSupabaseResponse(results)

        if self._order_by:
            column = self._order_by
            results.sort(
                key=lambda x: (x.get(column) is None, x.get(column)),
                reverse=self._order_desc
            )

        total_count = len(results)

        if self._range_end is not None:
            results = results[self._range_start:self._range_end + 1]
        elif self._limit:
            results = results[:self._limit]

        return MockSupabaseResponse(results, count=total_count)


class MockSupabaseClientInner:
    """Mock inner Supabase client (the actual client with table() method)."""

    def __init__(self, mock_data: Dict[str, list]):
        self.mock_data = mock_data

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self.mock_data)


class MockSupabaseClient(SupabaseClient):
    """
    SupabaseClient whose .client is the in-memory mock.

    Every data-access method and the transaction manager are the real
    ones, so tests exercise the same queries production runs.
    """

    def __new__(cls):
        return object.__new__(cls)

    def __init__(self):
        self.mock_data: Dict[str, list] = {table: [] for table in TABLES}
        self._client = MockSupabaseClientInner(self.mock_data)
        self._transaction = None


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture(scope="function")
def fresh_mock_client() -> MockSupabaseClient:
    """Function-scoped fresh mock client (clean for each test)."""
    return MockSupabaseClient()


@pytest.fixture(scope="function")
def mock_data(fresh_mock_client) -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return fresh_mock_client.mock_data


@pytest.fixture(scope="function")
def client(fresh_mock_client) -> Generator[TestClient, None, None]:
    """
    Create test client with mocked Supabase.

    Each test gets a fresh mock client with clean data.
    """
    with patch("djflow.core.database.get_supabase_client", return_value=fresh_mock_client):
        with patch("djflow.api.routes.approval_flow_routes.get_supabase_client", return_value=fresh_mock_client):
            with patch("djflow.api.routes.job_routes.get_supabase_client", return_value=fresh_mock_client):
                with patch("djflow.api.routes.holiday_routes.get_supabase_client", return_value=fresh_mock_client):
                    with TestClient(app) as test_client:
                        yield test_client


@pytest.fixture(autouse=True)
def reset_holiday_cache():
    """Every test starts and ends without a cached holiday calendar."""
    invalidate_holiday_cache()
    yield
    invalidate_holiday_cache()


# ==========================================
# TIME FIXTURES
# ==========================================

@pytest.fixture
def frozen_monday():
    """Freeze time at Monday 8:00 AM UTC (April 14, 2025)."""
    monday = datetime(2025, 4, 14, 8, 0, 0)
    with freeze_time(monday):
        yield monday


@pytest.fixture
def frozen_friday():
    """Freeze time at Friday 8:00 AM UTC (April 18, 2025)."""
    friday = datetime(2025, 4, 18, 8, 0, 0)
    with freeze_time(friday):
        yield friday


# ==========================================
# ORGANISATION FIXTURES
# ==========================================

@pytest.fixture
def org(mock_data) -> Dict[str, Any]:
    """
    One department with a manager, a project in it, a project with no
    department, two job types and a role for each test user.
    """
    mock_data["departments"].append({"id": DEPARTMENT_ID, "name": "Creative", "manager_id": MANAGER_ID})
    mock_data["projects"].extend([
        {"id": PROJECT_ID, "name": "Spring Campaign", "department_id": DEPARTMENT_ID},
        {"id": ORPHAN_PROJECT_ID, "name": "Side Project", "department_id": None},
    ])
    mock_data["job_types"].extend([
        {"id": JOB_TYPE_ID, "name": "Banner", "sla_working_days": 3},
        {"id": SKIP_JOB_TYPE_ID, "name": "Resize", "sla_working_days": 1},
    ])

    roles = [
        (ADMIN_ID, "admin"),
        (REQUESTER_ID, "requester"),
        (ASSIGNEE_ID, "assignee"),
        (TEAM_LEAD_ID, "assignee"),
        (MANAGER_ID, "manager"),
        *[(approver_id, "approver") for approver_id in APPROVER_IDS],
    ]
    for user_id, role_name in roles:
        mock_data["user_roles"].append({
            "id": _next_id(mock_data["user_roles"]),
            "user_id": user_id,
            "role_name": role_name,
            "scope_level": "tenant",
            "scope_id": None,
            "is_active": True,
        })

    return {
        "admin_id": ADMIN_ID,
        "requester_id": REQUESTER_ID,
        "approver_ids": list(APPROVER_IDS),
        "assignee_id": ASSIGNEE_ID,
        "team_lead_id": TEAM_LEAD_ID,
        "manager_id": MANAGER_ID,
        "outsider_id": OUTSIDER_ID,
        "project_id": PROJECT_ID,
        "orphan_project_id": ORPHAN_PROJECT_ID,
        "department_id": DEPARTMENT_ID,
        "job_type_id": JOB_TYPE_ID,
        "skip_job_type_id": SKIP_JOB_TYPE_ID,
    }


# ==========================================
# UTILITY FIXTURES
# ==========================================

@pytest.fixture
def create_test_flow(mock_data):
    """Factory fixture to store an approval flow row."""
    def _create(
        project_id: int = PROJECT_ID,
        job_type_id: Optional[int] = None,
        levels: Optional[List[Dict[str, Any]]] = None,
        skip_approval: bool = False,
        is_active: bool = True,
        include_team_lead: bool = False,
        team_lead_id: Optional[int] = None,
        name: str = "Test Flow",
    ) -> Dict[str, Any]:
        flow = {
            "id": _next_id(mock_data["approval_flows"]),
            "project_id": project_id,
            "job_type_id": job_type_id,
            "name": name,
            "is_active": is_active,
            "skip_approval": skip_approval,
            "levels": levels if levels is not None else [],
            "include_team_lead": include_team_lead,
            "team_lead_id": team_lead_id,
            "created_at": _now_iso(),
        }
        mock_data["approval_flows"].append(flow)
        return flow

    return _create


@pytest.fixture
def create_test_assignment(mock_data):
    """Factory fixture to store an assignment matrix row."""
    def _create(
        job_type_id: int = SKIP_JOB_TYPE_ID,
        assignee_id: Optional[int] = ASSIGNEE_ID,
        project_id: int = PROJECT_ID,
    ) -> Dict[str, Any]:
        entry = {
            "id": _next_id(mock_data["project_job_assignments"]),
            "project_id": project_id,
            "job_type_id": job_type_id,
            "assignee_id": assignee_id,
        }
        mock_data["project_job_assignments"].append(entry)
        return entry

    return _create


@pytest.fixture
def create_test_job(mock_data):
    """Factory fixture to store a job row."""
    def _create(
        status: str = "assigned",
        priority: str = "Normal",
        due_date: Optional[date] = None,
        assignee_id: Optional[int] = ASSIGNEE_ID,
        project_id: int = PROJECT_ID,
        job_type_id: int = JOB_TYPE_ID,
        **extra: Any,
    ) -> Dict[str, Any]:
        job_id = _next_id(mock_data["jobs"])
        job = {
            "id": job_id,
            "project_id": project_id,
            "job_type_id": job_type_id,
            "requester_id": REQUESTER_ID,
            "subject": f"Test Job {job_id}",
            "priority": priority,
            "status": status,
            "due_date": due_date.isoformat() if due_date else None,
            "approval_round": 0,
            "current_level": None,
            "flow_id": None,
            "original_due_date": None,
            "shifted_by_job_id": None,
            "assignee_id": assignee_id,
            "created_at": _now_iso(),
        }
        job.update(extra)
        mock_data["jobs"].append(job)
        return job

    return _create


@pytest.fixture
def create_test_holiday(mock_data):
    """Factory fixture to store a holiday row."""
    def _create(
        holiday_date: date,
        name: str = "Test Holiday",
        is_recurring: bool = False,
        holiday_type: str = "government",
    ) -> Dict[str, Any]:
        holiday = {
            "id": _next_id(mock_data["holidays"]),
            "name": name,
            "holiday_date": holiday_date.isoformat(),
            "holiday_type": holiday_type,
            "is_recurring": is_recurring,
            "created_at": _now_iso(),
        }
        mock_data["holidays"].append(holiday)
        return holiday

    return _create


# ==========================================
# MARKERS
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (API + mock store)")
    config.addinivalue_line("markers", "e2e: End-to-end tests (full workflow)")
    config.addinivalue_line("markers", "edge: Edge case tests")
