"""
Supabase database client management.

Features:
- Application-level transactions with rollback support
- Approval flow and assignment matrix storage
- Job, approval decision, SLA shift log and activity persistence
- Holiday calendar and notification lookups
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Generator, Iterable, Optional
from uuid import uuid4

from supabase import create_client, Client

from .config import settings
from .exceptions import PersistenceError


logger = logging.getLogger(__name__)


@dataclass
class TransactionContext:
    """
    Tracks writes within a transaction for potential rollback.

    Since Supabase REST API doesn't support native transactions,
    we implement application-level transaction management.
    """
    batch_id: str = field(default_factory=lambda: str(uuid4()))
    is_active: bool = True

    # (table, id) of rows inserted inside the transaction
    created: list[tuple[str, Any]] = field(default_factory=list)

    # (table, id, original column values) of rows updated inside the transaction
    originals: list[tuple[str, Any, dict]] = field(default_factory=list)

    def add_created(self, table: str, entity_id: Any) -> None:
        """Track a created row for potential rollback."""
        self.created.append((table, entity_id))

    def store_original(self, table: str, entity_id: Any, original: dict) -> None:
        """Store original values for rollback."""
        self.originals.append((table, entity_id, original))


class SupabaseClient:
    """
    Singleton wrapper for Supabase client.
    Provides methods for the approval and scheduling tables.
    """

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None
    _transaction: Optional[TransactionContext] = None

    def __new__(cls) -> "SupabaseClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_anon_key
            )

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized")
        return self._client

    def _execute(self, query, table: str, operation: str):
        """Run a query, turning transport/API failures into PersistenceError."""
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"Supabase {operation} on {table} failed: {e}")
            raise PersistenceError(
                f"Could not {operation} {table}",
                table=table,
                operation=operation,
                original_error=str(e)
            ) from e

    @staticmethod
    def _first(response) -> Optional[dict]:
        return response.data[0] if response.data else None

    # ==========================================
    # TRANSACTION MANAGEMENT
    # ==========================================

    @contextmanager
    def transaction(self) -> Generator[TransactionContext, None, None]:
        """
        Application-level transaction context manager.

        Usage:
            with db.transaction() as tx:
                tx.store_original("jobs", job_id, {"due_date": old_due})
                db.update_job(job_id, {...})
                # Any exception here restores the job row
        """
        self._transaction = TransactionContext()
        try:
            yield self._transaction
        except Exception:
            self._rollback_transaction()
            raise
        finally:
            self._transaction = None

    def _rollback_transaction(self) -> None:
        """
        Rollback all writes in the current transaction.
        Deletes created rows and restores original values, newest first.
        """
        if not self._transaction:
            return

        tx = self._transaction
        tx.is_active = False

        for table, entity_id in reversed(tx.created):
            try:
                self.client.table(table).delete().eq("id", entity_id).execute()
            except Exception as e:
                logger.error(f"Rollback delete failed for {table}/{entity_id}: {e}")

        for table, entity_id, original in reversed(tx.originals):
            try:
                self.client.table(table).update(original).eq("id", entity_id).execute()
            except Exception as e:
                logger.error(f"Rollback restore failed for {table}/{entity_id}: {e}")

    # ==========================================
    # APPROVAL FLOWS
    # ==========================================

    def get_approval_flows(self, project_id: Optional[int] = None) -> list[dict]:
        """Fetch approval flows, optionally for a single project."""
        query = self.client.table("approval_flows").select("*")
        if project_id is not None:
            query = query.eq("project_id", project_id)
        response = self._execute(query.order("id"), "approval_flows", "read")
        return response.data or []

    def get_approval_flow(self, flow_id: int) -> Optional[dict]:
        """Fetch a single approval flow by id."""
        response = self._execute(
            self.client.table("approval_flows").select("*").eq("id", flow_id),
            "approval_flows",
            "read"
        )
        return self._first(response)

    def find_flow_for_key(self, project_id: int, job_type_id: Optional[int]) -> Optional[dict]:
        """The stored flow occupying a (project, job type) slot, active or not."""
        query = self.client.table("approval_flows").select("*").eq("project_id", project_id)
        if job_type_id is None:
            query = query.is_("job_type_id", "null")
        else:
            query = query.eq("job_type_id", job_type_id)
        response = self._execute(query, "approval_flows", "read")
        return self._first(response)

    def save_approval_flow(self, flow_data: dict) -> dict:
        """Insert a flow, or update it in place when it carries an id."""
        flow_data = dict(flow_data)
        flow_data["updated_at"] = datetime.now(timezone.utc).isoformat()
        flow_id = flow_data.pop("id", None)

        if flow_id is not None:
            query = self.client.table("approval_flows").update(flow_data).eq("id", flow_id)
        else:
            query = self.client.table("approval_flows").insert(flow_data)

        response = self._execute(query, "approval_flows", "write")
        saved = self._first(response)
        if saved is None:
            raise PersistenceError(
                "Approval flow write returned no row",
                table="approval_flows",
                operation="write"
            )
        return saved

    def delete_approval_flow(self, flow_id: int) -> bool:
        response = self._execute(
            self.client.table("approval_flows").delete().eq("id", flow_id),
            "approval_flows",
            "delete"
        )
        return bool(response.data)

    # ==========================================
    # ASSIGNMENT MATRIX
    # ==========================================

    def get_assignment_matrix(self, project_id: int) -> list[dict]:
        """All (job type → default assignee) rows for a project."""
        response = self._execute(
            self.client.table("project_job_assignments")
            .select("*")
            .eq("project_id", project_id)
            .order("job_type_id"),
            "project_job_assignments",
            "read"
        )
        return response.data or []

    def get_matrix_entry(self, project_id: int, job_type_id: int) -> Optional[dict]:
        response = self._execute(
            self.client.table("project_job_assignments")
            .select("*")
            .eq("project_id", project_id)
            .eq("job_type_id", job_type_id),
            "project_job_assignments",
            "read"
        )
        return self._first(response)

    def save_assignment_matrix(self, project_id: int, rows: list[dict]) -> list[dict]:
        """
        Upsert matrix rows for a project, keyed on (project_id, job_type_id).

        Rows whose assignee_id is None are written as cleared entries.
        """
        if not rows:
            return []

        payload = [
            {
                "project_id": project_id,
                "job_type_id": row["job_type_id"],
                "assignee_id": row.get("assignee_id"),
            }
            for row in rows
        ]
        response = self._execute(
            self.client.table("project_job_assignments").upsert(
                payload,
                on_conflict="project_id,job_type_id"
            ),
            "project_job_assignments",
            "write"
        )
        return response.data or []

    # ==========================================
    # HOLIDAYS
    # ==========================================

    def get_holidays(self, year: Optional[int] = None) -> list[dict]:
        """
        Fetch holidays ordered by date.

        With a year, returns that year's dated holidays plus every
        recurring holiday (recurring rows apply to all years).
        """
        response = self._execute(
            self.client.table("holidays").select("*").order("holiday_date"),
            "holidays",
            "read"
        )
        rows = response.data or []
        if year is None:
            return rows
        return [
            row for row in rows
            if row.get("is_recurring") or str(row["holiday_date"]).startswith(f"{year:04d}-")
        ]

    def get_holiday(self, holiday_id: int) -> Optional[dict]:
        response = self._execute(
            self.client.table("holidays").select("*").eq("id", holiday_id),
            "holidays",
            "read"
        )
        return self._first(response)

    def get_holiday_by_date(self, holiday_date: date) -> Optional[dict]:
        response = self._execute(
            self.client.table("holidays").select("*").eq("holiday_date", holiday_date.isoformat()),
            "holidays",
            "read"
        )
        return self._first(response)

    def create_holiday(self, holiday_data: dict) -> dict:
        response = self._execute(
            self.client.table("holidays").insert(holiday_data),
            "holidays",
            "write"
        )
        return self._first(response) or {}

    def update_holiday(self, holiday_id: int, update_data: dict) -> Optional[dict]:
        response = self._execute(
            self.client.table("holidays").update(update_data).eq("id", holiday_id),
            "holidays",
            "write"
        )
        return self._first(response)

    def delete_holiday(self, holiday_id: int) -> bool:
        response = self._execute(
            self.client.table("holidays").delete().eq("id", holiday_id),
            "holidays",
            "delete"
        )
        return bool(response.data)

    # ==========================================
    # JOBS
    # ==========================================

    def get_job(self, job_id: int) -> Optional[dict]:
        response = self._execute(
            self.client.table("jobs").select("*").eq("id", job_id),
            "jobs",
            "read"
        )
        return self._first(response)

    def list_jobs(
        self,
        assignee_id: Optional[int] = None,
        status: Optional[str] = None,
        project_id: Optional[int] = None
    ) -> list[dict]:
        query = self.client.table("jobs").select("*")
        if assignee_id is not None:
            query = query.eq("assignee_id", assignee_id)
        if status:
            query = query.eq("status", status)
        if project_id is not None:
            query = query.eq("project_id", project_id)
        response = self._execute(query.order("id"), "jobs", "read")
        return response.data or []

    def insert_job(self, job_data: dict) -> dict:
        response = self._execute(
            self.client.table("jobs").insert(job_data),
            "jobs",
            "write"
        )
        created = self._first(response)
        if created is None:
            raise PersistenceError("Job insert returned no row", table="jobs", operation="write")
        return created

    def update_job(self, job_id: int, update_data: dict) -> Optional[dict]:
        update_data = dict(update_data)
        update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
        response = self._execute(
            self.client.table("jobs").update(update_data).eq("id", job_id),
            "jobs",
            "write"
        )
        return self._first(response)

    def compare_and_set_job(
        self,
        job_id: int,
        expected: dict,
        update_data: dict
    ) -> Optional[dict]:
        """
        Update a job only if every column in `expected` still holds.

        Returns the updated row, or None when another writer got there
        first and the guard no longer matched.
        """
        update_data = dict(update_data)
        update_data["updated_at"] = datetime.now(timezone.utc).isoformat()

        query = self.client.table("jobs").update(update_data).eq("id", job_id)
        for column, value in expected.items():
            if value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, value)

        response = self._execute(query, "jobs", "write")
        return self._first(response)

    def get_active_jobs_for_assignee(
        self,
        assignee_id: int,
        exclude_job_id: int,
        statuses: Iterable[str]
    ) -> list[dict]:
        """The assignee's jobs in the given statuses, minus one job."""
        response = self._execute(
            self.client.table("jobs")
            .select("*")
            .eq("assignee_id", assignee_id)
            .neq("id", exclude_job_id)
            .in_("status", list(statuses))
            .order("due_date"),
            "jobs",
            "read"
        )
        return response.data or []

    def update_job_due_date(
        self,
        job_id: int,
        new_due: date,
        original_due: date,
        shifted_by: int
    ) -> dict:
        """Persist a shifted due date along with the shift provenance."""
        updated = self.update_job(job_id, {
            "due_date": new_due.isoformat(),
            "original_due_date": original_due.isoformat(),
            "shifted_by_job_id": shifted_by,
        })
        if updated is None:
            raise PersistenceError(
                f"Job {job_id} vanished during due date update",
                table="jobs",
                operation="write"
            )
        return updated

    # ==========================================
    # APPROVAL DECISIONS
    # ==========================================

    def get_job_approvals(
        self,
        job_id: int,
        approval_round: Optional[int] = None,
        level: Optional[int] = None
    ) -> list[dict]:
        query = self.client.table("job_approvals").select("*").eq("job_id", job_id)
        if approval_round is not None:
            query = query.eq("approval_round", approval_round)
        if level is not None:
            query = query.eq("level", level)
        response = self._execute(query.order("id"), "job_approvals", "read")
        return response.data or []

    def insert_job_approval(self, decision_data: dict) -> dict:
        response = self._execute(
            self.client.table("job_approvals").insert(decision_data),
            "job_approvals",
            "write"
        )
        return self._first(response) or {}

    # ==========================================
    # SLA SHIFT LOGS (append-only)
    # ==========================================

    def append_shift_log(self, entry: dict) -> dict:
        response = self._execute(
            self.client.table("sla_shift_logs").insert(entry),
            "sla_shift_logs",
            "write"
        )
        created = self._first(response)
        if created is None:
            raise PersistenceError(
                "Shift log insert returned no row",
                table="sla_shift_logs",
                operation="write"
            )
        return created

    def get_shift_logs(
        self,
        job_id: Optional[int] = None,
        urgent_job_id: Optional[int] = None
    ) -> list[dict]:
        query = self.client.table("sla_shift_logs").select("*")
        if job_id is not None:
            query = query.eq("job_id", job_id)
        if urgent_job_id is not None:
            query = query.eq("urgent_job_id", urgent_job_id)
        response = self._execute(query.order("id"), "sla_shift_logs", "read")
        return response.data or []

    def has_shift_log(self, job_id: int, urgent_job_id: int) -> bool:
        return bool(self.get_shift_logs(job_id=job_id, urgent_job_id=urgent_job_id))

    # ==========================================
    # JOB ACTIVITIES (append-only)
    # ==========================================

    def append_job_activity(self, entry: dict) -> dict:
        response = self._execute(
            self.client.table("job_activities").insert(entry),
            "job_activities",
            "write"
        )
        return self._first(response) or {}

    def get_job_activities(self, job_id: int) -> list[dict]:
        """Activity trail of a job, oldest first."""
        response = self._execute(
            self.client.table("job_activities").select("*").eq("job_id", job_id).order("id"),
            "job_activities",
            "read"
        )
        return response.data or []

    # ==========================================
    # ORGANISATION LOOKUPS
    # ==========================================

    def get_project(self, project_id: int) -> Optional[dict]:
        response = self._execute(
            self.client.table("projects").select("*").eq("id", project_id),
            "projects",
            "read"
        )
        return self._first(response)

    def get_department(self, department_id: int) -> Optional[dict]:
        response = self._execute(
            self.client.table("departments").select("*").eq("id", department_id),
            "departments",
            "read"
        )
        return self._first(response)

    def get_job_type(self, job_type_id: int) -> Optional[dict]:
        response = self._execute(
            self.client.table("job_types").select("*").eq("id", job_type_id),
            "job_types",
            "read"
        )
        return self._first(response)

    def get_user_roles(self, user_id: int) -> list[dict]:
        """Active role assignments for a user."""
        response = self._execute(
            self.client.table("user_roles")
            .select("*")
            .eq("user_id", user_id)
            .eq("is_active", True),
            "user_roles",
            "read"
        )
        return response.data or []

    def get_user_ids_with_role(self, role_name: str) -> list[int]:
        response = self._execute(
            self.client.table("user_roles")
            .select("user_id")
            .eq("role_name", role_name)
            .eq("is_active", True),
            "user_roles",
            "read"
        )
        return sorted({row["user_id"] for row in (response.data or [])})

    # ==========================================
    # NOTIFICATIONS
    # ==========================================

    def get_notification_settings(self, job_type_id: int) -> list[dict]:
        response = self._execute(
            self.client.table("notification_settings")
            .select("*")
            .eq("job_type_id", job_type_id),
            "notification_settings",
            "read"
        )
        return response.data or []

    def insert_notifications(self, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        response = self._execute(
            self.client.table("notifications").insert(rows),
            "notifications",
            "write"
        )
        return response.data or []


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get the singleton Supabase client instance."""
    return SupabaseClient()
