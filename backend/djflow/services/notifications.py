"""
Notification Dispatcher for DJ Flow.

Turns job milestones into in-app notification rows and, when configured,
a Slack incoming-webhook message.

Recipients come from the job type's `notification_settings` row
(requester, assignee, custom users) or from the defaults below.
Dispatch never raises: failures are logged and reported in the result.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from djflow.core.config import settings
from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.models.enums import NotificationEvent


logger = logging.getLogger(__name__)


DEFAULT_NOTIFICATION_SETTINGS: dict[str, Any] = {
    "notify_requester": True,
    "notify_assignee": True,
    "custom_user_ids": [],
    "events": [event.value for event in NotificationEvent],
    "in_app_enabled": True,
    "is_active": True,
}


TITLES = {
    NotificationEvent.JOB_CREATED: "New job: {ref}",
    NotificationEvent.JOB_APPROVED: "Job approved: {ref}",
    NotificationEvent.JOB_REJECTED: "Job returned: {ref}",
    NotificationEvent.JOB_ASSIGNED: "Job assigned: {ref}",
    NotificationEvent.JOB_COMPLETED: "Job completed: {ref}",
    NotificationEvent.DEADLINE_APPROACHING: "Due date moved: {ref}",
    NotificationEvent.URGENT_IMPACT: "Urgent job: {ref}",
}


@dataclass
class NotificationResult:
    """Result of one dispatch."""
    success: bool
    event_type: str
    job_id: int
    recipients: list[int] = field(default_factory=list)
    slack_sent: bool = False
    error: Optional[str] = None


def _message(event: NotificationEvent, job: dict, metadata: dict) -> str:
    subject = job.get("subject") or f"DJ-{job['id']}"
    if event == NotificationEvent.JOB_CREATED:
        return f'Job "{subject}" was created'
    if event == NotificationEvent.JOB_APPROVED:
        return f'Job "{subject}" was approved'
    if event == NotificationEvent.JOB_REJECTED:
        reason = metadata.get("reason")
        return f'Job "{subject}" was returned: {reason}' if reason else f'Job "{subject}" was returned'
    if event == NotificationEvent.JOB_ASSIGNED:
        return f'Job "{subject}" was assigned to you'
    if event == NotificationEvent.JOB_COMPLETED:
        return f'Job "{subject}" is complete'
    if event == NotificationEvent.DEADLINE_APPROACHING:
        return (
            f'Due date of "{subject}" moved from {metadata.get("previous_due_date")} '
            f'to {metadata.get("new_due_date")} by urgent job {metadata.get("reason_job_id")}'
        )
    return f'Urgent job "{subject}" will push back other jobs in the queue'


class NotificationDispatcher:
    """Deliver job events to the users configured for the job type."""

    def __init__(self, db: Optional[SupabaseClient] = None):
        self.db = db or get_supabase_client()
        self.enabled = settings.notifications_enabled
        self.slack_enabled = settings.slack_enabled

    def notify(
        self,
        event_type: NotificationEvent | str,
        job_id: int,
        metadata: Optional[dict] = None,
        extra_user_ids: Optional[list[int]] = None
    ) -> NotificationResult:
        """
        Dispatch one event for one job.

        Args:
            event_type: One of NotificationEvent
            job_id: Job the event concerns
            metadata: Stored with each notification row
            extra_user_ids: Recipients added on top of the configured ones
        """
        event = NotificationEvent(event_type)
        metadata = metadata or {}
        result = NotificationResult(success=False, event_type=event.value, job_id=job_id)

        if not self.enabled:
            result.success = True
            return result

        try:
            job = self.db.get_job(job_id)
            if not job:
                logger.warning(f"Job {job_id} not found for {event.value} notification")
                result.error = "job_not_found"
                return result

            config = self._settings_for(job["job_type_id"])
            if not config.get("is_active", True) or event.value not in (config.get("events") or []):
                logger.debug(f"{event.value} not enabled for job type {job['job_type_id']}")
                result.success = True
                return result

            recipients = self._recipients(job, config, extra_user_ids or [])
            result.recipients = recipients

            ref = f"DJ-{job_id}"
            title = TITLES[event].format(ref=ref)
            message = _message(event, job, metadata)

            if config.get("in_app_enabled", True) and recipients:
                self.db.insert_notifications([
                    {
                        "user_id": user_id,
                        "type": event.value,
                        "title": title,
                        "message": message,
                        "job_id": job_id,
                        "link": f"/jobs/{job_id}",
                        "is_read": False,
                        "metadata": metadata,
                    }
                    for user_id in recipients
                ])

            if self.slack_enabled:
                result.slack_sent = self._post_to_slack(
                    f"*{title}*\n{message}\n{settings.frontend_url}/jobs/{job_id}"
                )

            result.success = True
            logger.info(f"Dispatched {event.value} for job {job_id} to {len(recipients)} users")

        except Exception as e:
            logger.error(f"Notification {event.value} for job {job_id} failed: {e}")
            result.error = str(e)

        return result

    def _settings_for(self, job_type_id: int) -> dict:
        rows = self.db.get_notification_settings(job_type_id)
        if not rows:
            return DEFAULT_NOTIFICATION_SETTINGS
        return {**DEFAULT_NOTIFICATION_SETTINGS, **{k: v for k, v in rows[0].items() if v is not None}}

    def _recipients(self, job: dict, config: dict, extra_user_ids: list[int]) -> list[int]:
        candidates: list[Optional[int]] = []
        if config.get("notify_requester"):
            candidates.append(job.get("requester_id"))
        if config.get("notify_assignee"):
            candidates.append(job.get("assignee_id"))
        candidates.extend(config.get("custom_user_ids") or [])
        candidates.extend(extra_user_ids)
        return list(dict.fromkeys(user_id for user_id in candidates if user_id is not None))

    def _post_to_slack(self, text: str) -> bool:
        try:
            response = httpx.post(
                settings.slack_webhook_url,
                json={"text": text},
                timeout=settings.slack_timeout_seconds
            )
            if response.status_code == 200:
                return True
            logger.warning(f"Slack webhook returned {response.status_code}: {response.text}")
        except httpx.HTTPError as e:
            logger.warning(f"Slack webhook failed: {e}")
        return False
