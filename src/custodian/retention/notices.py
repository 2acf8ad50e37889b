"""Guardian notices ahead of removal of a minor's data.

Policies flagged ``requires_guardian_notice`` (COPPA) require that the
learner's guardian is told which categories of data are scheduled for
removal. Delivery goes through a ``GuardianNoticeSender``; the engine only
composes the notice.

Components:
    GuardianNoticeSender: Protocol for notice delivery
    WebhookNoticeSender: Delivery through a notification service webhook
    MockNoticeSender: In-memory sender for tests and development
    GuardianNotifier: Looks up the contact, composes and sends the notice
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from uuid_utils.compat import uuid7

from custodian.config.settings import Settings
from custodian.core.exceptions import GuardianNoticeError
from custodian.db.models.audit import AuditEventType
from custodian.db.store import RetentionStore
from custodian.retention.types import (
    GuardianContact,
    GuardianNoticeResult,
    RetentionPolicy,
    utc_now,
)

logger = structlog.get_logger(__name__)

NOTICE_TEMPLATE = "data_retention_notice"
NO_ACTION_REQUIRED = (
    "No action required. Data will be automatically removed per our privacy policy."
)


@dataclass
class NoticeDelivery:
    """Result of a notice delivery attempt."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    delivered_at: datetime = field(default_factory=utc_now)


class GuardianNoticeSender(Protocol):
    """Protocol for guardian notice delivery."""

    async def send_guardian_notice(
        self,
        contact: GuardianContact,
        template: str,
        variables: dict[str, Any],
    ) -> NoticeDelivery:
        """Send a templated notice to a guardian.

        Args:
            contact: Guardian contact details
            template: Template identifier known to the notification service
            variables: Template variables

        Returns:
            NoticeDelivery with delivery status
        """
        ...


class WebhookNoticeSender:
    """Posts notices to the notification service webhook.

    Transport errors are retried with exponential backoff; an HTTP error
    status is reported as a failed delivery.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookNoticeSender":
        """Build a sender from settings.

        Raises:
            ValueError: If no webhook URL is configured
        """
        if not settings.notification_webhook_url:
            raise ValueError("notification_webhook_url is not configured")
        return cls(settings.notification_webhook_url, settings.notification_timeout_seconds)

    async def __aenter__(self) -> "WebhookNoticeSender":
        """Enter async context."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this sender created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return await self._client.post(self.url, json=payload)

    async def send_guardian_notice(
        self,
        contact: GuardianContact,
        template: str,
        variables: dict[str, Any],
    ) -> NoticeDelivery:
        """Send a notice through the webhook."""
        payload = {
            "type": "email",
            "to": contact.email,
            "template": template,
            "variables": variables,
        }
        response = await self._post(payload)

        if response.is_error:
            return NoticeDelivery(
                success=False,
                error=f"Notification service returned {response.status_code}",
            )

        message_id = None
        if response.headers.get("content-type", "").startswith("application/json"):
            message_id = response.json().get("id")
        return NoticeDelivery(success=True, message_id=message_id)


class MockNoticeSender:
    """In-memory notice sender for testing."""

    def __init__(self, should_fail: bool = False) -> None:
        self.should_fail = should_fail
        self.sent_notices: list[dict[str, Any]] = []

    async def send_guardian_notice(
        self,
        contact: GuardianContact,
        template: str,
        variables: dict[str, Any],
    ) -> NoticeDelivery:
        """Record the notice."""
        self.sent_notices.append(
            {
                "to": contact.email,
                "template": template,
                "variables": variables,
                "sent_at": utc_now(),
            }
        )

        if self.should_fail:
            return NoticeDelivery(success=False, error="Mock notice failure")
        return NoticeDelivery(success=True, message_id=f"mock-notice-{uuid7()}")


class GuardianNotifier:
    """Sends guardian notices for policies that require them."""

    def __init__(self, store: RetentionStore, sender: GuardianNoticeSender):
        self.store = store
        self.sender = sender

    async def notify_guardian(
        self,
        tenant_id: str,
        subject_id: str,
        policies: Iterable[RetentionPolicy],
    ) -> GuardianNoticeResult:
        """Notify a learner's guardian about scheduled removal of their data.

        Args:
            tenant_id: Tenant owning the learner
            subject_id: Learner user id
            policies: Policies about to act on the learner's data

        Returns:
            ``notified=False`` when no policy requires a notice

        Raises:
            GuardianNoticeError: ``no_guardian_contact`` if no guardian email is
                on file, ``notice_failed`` if lookup or delivery fails
        """
        requiring = [p for p in policies if p.requires_guardian_notice]
        if not requiring:
            return GuardianNoticeResult(notified=False)

        try:
            contact = await self.store.fetch_guardian_contact(tenant_id, subject_id)
        except SQLAlchemyError as e:
            logger.error("guardian_contact_lookup_failed", tenant_id=tenant_id, error=str(e))
            raise GuardianNoticeError(
                f"Guardian contact lookup failed: {e}", "notice_failed", tenant_id, subject_id
            ) from e

        if contact is None:
            raise GuardianNoticeError(
                "No guardian email found for learner",
                "no_guardian_contact",
                tenant_id,
                subject_id,
            )

        categories = [p.category for p in requiring]
        variables = {
            "learnerName": contact.subject_name,
            "categories": ", ".join(c.value for c in categories),
            "retentionDays": [f"{p.category.value}: {p.retention_days} days" for p in requiring],
            "actionRequired": NO_ACTION_REQUIRED,
        }

        try:
            delivery = await self.sender.send_guardian_notice(contact, NOTICE_TEMPLATE, variables)
        except httpx.HTTPError as e:
            delivery = NoticeDelivery(success=False, error=str(e))

        if not delivery.success:
            logger.error(
                "guardian_notice_failed",
                tenant_id=tenant_id,
                categories=[c.value for c in categories],
                error=delivery.error,
            )
            raise GuardianNoticeError(
                f"Guardian notice failed: {delivery.error}", "notice_failed", tenant_id, subject_id
            )

        # Delivery already happened; an audit write failure is logged, not raised
        try:
            await self.store.record_audit_event(
                AuditEventType.GUARDIAN_NOTIFIED,
                event_data={
                    "categories": [c.value for c in categories],
                    "policy_ids": [p.id for p in requiring],
                    "message_id": delivery.message_id,
                },
                tenant_id=tenant_id,
                subject_id=subject_id,
                resource_type="guardian_notice",
            )
        except SQLAlchemyError as e:
            logger.error(
                "audit_event_write_failed",
                event_type=AuditEventType.GUARDIAN_NOTIFIED.value,
                error_type=type(e).__name__,
                message_id=delivery.message_id,
            )
        logger.info(
            "guardian_notified",
            tenant_id=tenant_id,
            categories=[c.value for c in categories],
            message_id=delivery.message_id,
        )
        return GuardianNoticeResult(
            notified=True, categories=categories, message_id=delivery.message_id
        )
