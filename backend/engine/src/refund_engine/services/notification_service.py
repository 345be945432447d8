"""Outbound notifications for cancellation, refund and dispute events.

Notifications are fire-and-forget: a delivery failure is logged and recorded
but never raised to the caller, so it cannot block a state transition that
already happened. Every interpolated value is HTML-escaped because most of
them (reasons, descriptions, titles) are customer-supplied.
"""

import datetime as dt
import html
import os
import uuid
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from refund_engine.models import NotificationRecord, NotificationStatus, NotificationTemplate
from refund_engine.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

SUBJECTS: dict[NotificationTemplate, str] = {
    NotificationTemplate.CANCELLATION_APPROVED: "Your cancellation has been approved",
    NotificationTemplate.CANCELLATION_REJECTED: "Your cancellation request was declined",
    NotificationTemplate.REFUND_COMPLETED: "Your refund has been completed",
    NotificationTemplate.DISPUTE_CREATED: "A new dispute has been opened",
    NotificationTemplate.DISPUTE_RESOLVED: "Your dispute has been resolved",
}


def render_html(subject: str, data: dict[str, Any]) -> str:
    """Render a minimal HTML body with every value escaped."""
    rows = "\n".join(
        f"<tr><th>{html.escape(str(key))}</th><td>{html.escape(str(value))}</td></tr>"
        for key, value in data.items()
        if value is not None
    )
    return (
        "<html><body style=\"font-family: Arial, sans-serif;\">"
        f"<h2>{html.escape(subject)}</h2>"
        f"<table>{rows}</table>"
        "</body></html>"
    )


def render_text(subject: str, data: dict[str, Any]) -> str:
    lines = [subject, ""]
    lines.extend(f"{key}: {value}" for key, value in data.items() if value is not None)
    return "\n".join(lines)


class NotificationService:
    """Sends notifications through SES and keeps an audit log."""

    NOTIFICATIONS_TABLE = "notifications"

    def __init__(
        self,
        db: "DynamoDBService",
        from_email: str | None = None,
        ses_client: Any | None = None,
    ) -> None:
        """Initialize notification service.

        Args:
            db: DynamoDB service instance
            from_email: Sender address. Defaults to NOTIFICATION_FROM_EMAIL env var;
                when unset, notifications are recorded as SKIPPED
            ses_client: Optional preconfigured SES client
        """
        self.db = db
        self.from_email = from_email or os.getenv("NOTIFICATION_FROM_EMAIL")
        self._ses = ses_client

    def _get_ses(self) -> Any:
        if self._ses is None:
            self._ses = boto3.client("ses", region_name=os.getenv("SES_REGION"))
        return self._ses

    def notify(
        self,
        template: NotificationTemplate,
        recipient_id: str,
        data: dict[str, Any],
        recipient_email: str | None = None,
    ) -> NotificationRecord:
        """Send a notification without ever raising on delivery failure.

        Args:
            template: Template id understood by the delivery collaborator
            recipient_id: User the notification is for
            data: Template payload
            recipient_email: Destination address, if known

        Returns:
            NotificationRecord describing the outcome
        """
        now = dt.datetime.now(dt.UTC)
        subject = SUBJECTS[template]
        record = NotificationRecord(
            notification_id=f"NTF-{uuid.uuid4().hex[:12].upper()}",
            template_id=template,
            recipient_id=recipient_id,
            recipient_email=recipient_email,
            subject=subject,
            data=data,
            created_at=now,
        )

        if not self.from_email or not recipient_email:
            record = record.model_copy(update={"status": NotificationStatus.SKIPPED})
            logger.info(
                "Notification %s for %s skipped (no sender or recipient address)",
                template.value,
                recipient_id,
            )
        else:
            try:
                self._get_ses().send_email(
                    Source=self.from_email,
                    Destination={"ToAddresses": [recipient_email]},
                    Message={
                        "Subject": {"Data": subject, "Charset": "UTF-8"},
                        "Body": {
                            "Text": {"Data": render_text(subject, data), "Charset": "UTF-8"},
                            "Html": {"Data": render_html(subject, data), "Charset": "UTF-8"},
                        },
                    },
                )
                record = record.model_copy(
                    update={"status": NotificationStatus.SENT, "sent_at": dt.datetime.now(dt.UTC)}
                )
                logger.info("Sent %s notification to %s", template.value, recipient_id)
            except (ClientError, BotoCoreError) as e:
                record = record.model_copy(
                    update={"status": NotificationStatus.FAILED, "error": str(e)}
                )
                logger.error("Failed to send %s notification: %s", template.value, e)

        try:
            self.db.put_item(
                self.NOTIFICATIONS_TABLE, record.model_dump(mode="json", exclude_none=True)
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to record notification %s: %s", record.notification_id, e)

        return record
