from postmarker.core import PostmarkClient
from database import database
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import List, Optional
import base64
import os
import uuid
import logging

from services.document_errors import EmailDeliveryError

logger = logging.getLogger(__name__)

# Email sender configuration
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", "Quittances <quittances@gestloc.fr>")
POSTMARK_MESSAGE_STREAM = os.getenv("POSTMARK_MESSAGE_STREAM", "outbound")


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"

    def to_postmark(self) -> dict:
        return {
            "Name": self.filename,
            "Content": base64.b64encode(self.content).decode("utf-8"),
            "ContentType": self.content_type,
        }


@dataclass
class EmailResult:
    status: str  # sent | not_configured
    message_id: str
    provider_message_id: Optional[str] = None


class EmailService:
    def __init__(self):
        postmark_token = os.getenv("POSTMARK_SERVER_TOKEN")
        if not postmark_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=postmark_token)
            logger.info("Postmark email client initialized")

    async def _log_message(self, message_id: str, recipient: str, subject: str, tag: str,
                           status: str, provider_message_id: Optional[str] = None,
                           error_message: Optional[str] = None) -> None:
        try:
            db = database.get_db()
            await db.message_logs.insert_one({
                "message_id": message_id,
                "recipient": recipient,
                "subject": subject,
                "tag": tag,
                "status": status,
                "provider_message_id": provider_message_id,
                "error_message": error_message,
                "created_at": datetime.now(timezone.utc),
            })
        except Exception as e:
            logger.error(f"Failed to write message log {message_id}: {e}")

    async def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Optional[List[EmailAttachment]] = None,
        tag: str = "document",
    ) -> EmailResult:
        """
        Send one email with optional attachments.

        Raises EmailDeliveryError when the provider rejects the message. When no
        provider is configured the message is logged and reported as not_configured.
        """
        message_id = str(uuid.uuid4())
        if not to:
            raise EmailDeliveryError("No recipient address")

        if not self.client:
            logger.info(f"Email not sent (provider not configured): to={to} subject={subject}")
            await self._log_message(message_id, to, subject, tag, "not_configured")
            return EmailResult(status="not_configured", message_id=message_id)

        send_kw = dict(
            From=DEFAULT_SENDER,
            To=to,
            Subject=subject,
            HtmlBody=html,
            TrackOpens=True,
            Tag=tag,
            MessageStream=POSTMARK_MESSAGE_STREAM,
        )
        if attachments:
            send_kw["Attachments"] = [a.to_postmark() for a in attachments if a.content]

        try:
            response = self.client.emails.send(**send_kw)
        except Exception as e:
            logger.error(f"Email send failed to {to}: {e}")
            await self._log_message(message_id, to, subject, tag, "failed", error_message=str(e)[:500])
            raise EmailDeliveryError(f"Email could not be sent: {e}") from e

        provider_id = response.get("MessageID")
        await self._log_message(message_id, to, subject, tag, "sent", provider_message_id=provider_id)
        logger.info(f"Email sent to {to}: {subject} ({provider_id})")
        return EmailResult(status="sent", message_id=message_id, provider_message_id=provider_id)


email_service = EmailService()
