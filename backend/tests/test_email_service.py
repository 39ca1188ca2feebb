"""
Email sender: attachments, unconfigured provider, provider failures.
"""
import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.document_errors import EmailDeliveryError
from services.email_service import EmailAttachment, EmailService


@pytest.fixture
def db():
    db = MagicMock()
    db.message_logs.insert_one = AsyncMock()
    return db


def test_attachment_is_base64_encoded():
    payload = EmailAttachment(filename="quittance.pdf", content=b"%PDF-1.4").to_postmark()
    assert payload == {
        "Name": "quittance.pdf",
        "Content": base64.b64encode(b"%PDF-1.4").decode("utf-8"),
        "ContentType": "application/pdf",
    }


@pytest.mark.asyncio
async def test_unconfigured_provider_logs_and_reports(db, monkeypatch):
    monkeypatch.delenv("POSTMARK_SERVER_TOKEN", raising=False)
    service = EmailService()

    with patch("services.email_service.database.get_db", return_value=db):
        result = await service.send_email("jean@example.fr", "Quittance", "<p>Bonjour</p>")

    assert result.status == "not_configured"
    logged = db.message_logs.insert_one.call_args.args[0]
    assert logged["status"] == "not_configured"
    assert logged["recipient"] == "jean@example.fr"


@pytest.mark.asyncio
async def test_sends_with_attachment(db):
    service = EmailService()
    service.client = MagicMock()
    service.client.emails.send.return_value = {"MessageID": "pm-42"}

    with patch("services.email_service.database.get_db", return_value=db):
        result = await service.send_email(
            "jean@example.fr", "Quittance", "<p>Bonjour</p>",
            attachments=[EmailAttachment("quittance.pdf", b"%PDF-1.4")], tag="rent_receipt",
        )

    assert result.status == "sent"
    assert result.provider_message_id == "pm-42"
    sent = service.client.emails.send.call_args.kwargs
    assert sent["To"] == "jean@example.fr"
    assert sent["Tag"] == "rent_receipt"
    assert sent["Attachments"][0]["Name"] == "quittance.pdf"


@pytest.mark.asyncio
async def test_provider_failure_raises(db):
    service = EmailService()
    service.client = MagicMock()
    service.client.emails.send.side_effect = RuntimeError("422 Inactive recipient")

    with patch("services.email_service.database.get_db", return_value=db):
        with pytest.raises(EmailDeliveryError) as exc_info:
            await service.send_email("jean@example.fr", "Quittance", "<p>Bonjour</p>")

    assert exc_info.value.status_code == 502
    assert db.message_logs.insert_one.call_args.args[0]["status"] == "failed"


@pytest.mark.asyncio
async def test_missing_recipient():
    with pytest.raises(EmailDeliveryError):
        await EmailService().send_email("", "Quittance", "<p>Bonjour</p>")
