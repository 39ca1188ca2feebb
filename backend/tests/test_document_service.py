"""
Document adapters: validation gate, classic path, template path with fallback,
and the receipt / lease send operations.

Record store, blob store and email sender are patched; no database is needed.
"""
import io
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo.errors import PyMongoError
from pypdf import PdfReader

from models import DocumentKind, RenderPath
from services import document_service
from services.document_errors import (
    EmailDeliveryError,
    FatalRenderError,
    RecordNotFoundError,
    RecordValidationError,
    TemplateFetchError,
)
from services.email_service import EmailResult
from services.storage_adapter import FileMetadata, StorageError
from pdf_helpers import make_form_template, shown_text, xref_offsets


def assert_valid_raw_pdf(data: bytes):
    offsets = xref_offsets(data)
    assert len(offsets) == 5
    for number, offset in enumerate(offsets, start=1):
        assert data[offset:].startswith(b"%d 0 obj" % number)


def stored_metadata(path="receipts/owner-1/x.pdf", size=1234):
    return FileMetadata(path=path, content_type="application/pdf", size_bytes=size, sha256_hash="abc",
                        upload_timestamp=datetime.now(timezone.utc))


# ============================================================================
# Classic path
# ============================================================================

@pytest.mark.asyncio
async def test_inventory_classic_path_lists_rooms(inventory_record):
    with patch("services.document_service.record_store.fetch_inventory",
               AsyncMock(return_value=inventory_record)):
        document = await document_service.generate_inventory_pdf("inv-1")

    assert document.render_path == RenderPath.CLASSIC
    assert document.filename == "etat-des-lieux-inv-1.pdf"
    assert document.content_type == "application/pdf"
    assert_valid_raw_pdf(document.content)
    text = " ".join(shown_text(document.content))
    for expected in ("Salon", "Cuisine", "Bon état", "Mauvais état"):
        assert expected in text


@pytest.mark.asyncio
async def test_lease_classic_path_single_page_with_title(lease_record):
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)):
        document = await document_service.generate_lease_pdf("lease-1")

    assert document.render_path == RenderPath.CLASSIC
    assert document.filename == "bail-lease-1.pdf"
    assert_valid_raw_pdf(document.content)
    assert shown_text(document.content)[0] == "CONTRAT DE LOCATION"
    assert b"/Count 1" in document.content


@pytest.mark.asyncio
async def test_receipt_filename_uses_period_and_property_title(rent_record):
    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)):
        document = await document_service.generate_rent_receipt("rent-1")

    assert document.filename == "quittance-2024-01-01-Appartement-Bellecour.pdf"
    assert shown_text(document.content)[0] == "QUITTANCE DE LOYER"


@pytest.mark.asyncio
async def test_not_found_propagates():
    with patch("services.document_service.record_store.fetch_lease",
               AsyncMock(side_effect=RecordNotFoundError("Lease not found", record_id="nope"))):
        with pytest.raises(RecordNotFoundError) as exc_info:
            await document_service.generate_lease_pdf("nope")
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_classic_failure_is_fatal(lease_record):
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)), \
         patch("services.document_service.render_lease", side_effect=RuntimeError("renderer broke")):
        with pytest.raises(FatalRenderError) as exc_info:
            await document_service.generate_lease_pdf("lease-1")
    assert exc_info.value.status_code == 500


# ============================================================================
# Validation gate
# ============================================================================

@pytest.mark.asyncio
async def test_lease_missing_rent_rejected_before_any_io(lease_record):
    lease_record["rent_amount"] = None
    resolve = AsyncMock()
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)), \
         patch("services.document_service.resolve_template_bytes", resolve), \
         patch("services.document_service.storage_adapter") as storage, \
         patch("services.document_service.email_service") as email:
        storage.upload = AsyncMock()
        email.send_email = AsyncMock()
        with pytest.raises(RecordValidationError) as exc_info:
            await document_service.generate_lease_pdf("lease-1", template_reference="templates/bail.pdf")

    assert exc_info.value.status_code == 400
    assert exc_info.value.missing_fields == ["rent_amount"]
    resolve.assert_not_called()
    storage.upload.assert_not_called()
    email.send_email.assert_not_called()


@pytest.mark.parametrize("path", ["property.address", "tenant.first_name", "tenant.last_name",
                                  "start_date", "lease_type"])
def test_lease_required_fields(lease_record, path):
    parent, _, key = path.rpartition(".")
    target = lease_record[parent] if parent else lease_record
    target[key] = "  "
    with pytest.raises(RecordValidationError) as exc_info:
        document_service.validate_lease(lease_record)
    assert exc_info.value.missing_fields == [path]


def test_zero_amount_is_not_missing(lease_record):
    lease_record["rent_amount"] = 0
    document_service.validate_lease(lease_record)


def test_rent_requires_paid_date(rent_record):
    rent_record["paid_date"] = None
    with pytest.raises(RecordValidationError) as exc_info:
        document_service.validate_rent(rent_record)
    assert "paid_date" in exc_info.value.missing_fields
    assert exc_info.value.to_dict()["error_code"] == "RECORD_INCOMPLETE"


def test_inventory_requires_room_list(inventory_record):
    inventory_record["rooms"] = None
    with pytest.raises(RecordValidationError):
        document_service.validate_inventory(inventory_record)


@pytest.mark.parametrize("key,value", [
    ("start_date", "2024-13-01"),
    ("start_date", "demain"),
    ("rent_amount", "neuf cent"),
    ("end_date", "31/02/2025"),
    ("deposit_amount", "NaN"),
])
def test_lease_unparseable_values_are_invalid(lease_record, key, value):
    lease_record[key] = value
    with pytest.raises(RecordValidationError) as exc_info:
        document_service.validate_lease(lease_record)
    assert exc_info.value.invalid_fields == [key]
    assert exc_info.value.to_dict()["invalid_fields"] == [key]


def test_rent_unparseable_period_is_invalid(rent_record):
    rent_record["period_end"] = "2024-01-32"
    with pytest.raises(RecordValidationError) as exc_info:
        document_service.validate_rent(rent_record)
    assert exc_info.value.invalid_fields == ["period_end"]
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_invalid_date_is_rejected_before_rendering(lease_record):
    lease_record["start_date"] = "2024-13-01"
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)), \
         patch("services.document_service.raw_pdf_writer") as writer:
        with pytest.raises(RecordValidationError):
            await document_service.generate_lease_pdf("lease-1")
    writer.write.assert_not_called()


# ============================================================================
# Template path
# ============================================================================

@pytest.mark.asyncio
async def test_receipt_template_fills_named_field(rent_record):
    template = make_form_template(["locataire"], ["paid"])
    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)), \
         patch("services.document_service.resolve_template_bytes", AsyncMock(return_value=template)):
        document = await document_service.generate_rent_receipt("rent-1", "templates/quittance.pdf")

    assert document.render_path == RenderPath.NAMED
    assert PdfReader(io.BytesIO(document.content)).pages


@pytest.mark.asyncio
async def test_corrupt_template_falls_back_to_classic(rent_record):
    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)), \
         patch("services.document_service.resolve_template_bytes",
               AsyncMock(return_value=b"%PDF-1.4 this is not really a pdf")):
        document = await document_service.generate_rent_receipt("rent-1", "templates/broken.pdf")

    assert document.render_path == RenderPath.CLASSIC
    assert_valid_raw_pdf(document.content)
    assert document.warnings


@pytest.mark.asyncio
async def test_template_fetch_failure_falls_back_to_classic(lease_record):
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)), \
         patch("services.document_service.resolve_template_bytes",
               AsyncMock(side_effect=TemplateFetchError("Template not available"))):
        document = await document_service.generate_lease_pdf("lease-1", "templates/missing.pdf")

    assert document.render_path == RenderPath.CLASSIC
    assert document.warnings == ["Template not available"]


@pytest.mark.asyncio
async def test_unexpected_template_error_falls_back_to_classic(lease_record):
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)), \
         patch("services.document_service.resolve_template_bytes", AsyncMock(return_value=b"x")), \
         patch("services.document_service.template_fill_engine") as engine:
        engine.fill.side_effect = KeyError("/Annots")
        document = await document_service.generate_lease_pdf("lease-1", "templates/odd.pdf")

    assert document.render_path == RenderPath.CLASSIC


def test_receipt_values_cover_canonical_keys(rent_record):
    values = document_service.receipt_values(rent_record)

    assert values["periode"] == "janvier 2024"
    assert values["bailleur"] == "SCI Dupont"
    assert values["locataire"] == "Jean Dupont"
    assert values["total"] == "1 000,00 €"
    assert values["date"] == "05/01/2024"
    assert values["statut"] == "Payé"
    assert values["montantlettres"] == "mille"


def test_lease_values_total_adds_charges(lease_record):
    values = document_service.lease_values(lease_record)
    assert values["loyer"] == "950,00 €"
    assert values["total"] == "1 000,00 €"
    assert "datefin" not in values


# ============================================================================
# Preview and markup
# ============================================================================

@pytest.mark.asyncio
async def test_preview_markup(lease_record):
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)):
        markup = await document_service.preview_markup(DocumentKind.LEASE, "lease-1")

    assert "<h1>CONTRAT DE LOCATION</h1>" in markup
    assert markup.count('<div class="section">') == 8


def test_markup_to_pdf():
    data = document_service.markup_to_pdf("<h1>Note</h1><div class='section'>BAILLEUR: SCI Dupont</div>")
    assert shown_text(data) == ["Note", "BAILLEUR:", "SCI Dupont"]


# ============================================================================
# Send operations
# ============================================================================

@pytest.mark.asyncio
async def test_send_rent_receipt_stores_records_and_emails(rent_record):
    storage = MagicMock()
    storage.upload = AsyncMock(return_value=stored_metadata())
    email = MagicMock()
    email.send_email = AsyncMock(return_value=EmailResult(status="sent", message_id="m-1",
                                                          provider_message_id="pm-1"))
    insert = AsyncMock(return_value="doc-1")
    mark = AsyncMock()

    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)), \
         patch("services.document_service.record_store.insert_document_entry", insert), \
         patch("services.document_service.record_store.mark_rent_receipt_sent", mark), \
         patch("services.document_service.storage_adapter", storage), \
         patch("services.document_service.email_service", email):
        result = await document_service.send_rent_receipt("rent-1")

    assert result["success"] is True
    assert result["document_id"] == "doc-1"
    assert result["storage"]["status"] == "stored"
    assert result["email"] == {"status": "sent", "to": "jean.dupont@example.fr", "message_id": "pm-1"}

    path, content, content_type, _ = storage.upload.call_args.args
    assert path == "receipts/owner-1/quittance-2024-01-01-rent-1.pdf"
    assert content_type == "application/pdf"
    assert_valid_raw_pdf(content)

    entry = insert.call_args.args[0]
    assert entry["document_type"] == "quittance_loyer"
    assert entry["source_type"] == "rent_receipt"
    assert entry["file_url"] == path
    assert entry["file_size"] == len(content)
    assert entry["lease_id"] == "lease-1"

    kwargs = email.send_email.call_args.kwargs
    attachment = kwargs["attachments"][0]
    assert attachment.content == content
    assert attachment.filename.endswith(".pdf")
    mark.assert_awaited_once_with("rent-1")


@pytest.mark.asyncio
async def test_send_rent_receipt_requires_tenant_email(rent_record):
    rent_record["lease"]["tenant"]["email"] = ""
    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)):
        with pytest.raises(RecordValidationError) as exc_info:
            await document_service.send_rent_receipt("rent-1")
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_send_rent_receipt_reports_downstream_failures(rent_record):
    storage = MagicMock()
    storage.upload = AsyncMock(side_effect=StorageError("disk full"))
    email = MagicMock()
    email.send_email = AsyncMock(side_effect=EmailDeliveryError("Email could not be sent: 422"))
    insert = AsyncMock()
    mark = AsyncMock()

    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)), \
         patch("services.document_service.record_store.insert_document_entry", insert), \
         patch("services.document_service.record_store.mark_rent_receipt_sent", mark), \
         patch("services.document_service.storage_adapter", storage), \
         patch("services.document_service.email_service", email):
        result = await document_service.send_rent_receipt("rent-1")

    assert result["success"] is False
    assert result["storage"]["status"] == "failed"
    assert result["document_id"] is None
    assert result["email"]["status"] == "failed"
    insert.assert_not_called()
    mark.assert_not_called()


@pytest.mark.asyncio
async def test_send_rent_receipt_tolerates_document_insert_failure(rent_record):
    storage = MagicMock()
    storage.upload = AsyncMock(return_value=stored_metadata())
    email = MagicMock()
    email.send_email = AsyncMock(return_value=EmailResult(status="not_configured", message_id="m-1"))
    mark = AsyncMock()

    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)), \
         patch("services.document_service.record_store.insert_document_entry",
               AsyncMock(side_effect=PyMongoError("write failed"))), \
         patch("services.document_service.record_store.mark_rent_receipt_sent", mark), \
         patch("services.document_service.storage_adapter", storage), \
         patch("services.document_service.email_service", email):
        result = await document_service.send_rent_receipt("rent-1")

    assert result["document_id"] is None
    assert result["email"]["status"] == "not_configured"
    assert result["success"] is False
    mark.assert_not_called()


@pytest.mark.asyncio
async def test_send_lease_email_to_explicit_recipient(lease_record):
    storage = MagicMock()
    storage.upload = AsyncMock(return_value=stored_metadata("leases/owner-1/bail-lease-1.pdf"))
    email = MagicMock()
    email.send_email = AsyncMock(return_value=EmailResult(status="sent", message_id="m-2"))
    insert = AsyncMock(return_value="doc-2")
    mark = AsyncMock()

    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)), \
         patch("services.document_service.record_store.insert_document_entry", insert), \
         patch("services.document_service.record_store.mark_lease_sent", mark), \
         patch("services.document_service.storage_adapter", storage), \
         patch("services.document_service.email_service", email):
        result = await document_service.send_lease_email("lease-1", to="agence@example.fr")

    assert result["success"] is True
    assert email.send_email.call_args.args[0] == "agence@example.fr"
    assert "Appartement Bellecour" in email.send_email.call_args.args[1]
    assert storage.upload.call_args.args[0] == "leases/owner-1/bail-lease-1.pdf"
    assert insert.call_args.args[0]["document_type"] == "contrat_location"
    mark.assert_awaited_once_with("lease-1")


@pytest.mark.asyncio
async def test_email_body_escapes_record_values(rent_record):
    rent_record["lease"]["tenant"] = dict(rent_record["lease"]["tenant"], first_name="<b>Jean</b>")
    rent_record["lease"]["property"] = dict(rent_record["lease"]["property"], title='Loft "Soie" & Co')
    storage = MagicMock()
    storage.upload = AsyncMock(side_effect=StorageError("disk full"))
    email = MagicMock()
    email.send_email = AsyncMock(return_value=EmailResult(status="sent", message_id="m-3"))

    with patch("services.document_service.record_store.fetch_rent", AsyncMock(return_value=rent_record)), \
         patch("services.document_service.record_store.mark_rent_receipt_sent", AsyncMock()), \
         patch("services.document_service.storage_adapter", storage), \
         patch("services.document_service.email_service", email):
        await document_service.send_rent_receipt("rent-1")

    body = email.send_email.call_args.args[2]
    assert "&lt;b&gt;Jean&lt;/b&gt; Dupont" in body
    assert "Loft &quot;Soie&quot; &amp; Co" in body
    assert "<b>Jean</b>" not in body


@pytest.mark.asyncio
async def test_send_lease_email_without_any_address(lease_record):
    lease_record["tenant"]["email"] = None
    with patch("services.document_service.record_store.fetch_lease", AsyncMock(return_value=lease_record)):
        with pytest.raises(RecordValidationError):
            await document_service.send_lease_email("lease-1")
