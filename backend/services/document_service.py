"""
Document type adapters: inventory, lease, rent receipt.

FLOW (strictly sequential within one request):
fetch record (one joined lookup)
→ validate required fields (fail fast, no rendering, no storage call)
→ template path when a template reference is given
   └─ any template failure → classic path
→ classic path: renderer → raw PDF writer
→ bytes + filename (+ persistence and email for the send operations)

Only FatalRenderError escapes once validation has passed.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pymongo.errors import PyMongoError

from models import DocumentEntry, DocumentKind, DocumentType, RenderPath
from services import record_store
from services.content_extractor import extract
from services.document_content import DocumentContent, escape_markup
from services.document_errors import (
    EmailDeliveryError,
    FatalRenderError,
    RecordValidationError,
    TemplateFetchError,
    TemplateParseError,
    TemplateRenderError,
)
from services.email_service import EmailAttachment, email_service
from services.field_mapping import (
    CHARGES,
    CITY,
    DATE,
    LANDLORD,
    LANDLORD_ADDRESS,
    PAYMENT_STATUS,
    PERIOD,
    POSTAL_CODE,
    PROPERTY_ADDRESS,
    RENT,
    TENANT,
    TOTAL,
    build_value_map,
)
from services.formatting import (
    amount_in_words,
    format_currency,
    format_date,
    format_month,
    parse_date,
    to_decimal,
)
from services.markup_renderers import (
    LEASE_TITLE,
    RECEIPT_TITLE,
    INVENTORY_TITLE,
    owner_address,
    owner_display_name,
    person_name,
    render_inventory,
    render_lease,
    render_receipt,
)
from services.pdf_writer import raw_pdf_writer
from services.storage_adapter import StorageError, storage_adapter
from services.template_filler import template_fill_engine
from services.template_source import resolve_template_bytes

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
PAID_LABEL = "Payé"

INVENTORY_REQUIRED = (
    ("inventory_date", "inventory_date"),
    ("inventory_type", "inventory_type"),
)
LEASE_REQUIRED = (
    ("property.address", "Adresse du bien"),
    ("tenant.first_name", "Prénom du locataire"),
    ("tenant.last_name", "Nom du locataire"),
    ("start_date", "Date de début"),
    ("rent_amount", "Montant du loyer"),
    ("lease_type", "Type de bail"),
)
RENT_REQUIRED = (
    ("lease.property.address", "Adresse du bien"),
    ("lease.tenant.first_name", "Prénom du locataire"),
    ("lease.tenant.last_name", "Nom du locataire"),
    ("period_start", "Début de période"),
    ("period_end", "Fin de période"),
    ("total_amount", "Montant total"),
    ("paid_date", "Date de paiement"),
)
LEASE_OPTIONAL = ("end_date", "charges_amount", "deposit_amount")
RENT_OPTIONAL = ("rent_amount", "charges_amount")

DATE_FIELDS = {"inventory_date", "start_date", "end_date", "period_start", "period_end", "paid_date"}
AMOUNT_FIELDS = {"rent_amount", "charges_amount", "deposit_amount", "total_amount"}


@dataclass
class GeneratedDocument:
    content: bytes
    filename: str
    render_path: RenderPath
    content_type: str = PDF_CONTENT_TYPE
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# VALIDATION
# ============================================================================

def _lookup(record: Dict[str, Any], dotted: str) -> Any:
    value: Any = record
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _is_invalid(path: str, value: Any) -> bool:
    """Present but unparseable date or amount."""
    leaf = path.rsplit(".", 1)[-1]
    if leaf in DATE_FIELDS:
        try:
            parse_date(value)
        except (ValueError, TypeError):
            return True
    elif leaf in AMOUNT_FIELDS:
        amount = to_decimal(value)
        return amount is None or not amount.is_finite()
    return False


def validate_required(
    record: Dict[str, Any],
    required: Sequence[Tuple[str, str]],
    label: str,
    optional: Sequence[str] = (),
) -> None:
    missing = [path for path, _ in required if _is_missing(_lookup(record, path))]
    if missing:
        readable = ", ".join(name for path, name in required if path in missing)
        raise RecordValidationError(
            f"{label} is missing required fields: {readable}",
            missing_fields=missing,
            record_id=record.get("id"),
        )

    # optional paths are only checked when filled in
    checked = [path for path, _ in required]
    checked += [path for path in optional if not _is_missing(_lookup(record, path))]
    invalid = [path for path in checked if _is_invalid(path, _lookup(record, path))]
    if invalid:
        raise RecordValidationError(
            f"{label} has invalid fields: {', '.join(invalid)}",
            invalid_fields=invalid,
            record_id=record.get("id"),
        )


def validate_inventory(inventory: Dict[str, Any]) -> None:
    validate_required(inventory, INVENTORY_REQUIRED, "Inventory")
    if not isinstance(inventory.get("rooms"), list):
        raise RecordValidationError(
            "Inventory is missing required fields: rooms",
            missing_fields=["rooms"],
            record_id=inventory.get("id"),
        )


def validate_lease(lease: Dict[str, Any]) -> None:
    validate_required(lease, LEASE_REQUIRED, "Lease", LEASE_OPTIONAL)


def validate_rent(rent: Dict[str, Any]) -> None:
    validate_required(rent, RENT_REQUIRED, "Rent receipt", RENT_OPTIONAL)


# ============================================================================
# SEMANTIC VALUE MAPS
# ============================================================================

def _total(rent_amount: Any, charges_amount: Any) -> Optional[str]:
    rent = to_decimal(rent_amount)
    if rent is None:
        return None
    return format_currency(rent + (to_decimal(charges_amount) or 0))


def inventory_values(inventory: Dict[str, Any]) -> Dict[str, str]:
    prop = inventory.get("property") or {}
    owner = inventory.get("owner") or {}
    return build_value_map({
        LANDLORD: owner_display_name(owner),
        LANDLORD_ADDRESS: owner_address(owner),
        PROPERTY_ADDRESS: prop.get("address"),
        POSTAL_CODE: prop.get("postal_code"),
        CITY: prop.get("city"),
        DATE: format_date(inventory.get("inventory_date")),
        "typeetatdeslieux": inventory.get("inventory_type"),
        "commentaires": inventory.get("general_comments"),
    })


def lease_values(lease: Dict[str, Any]) -> Dict[str, str]:
    prop = lease.get("property") or {}
    tenant = lease.get("tenant") or {}
    owner = lease.get("owner") or {}
    return build_value_map({
        PERIOD: format_month(lease.get("start_date")),
        LANDLORD: owner_display_name(owner),
        LANDLORD_ADDRESS: owner_address(owner),
        TENANT: person_name(tenant),
        PROPERTY_ADDRESS: prop.get("address"),
        POSTAL_CODE: prop.get("postal_code"),
        CITY: prop.get("city"),
        RENT: format_currency(lease.get("rent_amount")),
        CHARGES: format_currency(lease.get("charges_amount")),
        TOTAL: _total(lease.get("rent_amount"), lease.get("charges_amount")),
        DATE: format_date(lease.get("start_date")),
        "datefin": format_date(lease.get("end_date")),
        "depotgarantie": format_currency(lease.get("deposit_amount")),
        "typebail": lease.get("lease_type"),
        "emaillocataire": tenant.get("email"),
    })


def receipt_values(rent: Dict[str, Any]) -> Dict[str, str]:
    lease = rent.get("lease") or {}
    prop = lease.get("property") or {}
    tenant = lease.get("tenant") or {}
    owner = lease.get("owner") or {}
    return build_value_map({
        PERIOD: format_month(rent.get("period_start")),
        LANDLORD: owner_display_name(owner),
        LANDLORD_ADDRESS: owner_address(owner),
        TENANT: person_name(tenant),
        PROPERTY_ADDRESS: prop.get("address"),
        POSTAL_CODE: prop.get("postal_code"),
        CITY: prop.get("city"),
        RENT: format_currency(rent.get("rent_amount")),
        CHARGES: format_currency(rent.get("charges_amount")),
        TOTAL: format_currency(rent.get("total_amount")),
        DATE: format_date(rent.get("paid_date")),
        PAYMENT_STATUS: PAID_LABEL if rent.get("paid_date") else None,
        "periodedebut": format_date(rent.get("period_start")),
        "periodefin": format_date(rent.get("period_end")),
        "montantlettres": amount_in_words(rent.get("total_amount")),
    })


# ============================================================================
# FILENAMES
# ============================================================================

def inventory_filename(inventory: Dict[str, Any]) -> str:
    return f"etat-des-lieux-{inventory.get('id')}.pdf"


def lease_filename(lease: Dict[str, Any]) -> str:
    return f"bail-{lease.get('id')}.pdf"


def _iso_day(value: Any) -> str:
    try:
        parsed = parse_date(value)
    except ValueError:
        return str(value)
    return parsed.isoformat() if parsed else ""


def receipt_filename(rent: Dict[str, Any]) -> str:
    title = ((rent.get("lease") or {}).get("property") or {}).get("title") or str(rent.get("id"))
    slug = re.sub(r"\s+", "-", title.strip())
    return f"quittance-{_iso_day(rent.get('period_start'))}-{slug}.pdf"


# ============================================================================
# RENDERING
# ============================================================================

async def _render(
    kind: DocumentKind,
    record: Dict[str, Any],
    builder: Callable[[Dict[str, Any]], DocumentContent],
    values_builder: Callable[[Dict[str, Any]], Dict[str, str]],
    filename: str,
    template_reference: Optional[str],
    overlay_title: str,
) -> GeneratedDocument:
    record_id = record.get("id")
    warnings: List[str] = []

    if template_reference:
        try:
            template_bytes = await resolve_template_bytes(template_reference)
            values = values_builder(record)
            result = template_fill_engine.fill(template_bytes, values, overlay_title=overlay_title)
            logger.info(f"{kind.value} {record_id} rendered from template ({result.strategy.value})")
            return GeneratedDocument(
                content=result.content,
                filename=filename,
                render_path=RenderPath(result.strategy.value),
                warnings=result.warnings,
            )
        except (TemplateFetchError, TemplateParseError, TemplateRenderError) as e:
            logger.warning(f"{kind.value} {record_id}: template unusable ({e.error_code}), using classic writer: {e}")
            warnings.append(e.message)
        except Exception as e:
            logger.warning(f"{kind.value} {record_id}: template pipeline failed, using classic writer", exc_info=True)
            warnings.append(f"template pipeline failed: {e}")

    try:
        content = builder(record)
        pdf = raw_pdf_writer.write(content.title, content.subtitle, content.sections)
    except Exception as e:
        logger.exception(f"{kind.value} {record_id}: classic rendering failed")
        raise FatalRenderError(f"Could not render {kind.value} document: {e}", record_id=record_id) from e

    logger.info(f"{kind.value} {record_id} rendered with the classic writer ({len(pdf)} bytes)")
    return GeneratedDocument(content=pdf, filename=filename, render_path=RenderPath.CLASSIC, warnings=warnings)


async def _generate_inventory(inventory: Dict[str, Any], template_reference: Optional[str]) -> GeneratedDocument:
    validate_inventory(inventory)
    return await _render(
        DocumentKind.INVENTORY, inventory, render_inventory, inventory_values,
        inventory_filename(inventory), template_reference, INVENTORY_TITLE,
    )


async def _generate_lease(lease: Dict[str, Any], template_reference: Optional[str]) -> GeneratedDocument:
    validate_lease(lease)
    return await _render(
        DocumentKind.LEASE, lease, render_lease, lease_values,
        lease_filename(lease), template_reference, LEASE_TITLE,
    )


async def _generate_receipt(rent: Dict[str, Any], template_reference: Optional[str],
                            template_name: Optional[str] = None) -> GeneratedDocument:
    validate_rent(rent)
    if template_reference:
        logger.info(f"Rent {rent.get('id')}: using template {template_name or template_reference!r}")
    return await _render(
        DocumentKind.RENT_RECEIPT, rent, render_receipt, receipt_values,
        receipt_filename(rent), template_reference, RECEIPT_TITLE,
    )


async def generate_inventory_pdf(record_id: str, template_reference: Optional[str] = None) -> GeneratedDocument:
    inventory = await record_store.fetch_inventory(record_id)
    return await _generate_inventory(inventory, template_reference)


async def generate_lease_pdf(record_id: str, template_reference: Optional[str] = None) -> GeneratedDocument:
    lease = await record_store.fetch_lease(record_id)
    return await _generate_lease(lease, template_reference)


async def generate_rent_receipt(record_id: str, template_reference: Optional[str] = None,
                                template_name: Optional[str] = None) -> GeneratedDocument:
    rent = await record_store.fetch_rent(record_id)
    return await _generate_receipt(rent, template_reference, template_name)


# ============================================================================
# PREVIEW / MARKUP
# ============================================================================

_PREVIEW_SOURCES = {
    DocumentKind.INVENTORY: ("fetch_inventory", validate_inventory, render_inventory),
    DocumentKind.LEASE: ("fetch_lease", validate_lease, render_lease),
    DocumentKind.RENT_RECEIPT: ("fetch_rent", validate_rent, render_receipt),
}


async def preview_markup(kind: DocumentKind, record_id: str) -> str:
    """HTML markup of the classic rendering."""
    fetcher, validate, render = _PREVIEW_SOURCES[kind]
    record = await getattr(record_store, fetcher)(record_id)
    validate(record)
    return render(record).to_markup()


def markup_to_pdf(markup: str, default_title: Optional[str] = None) -> bytes:
    """Content extractor + raw writer for caller-supplied markup."""
    try:
        content = extract(markup, default_title=default_title)
        return raw_pdf_writer.write(content.title, content.subtitle, content.sections)
    except Exception as e:
        logger.exception("Markup conversion failed")
        raise FatalRenderError(f"Could not render markup: {e}") from e


# ============================================================================
# SEND OPERATIONS (persist + email, best effort)
# ============================================================================

async def _store(path: str, document: GeneratedDocument, metadata: Dict[str, Any]) -> Dict[str, Any]:
    try:
        stored = await storage_adapter.upload(path, document.content, document.content_type, metadata)
    except StorageError as e:
        logger.warning(f"Upload of {path} failed: {e}")
        return {"status": "failed", "path": path, "error": str(e)}
    return {"status": "stored", "path": path, "size_bytes": stored.size_bytes}


async def _record_document(entry: DocumentEntry) -> Optional[str]:
    try:
        return await record_store.insert_document_entry(entry.to_document())
    except PyMongoError as e:
        logger.warning(f"Document entry for {entry.file_url} not recorded: {e}")
        return None


async def _email(to: str, subject: str, html: str, document: GeneratedDocument, tag: str) -> Dict[str, Any]:
    attachment = EmailAttachment(filename=document.filename, content=document.content,
                                 content_type=document.content_type)
    try:
        result = await email_service.send_email(to, subject, html, attachments=[attachment], tag=tag)
    except EmailDeliveryError as e:
        logger.warning(f"Email to {to} failed: {e.message}")
        return {"status": "failed", "to": to, "error": e.message}
    return {"status": result.status, "to": to, "message_id": result.provider_message_id or result.message_id}


def _receipt_email_html(rent: Dict[str, Any]) -> str:
    lease = rent.get("lease") or {}
    prop = lease.get("property") or {}
    tenant = lease.get("tenant") or {}
    return (
        "<h2>Quittance de loyer</h2>"
        f"<p>Bonjour {escape_markup(person_name(tenant))},</p>"
        "<p>Veuillez trouver ci-joint votre quittance de loyer pour la période du "
        f"<strong>{format_date(rent.get('period_start'))}</strong> au "
        f"<strong>{format_date(rent.get('period_end'))}</strong>.</p>"
        f"<p><strong>Bien loué :</strong> {escape_markup(prop.get('title'))}</p>"
        f"<p><strong>Adresse :</strong> {escape_markup(prop.get('address'))}, {escape_markup(prop.get('city'))}</p>"
        f"<p><strong>Montant payé :</strong> {format_currency(rent.get('total_amount'))}</p>"
        "<p>Cette quittance est également disponible dans votre espace documents en ligne.</p>"
        "<p>Cordialement,</p>"
    )


async def send_rent_receipt(record_id: str, template_reference: Optional[str] = None,
                            template_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Generate a receipt, store it, record it in documents, email it to the tenant
    and mark the rent as receipt_sent.

    Storage, document entry and email failures are reported in the result, not raised.
    """
    rent = await record_store.fetch_rent(record_id)
    lease = rent.get("lease") or {}
    tenant = lease.get("tenant") or {}
    if _is_missing(tenant.get("email")):
        raise RecordValidationError("Tenant has no email address", missing_fields=["lease.tenant.email"],
                                    record_id=record_id)

    document = await _generate_receipt(rent, template_reference, template_name)
    period_day = _iso_day(rent.get("period_start"))
    owner_id = lease.get("owner_id")
    path = f"receipts/{owner_id}/quittance-{period_day}-{record_id}.pdf"

    storage = await _store(path, document, {"rent_id": record_id, "owner_id": owner_id})
    document_id = None
    if storage["status"] == "stored":
        document_id = await _record_document(DocumentEntry(
            title=f"Quittance de loyer - {format_date(rent.get('period_start'))}",
            document_type=DocumentType.QUITTANCE_LOYER,
            owner_id=owner_id,
            lease_id=rent.get("lease_id"),
            property_id=lease.get("property_id"),
            file_url=path,
            file_name=f"quittance-{period_day}.pdf",
            file_size=len(document.content),
            source_type="rent_receipt",
        ))

    prop = lease.get("property") or {}
    subject = f"Quittance de loyer - {prop.get('title') or 'Propriété'} - {format_date(rent.get('period_start'))}"
    email = await _email(tenant["email"], subject, _receipt_email_html(rent), document, tag="rent_receipt")

    if email["status"] == "sent":
        try:
            await record_store.mark_rent_receipt_sent(record_id)
        except PyMongoError as e:
            logger.warning(f"Rent {record_id}: receipt_sent flag not updated: {e}")

    return {
        "success": email["status"] == "sent",
        "rent_id": record_id,
        "filename": document.filename,
        "render_path": document.render_path.value,
        "storage": storage,
        "document_id": document_id,
        "email": email,
        "warnings": document.warnings,
    }


async def send_lease_email(record_id: str, template_reference: Optional[str] = None,
                           to: Optional[str] = None) -> Dict[str, Any]:
    """Generate a lease, email it to `to` (or the tenant), store it and mark the lease sent."""
    lease = await record_store.fetch_lease(record_id)
    tenant = lease.get("tenant") or {}
    recipient = to or tenant.get("email")
    if _is_missing(recipient):
        raise RecordValidationError("No email address found for the tenant", missing_fields=["tenant.email"],
                                    record_id=record_id)

    document = await _generate_lease(lease, template_reference)
    prop = lease.get("property") or {}
    subject = f"Contrat de location - {prop.get('title') or 'Bail'}"
    html = (
        "<h2>Contrat de location</h2>"
        f"<p>Bonjour {escape_markup(person_name(tenant))},</p>"
        "<p>Veuillez trouver ci-joint votre contrat de location pour le bien "
        f"<strong>{escape_markup(prop.get('title'))}</strong>.</p>"
        "<p>Cordialement,</p>"
    )
    email = await _email(recipient, subject, html, document, tag="lease")

    if email["status"] == "sent":
        try:
            await record_store.mark_lease_sent(record_id)
        except PyMongoError as e:
            logger.warning(f"Lease {record_id}: status not updated: {e}")

    owner_id = lease.get("owner_id")
    path = f"leases/{owner_id}/{document.filename}"
    storage = await _store(path, document, {"lease_id": record_id, "owner_id": owner_id})
    document_id = None
    if storage["status"] == "stored":
        document_id = await _record_document(DocumentEntry(
            title=f"Contrat de location - {prop.get('title') or 'Propriété'}",
            document_type=DocumentType.CONTRAT_LOCATION,
            owner_id=owner_id,
            lease_id=record_id,
            property_id=lease.get("property_id"),
            file_url=path,
            file_name=document.filename,
            file_size=len(document.content),
            source_type="lease_pdf",
        ))

    return {
        "success": email["status"] == "sent",
        "lease_id": record_id,
        "filename": document.filename,
        "render_path": document.render_path.value,
        "storage": storage,
        "document_id": document_id,
        "email": email,
        "warnings": document.warnings,
    }
