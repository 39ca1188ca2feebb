"""
PDF document routes: inventory, lease and rent receipt generation.

DocumentGenerationError subclasses propagate to the exception handler in
server.py, which maps them to {"error", "error_code"} with the class status.
"""
from fastapi import APIRouter
from fastapi.responses import HTMLResponse, Response
from urllib.parse import quote
import logging
import re
import unicodedata

from models import (
    DocumentKind,
    InventoryPdfRequest,
    LeasePdfRequest,
    MarkupPdfRequest,
    RentReceiptRequest,
    SendLeaseRequest,
)
from services import document_service
from services.document_service import GeneratedDocument

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/pdf", tags=["pdf"])


def content_disposition(filename: str, disposition: str = "attachment") -> str:
    """Content-Disposition with an ASCII fallback name and the UTF-8 original (RFC 5987)."""
    folded = unicodedata.normalize("NFKD", filename)
    folded = "".join(c for c in folded if not unicodedata.combining(c))
    fallback = re.sub(r'[^\x20-\x7e]', "_", folded).replace('"', "").replace("\\", "")
    if fallback == filename:
        return f'{disposition}; filename="{filename}"'
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _pdf_response(document: GeneratedDocument) -> Response:
    headers = {
        "Content-Disposition": content_disposition(document.filename),
        "X-Render-Strategy": document.render_path.value,
    }
    if document.warnings:
        headers["X-Render-Warnings"] = str(len(document.warnings))
    return Response(content=document.content, media_type=document.content_type, headers=headers)


@router.post("/inventory")
async def generate_inventory(request: InventoryPdfRequest):
    """Generate the état des lieux PDF for an inventory record."""
    document = await document_service.generate_inventory_pdf(request.record_id, request.template_reference)
    return _pdf_response(document)


@router.post("/lease")
async def generate_lease(request: LeasePdfRequest):
    document = await document_service.generate_lease_pdf(request.record_id, request.template_reference)
    return _pdf_response(document)


@router.post("/rent-receipt")
async def generate_rent_receipt(request: RentReceiptRequest):
    document = await document_service.generate_rent_receipt(
        request.record_id, request.template_reference, request.template_name
    )
    return _pdf_response(document)


@router.post("/rent-receipt/send")
async def send_rent_receipt(request: RentReceiptRequest):
    """Generate, store, record and email a rent receipt. Returns a JSON summary."""
    return await document_service.send_rent_receipt(
        request.record_id, request.template_reference, request.template_name
    )


@router.post("/lease/send")
async def send_lease(request: SendLeaseRequest):
    return await document_service.send_lease_email(
        request.record_id, request.template_reference, str(request.to) if request.to else None
    )


@router.get("/{kind}/{record_id}/preview", response_class=HTMLResponse)
async def preview_document(kind: DocumentKind, record_id: str):
    """HTML rendering of the classic (non-template) document."""
    return HTMLResponse(await document_service.preview_markup(kind, record_id))


@router.post("/markup")
async def markup_to_pdf(request: MarkupPdfRequest):
    """Convert caller-supplied document markup to a PDF with the raw writer."""
    content = document_service.markup_to_pdf(request.markup, request.default_title)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="document.pdf"'},
    )
