"""
Template Field-Filling Engine.

Fills a user-supplied fillable PDF with the semantic value map of a document.

Pipeline (each stage has its own failure mode):
1. Load          - pypdf; unreadable bytes raise TemplateParseError
2. Enumerate     - AcroForm fields in the template's own order
3. Named pass    - field name -> semantic key (exact, then concept rules)
4. Positional    - only when the named pass filled nothing: canonical order
5. Overlay       - template has no fields, or stages 3-4 blew up: plain text
                   drawn on page one with reportlab and merged in
6. Appearances + flatten - best effort, failures leave the filled form as is

Single fields that refuse a value are skipped (FieldFillError is logged, never
raised). Anything that stops the engine from producing bytes at all surfaces as
TemplateParseError or TemplateRenderError so the caller can fall back to the
raw writer.
"""
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from pypdf import PdfReader, PdfWriter
from pypdf.generic import NameObject
from reportlab.pdfgen import canvas

from services.document_errors import (
    AppearanceOrFlattenError,
    FieldFillError,
    TemplateParseError,
    TemplateRenderError,
)
from services.field_mapping import (
    CHARGES, DATE, PERIOD, PROPERTY_ADDRESS, RENT, TENANT, TOTAL,
    match_field_name,
    positional_order_from_env,
    positional_values,
)

logger = logging.getLogger(__name__)


OVERLAY_LEFT_MARGIN = 50
OVERLAY_TOP_OFFSET = 60
OVERLAY_LINE_HEIGHT = 16
OVERLAY_TITLE_FONT_SIZE = 14
OVERLAY_FONT_SIZE = 11


class FillStrategy(str, Enum):
    NAMED = "named"
    POSITIONAL = "positional"
    OVERLAY = "overlay"


class FieldKind(str, Enum):
    TEXT = "text"
    CHECKBOX = "checkbox"
    OTHER = "other"


_FIELD_TYPES = {"/Tx": FieldKind.TEXT, "/Btn": FieldKind.CHECKBOX}


@dataclass
class FormField:
    name: str
    kind: FieldKind
    page_indexes: List[int] = field(default_factory=list)


@dataclass
class FillResult:
    content: bytes
    strategy: FillStrategy
    field_count: int = 0
    filled_fields: Dict[str, str] = field(default_factory=dict)
    skipped_fields: Dict[str, str] = field(default_factory=dict)
    flattened: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def fill_count(self) -> int:
        return len(self.filled_fields)


def _qualified_name(node) -> str:
    """Join /T of the node and all its parents, pypdf style ("parent.child")."""
    parts = []
    seen = set()
    while node is not None and id(node) not in seen:
        seen.add(id(node))
        partial = node.get("/T")
        if partial:
            parts.append(str(partial))
        parent = node.get("/Parent")
        node = parent.get_object() if parent is not None else None
    return ".".join(reversed(parts))


def _inherited_type(node) -> Optional[str]:
    while node is not None:
        if "/FT" in node:
            return node["/FT"]
        parent = node.get("/Parent")
        node = parent.get_object() if parent is not None else None
    return None


class TemplateFillEngine:
    """Fills AcroForm templates with a semantic value map."""

    def __init__(self, positional_order: Optional[Sequence[str]] = None):
        self.positional_order = tuple(positional_order) if positional_order else positional_order_from_env()

    # ------------------------------------------------------------------
    # Stage 1-2: load and enumerate
    # ------------------------------------------------------------------

    def load(self, template_bytes: bytes) -> PdfWriter:
        if not template_bytes:
            raise TemplateParseError("Template is empty")
        try:
            reader = PdfReader(io.BytesIO(template_bytes))
            if len(reader.pages) == 0:
                raise TemplateParseError("Template has no pages")
            return PdfWriter(clone_from=reader)
        except TemplateParseError:
            raise
        except Exception as e:
            raise TemplateParseError(f"Template could not be parsed: {e}") from e

    def collect_fields(self, writer: PdfWriter) -> List[FormField]:
        """Terminal form fields in AcroForm order, each with the pages holding its widgets."""
        acroform = writer.root_object.get("/AcroForm")
        if acroform is None:
            return []
        acroform = acroform.get_object()

        ordered: List[FormField] = []
        by_name: Dict[str, FormField] = {}

        def walk(ref):
            node = ref.get_object()
            kids = node.get("/Kids") or []
            field_kids = [kid for kid in kids if "/T" in kid.get_object()]
            if field_kids:
                for kid in field_kids:
                    walk(kid)
                return
            name = _qualified_name(node)
            if not name or name in by_name:
                return
            kind = _FIELD_TYPES.get(_inherited_type(node), FieldKind.OTHER)
            form_field = FormField(name=name, kind=kind)
            by_name[name] = form_field
            ordered.append(form_field)

        for ref in acroform.get("/Fields") or []:
            walk(ref)

        for index, page in enumerate(writer.pages):
            for annot_ref in page.get("/Annots") or []:
                annot = annot_ref.get_object()
                if annot.get("/Subtype") != "/Widget":
                    continue
                owner = annot if "/T" in annot else annot.get("/Parent")
                if owner is None:
                    continue
                form_field = by_name.get(_qualified_name(owner.get_object()))
                if form_field and index not in form_field.page_indexes:
                    form_field.page_indexes.append(index)

        return ordered

    # ------------------------------------------------------------------
    # Stage 3-4: named and positional passes
    # ------------------------------------------------------------------

    def _set_field(self, writer: PdfWriter, form_field: FormField, value: str) -> Optional[str]:
        """Write one value. Returns the skip reason, or None on success."""
        if form_field.kind != FieldKind.TEXT:
            return f"{form_field.kind.value} field"
        if not form_field.page_indexes:
            return "no widget on any page"
        try:
            for index in form_field.page_indexes:
                writer.update_page_form_field_values(
                    writer.pages[index], {form_field.name: value}, auto_regenerate=False
                )
        except Exception as e:
            error = FieldFillError(str(e), field_name=form_field.name)
            logger.warning(f"Skipping field '{form_field.name}': {error.message}")
            return f"fill error: {error.message}"
        return None

    def fill_by_name(self, writer: PdfWriter, fields: Sequence[FormField], values: Mapping[str, str]):
        filled: Dict[str, str] = {}
        skipped: Dict[str, str] = {}
        for form_field in fields:
            match = match_field_name(form_field.name, values)
            if match is None:
                skipped[form_field.name] = "unrecognised name"
                continue
            value = values.get(match.semantic_key)
            if not value:
                skipped[form_field.name] = f"no value for '{match.semantic_key}'"
                continue
            reason = self._set_field(writer, form_field, value)
            if reason:
                skipped[form_field.name] = reason
            else:
                filled[form_field.name] = value
        return filled, skipped

    def fill_by_position(self, writer: PdfWriter, fields: Sequence[FormField], values: Mapping[str, str]):
        ordered_values = positional_values(values, self.positional_order)
        count = min(len(fields), len(ordered_values))
        filled: Dict[str, str] = {}
        skipped: Dict[str, str] = {}
        for form_field, value in zip(fields[:count], ordered_values[:count]):
            reason = self._set_field(writer, form_field, value)
            if reason:
                skipped[form_field.name] = reason
            else:
                filled[form_field.name] = value
        for form_field in fields[count:]:
            skipped[form_field.name] = "beyond positional values"
        return filled, skipped

    # ------------------------------------------------------------------
    # Stage 5: overlay
    # ------------------------------------------------------------------

    @staticmethod
    def overlay_lines(values: Mapping[str, str], title: str) -> List[str]:
        lines = [title] if title else []
        labelled = [
            ("Locataire", TENANT),
            ("Adresse", PROPERTY_ADDRESS),
            ("Période", PERIOD),
        ]
        for label, key in labelled:
            if values.get(key):
                lines.append(f"{label} : {values[key]}")
        amounts = [
            f"{label} : {values[key]}"
            for label, key in (("Loyer", RENT), ("Charges", CHARGES), ("Total", TOTAL))
            if values.get(key)
        ]
        if amounts:
            lines.append(" - ".join(amounts))
        if values.get(DATE):
            lines.append(f"Date de paiement : {values[DATE]}")
        return lines

    def apply_overlay(self, writer: PdfWriter, lines: Sequence[str]) -> None:
        try:
            page = writer.pages[0]
            width = float(page.mediabox.width)
            height = float(page.mediabox.height)

            buffer = io.BytesIO()
            overlay = canvas.Canvas(buffer, pagesize=(width, height))
            y = height - OVERLAY_TOP_OFFSET
            for index, line in enumerate(lines):
                size = OVERLAY_TITLE_FONT_SIZE if index == 0 else OVERLAY_FONT_SIZE
                overlay.setFont("Helvetica", size)
                overlay.drawString(OVERLAY_LEFT_MARGIN, y, line)
                y -= OVERLAY_LINE_HEIGHT
            overlay.save()
            buffer.seek(0)

            page.merge_page(PdfReader(buffer).pages[0])
        except Exception as e:
            raise TemplateRenderError(f"Text overlay failed: {e}") from e

    # ------------------------------------------------------------------
    # Stage 6: appearance streams and flattening
    # ------------------------------------------------------------------

    def _fields_by_page(self, fields: Sequence[FormField], filled: Mapping[str, str]) -> Dict[int, Dict[str, str]]:
        pages: Dict[int, Dict[str, str]] = {}
        for form_field in fields:
            if form_field.name not in filled:
                continue
            for index in form_field.page_indexes:
                pages.setdefault(index, {})[form_field.name] = filled[form_field.name]
        return pages

    def regenerate_appearances(self, writer: PdfWriter, fields, filled) -> None:
        try:
            for index, page_values in self._fields_by_page(fields, filled).items():
                writer.update_page_form_field_values(writer.pages[index], page_values, auto_regenerate=True)
            writer.set_need_appearances_writer(True)
        except Exception as e:
            raise AppearanceOrFlattenError(f"Appearance regeneration failed: {e}") from e

    def flatten(self, writer: PdfWriter, fields, filled) -> None:
        try:
            for index, page_values in self._fields_by_page(fields, filled).items():
                writer.update_page_form_field_values(
                    writer.pages[index], page_values, auto_regenerate=False, flatten=True
                )
            writer.remove_annotations(subtypes="/Widget")
            root = writer.root_object
            if "/AcroForm" in root:
                del root[NameObject("/AcroForm")]
        except Exception as e:
            raise AppearanceOrFlattenError(f"Flatten failed: {e}") from e

    # ------------------------------------------------------------------

    def _serialize(self, writer: PdfWriter) -> bytes:
        try:
            buffer = io.BytesIO()
            writer.write(buffer)
            return buffer.getvalue()
        except Exception as e:
            raise TemplateRenderError(f"Filled template could not be written: {e}") from e

    def _overlay_result(self, template_bytes: bytes, values, title: str, reason: str,
                        field_count: int = 0) -> FillResult:
        writer = self.load(template_bytes)
        self.apply_overlay(writer, self.overlay_lines(values, title))
        result = FillResult(
            content=self._serialize(writer),
            strategy=FillStrategy.OVERLAY,
            field_count=field_count,
            warnings=[reason],
        )
        logger.info(f"Template rendered with text overlay ({reason})")
        return result

    def fill(
        self,
        template_bytes: bytes,
        values: Mapping[str, str],
        overlay_title: str = "",
        flatten: bool = True,
    ) -> FillResult:
        writer = self.load(template_bytes)
        fields = self.collect_fields(writer)

        if not fields:
            return self._overlay_result(template_bytes, values, overlay_title, "template has no form fields")

        try:
            filled, skipped = self.fill_by_name(writer, fields, values)
            strategy = FillStrategy.NAMED
            if not filled:
                logger.info(f"No template field name recognised among {len(fields)} field(s), filling by position")
                writer = self.load(template_bytes)
                fields = self.collect_fields(writer)
                filled, skipped = self.fill_by_position(writer, fields, values)
                strategy = FillStrategy.POSITIONAL
        except (TemplateParseError, TemplateRenderError):
            raise
        except Exception as e:
            logger.warning(f"Field filling failed, falling back to overlay: {e}")
            return self._overlay_result(
                template_bytes, values, overlay_title, f"field filling failed: {e}", field_count=len(fields)
            )

        result = FillResult(
            content=b"",
            strategy=strategy,
            field_count=len(fields),
            filled_fields=filled,
            skipped_fields=skipped,
        )

        if filled:
            try:
                self.regenerate_appearances(writer, fields, filled)
            except AppearanceOrFlattenError as e:
                logger.warning(e.message)
                result.warnings.append(e.message)
            if flatten:
                try:
                    self.flatten(writer, fields, filled)
                    result.flattened = True
                except AppearanceOrFlattenError as e:
                    logger.warning(e.message)
                    result.warnings.append(e.message)
                    # Refill a fresh copy, unflattened
                    writer = self.load(template_bytes)
                    fields = self.collect_fields(writer)
                    for name, value in filled.items():
                        target = next((f for f in fields if f.name == name), None)
                        if target:
                            self._set_field(writer, target, value)

        result.content = self._serialize(writer)
        logger.info(
            f"Template filled: strategy={strategy.value} filled={result.fill_count}/{len(fields)} "
            f"flattened={result.flattened}"
        )
        return result


template_fill_engine = TemplateFillEngine()
