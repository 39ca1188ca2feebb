"""
Document generation error taxonomy.

Every failure the PDF pipeline can produce is one of these classes. Each class
carries the HTTP status it maps to at the API boundary and a stable error code,
so routes never have to guess how to surface a failure.

Recovered locally (never reach the caller on their own):
- TemplateFetchError / TemplateParseError -> adapter falls back to the classic writer
- TemplateRenderError -> overlay fallback failed, adapter falls back to the classic writer
- FieldFillError -> the field is skipped
- AppearanceOrFlattenError -> the filled but unflattened document is returned

Surfaced:
- RecordValidationError (400), RecordNotFoundError (404), FatalRenderError (500)
"""
from typing import List, Optional


class DocumentGenerationError(Exception):
    """Base class for PDF generation failures."""
    status_code = 500
    error_code = "DOCUMENT_GENERATION_FAILED"

    def __init__(self, message: str, *, record_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.record_id = record_id

    def to_dict(self) -> dict:
        return {"error": self.message, "error_code": self.error_code}


class RecordValidationError(DocumentGenerationError):
    """Record is missing fields required to render it, or holds unparseable dates or amounts."""
    status_code = 400
    error_code = "RECORD_INCOMPLETE"

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 invalid_fields: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing_fields = list(missing_fields or [])
        self.invalid_fields = list(invalid_fields or [])

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.missing_fields:
            payload["missing_fields"] = self.missing_fields
        if self.invalid_fields:
            payload["invalid_fields"] = self.invalid_fields
        return payload


class RecordNotFoundError(DocumentGenerationError):
    status_code = 404
    error_code = "RECORD_NOT_FOUND"


class TemplateFetchError(DocumentGenerationError):
    """Template bytes could not be obtained."""
    error_code = "TEMPLATE_FETCH_FAILED"


class TemplateParseError(DocumentGenerationError):
    """Template bytes are not a loadable PDF."""
    error_code = "TEMPLATE_PARSE_FAILED"


class TemplateRenderError(DocumentGenerationError):
    """Template loaded but neither filling nor overlay produced output."""
    error_code = "TEMPLATE_RENDER_FAILED"


class FieldFillError(DocumentGenerationError):
    error_code = "FIELD_FILL_FAILED"

    def __init__(self, message: str, field_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.field_name = field_name


class AppearanceOrFlattenError(DocumentGenerationError):
    error_code = "APPEARANCE_OR_FLATTEN_FAILED"


class FatalRenderError(DocumentGenerationError):
    """Classic renderer failed; nothing left to fall back to."""
    error_code = "RENDER_FAILED"


class EmailDeliveryError(DocumentGenerationError):
    status_code = 502
    error_code = "EMAIL_SEND_FAILED"
