from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class InventoryType(str, Enum):
    ENTREE = "entree"
    SORTIE = "sortie"

class RoomCondition(str, Enum):
    NEUF = "neuf"
    BON = "bon"
    MOYEN = "moyen"
    MAUVAIS = "mauvais"

class LeaseType(str, Enum):
    MEUBLE = "meuble"
    VIDE = "vide"

class DocumentKind(str, Enum):
    """Document families the PDF endpoints can produce."""
    INVENTORY = "inventory"
    LEASE = "lease"
    RENT_RECEIPT = "rent_receipt"

class DocumentType(str, Enum):
    """document_type tag stored on persisted document entries."""
    QUITTANCE_LOYER = "quittance_loyer"
    CONTRAT_LOCATION = "contrat_location"
    ETAT_DES_LIEUX = "etat_des_lieux"

class RenderPath(str, Enum):
    CLASSIC = "classic"
    NAMED = "named"
    POSITIONAL = "positional"
    OVERLAY = "overlay"


ROOM_CONDITION_LABELS = {
    RoomCondition.NEUF.value: "Neuf",
    RoomCondition.BON.value: "Bon état",
    RoomCondition.MOYEN.value: "État moyen",
    RoomCondition.MAUVAIS.value: "Mauvais état",
}

# ============================================================================
# REQUEST MODELS
# ============================================================================

_TEMPLATE_ALIASES = AliasChoices("templateReference", "template_reference", "templateUrl", "template_url")


class InventoryPdfRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    record_id: str = Field(min_length=1, validation_alias=AliasChoices("recordId", "record_id", "inventoryId"))
    template_reference: Optional[str] = Field(default=None, validation_alias=_TEMPLATE_ALIASES)


class LeasePdfRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    record_id: str = Field(min_length=1, validation_alias=AliasChoices("recordId", "record_id", "leaseId"))
    template_reference: Optional[str] = Field(default=None, validation_alias=_TEMPLATE_ALIASES)


class RentReceiptRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    record_id: str = Field(min_length=1, validation_alias=AliasChoices("recordId", "record_id", "rentId"))
    template_reference: Optional[str] = Field(default=None, validation_alias=_TEMPLATE_ALIASES)
    template_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("templateName", "template_name"))


class SendLeaseRequest(LeasePdfRequest):
    to: Optional[EmailStr] = None


class MarkupPdfRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    markup: str = Field(min_length=1)
    default_title: Optional[str] = Field(default=None, validation_alias=AliasChoices("defaultTitle", "default_title"))


class SignUrlRequest(BaseModel):
    path: str = Field(min_length=1)
    ttl_seconds: int = Field(default=600, gt=0, le=7 * 24 * 3600)

# ============================================================================
# PERSISTED ARTIFACTS
# ============================================================================

class DocumentEntry(BaseModel):
    """Row in the documents collection, written after a successful generation."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    document_type: DocumentType
    owner_id: Optional[str] = None
    lease_id: Optional[str] = None
    property_id: Optional[str] = None
    file_url: str
    file_name: str
    file_size: int
    mime_type: str = "application/pdf"
    auto_generated: bool = True
    source_type: str
    signed: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
