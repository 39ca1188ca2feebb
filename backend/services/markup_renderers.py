"""
Per-type renderers: domain record -> DocumentContent.

Records are the joined dicts returned by services.record_store. Missing
optional values render as an explicit placeholder, never as an omission.
Sections that carry a header start with it in capitals followed by ':'.
"""
from datetime import date
from typing import Any, Dict, Optional

from models import InventoryType, LeaseType, ROOM_CONDITION_LABELS
from services.document_content import DocumentContent
from services.formatting import amount_in_words, format_currency, format_date

NOT_PROVIDED = "Non renseigné"
NOT_SPECIFIED = "Non spécifiée"

INVENTORY_TITLE = "ÉTAT DES LIEUX"
LEASE_TITLE = "CONTRAT DE LOCATION"
RECEIPT_TITLE = "QUITTANCE DE LOYER"


def _text(value: Any, placeholder: str = NOT_PROVIDED) -> str:
    if value is None:
        return placeholder
    text = str(value).strip()
    return text or placeholder


def person_name(person: Optional[Dict[str, Any]]) -> str:
    person = person or {}
    return " ".join(p for p in (person.get("first_name"), person.get("last_name")) if p).strip()


def owner_display_name(owner: Optional[Dict[str, Any]]) -> str:
    owner = owner or {}
    return (owner.get("company") or "").strip() or person_name(owner)


def owner_address(owner: Optional[Dict[str, Any]]) -> str:
    owner = owner or {}
    street = owner.get("address") or owner.get("address_line1") or ""
    town = " ".join(p for p in (owner.get("postal_code"), owner.get("city")) if p)
    return ", ".join(p for p in (street, town) if p)


def full_property_address(prop: Optional[Dict[str, Any]]) -> str:
    prop = prop or {}
    town = " ".join(str(p) for p in (prop.get("postal_code"), prop.get("city")) if p)
    return ", ".join(p for p in (prop.get("address"), town) if p)


def _surface(value: Any) -> str:
    return f"{value} m²" if value not in (None, "") else NOT_PROVIDED


def render_inventory(inventory: Dict[str, Any], generated_on: Optional[date] = None) -> DocumentContent:
    prop = inventory.get("property") or {}
    is_entry = inventory.get("inventory_type") == InventoryType.ENTREE.value
    sections = [
        "INFORMATIONS GÉNÉRALES: "
        f"Date: {_text(format_date(inventory.get('inventory_date')))} - "
        f"Propriété: {_text(prop.get('title'), NOT_SPECIFIED)} - "
        f"Adresse: {_text(prop.get('address'), NOT_SPECIFIED)} - "
        f"Surface: {_surface(prop.get('surface'))} - "
        f"Type: {_text(prop.get('property_type'))}"
    ]

    rooms = inventory.get("rooms") or []
    for room in rooms:
        condition = room.get("condition")
        photos = room.get("photos") or []
        photo_text = f"{len(photos)} photo(s) attachée(s)" if photos else "Aucune photo"
        sections.append(
            f"PIÈCE: {_text(room.get('name'))} - "
            f"État: {ROOM_CONDITION_LABELS.get(condition, _text(condition))} - "
            f"Description: {_text(room.get('description'), 'Aucune description')} - "
            f"Photos: {photo_text}"
        )
    if not rooms:
        sections.append("DÉTAIL DES PIÈCES: Aucune pièce renseignée")

    sections.append(f"COMMENTAIRES GÉNÉRAUX: {_text(inventory.get('general_comments'), 'Aucun commentaire')}")
    sections.append(f"Date de génération: {format_date(generated_on or date.today())}")

    return DocumentContent(
        title=INVENTORY_TITLE,
        subtitle="D'ENTRÉE" if is_entry else "DE SORTIE",
        sections=sections,
    )


def render_lease(lease: Dict[str, Any], generated_on: Optional[date] = None) -> DocumentContent:
    prop = lease.get("property") or {}
    tenant = lease.get("tenant") or {}
    owner = lease.get("owner") or {}

    deposit = lease.get("deposit_amount")
    sections = [
        f"BAILLEUR: Nom: {_text(owner_display_name(owner))} - Adresse: {_text(owner_address(owner))}",
        f"LOCATAIRE: Nom: {_text(person_name(tenant))} - Email: {_text(tenant.get('email'))}",
        "DÉSIGNATION DU LOCAL: "
        f"Adresse: {_text(full_property_address(prop), NOT_SPECIFIED)} - "
        f"Type: {_text(prop.get('property_type'))} - "
        f"Surface: {_surface(prop.get('surface'))} - "
        f"Nombre de pièces: {_text(prop.get('rooms'))}",
        "DURÉE ET CONDITIONS FINANCIÈRES: "
        f"Date de début: {_text(format_date(lease.get('start_date')))} - "
        f"Date de fin: {_text(format_date(lease.get('end_date')), 'Indéterminée')} - "
        f"Loyer mensuel: {format_currency(lease.get('rent_amount'))} - "
        f"Charges: {format_currency(lease.get('charges_amount') or 0)} - "
        f"Dépôt de garantie: {format_currency(deposit) if deposit else 'Aucun'}",
        "OBLIGATIONS: Le locataire s'engage à payer le loyer et les charges aux échéances convenues, "
        "à occuper personnellement le logement, à l'entretenir en bon état et à respecter le règlement intérieur.",
        f"NOTES PARTICULIÈRES: {_text(lease.get('notes'), 'Aucune')}",
        "SIGNATURES: Signature du bailleur, date: ____________ "
        "Signature du locataire, date: ____________",
        f"Document généré le {format_date(generated_on or date.today())}",
    ]
    is_furnished = lease.get("lease_type") == LeaseType.MEUBLE.value
    return DocumentContent(
        title=LEASE_TITLE,
        subtitle="LOGEMENT MEUBLÉ" if is_furnished else "LOGEMENT VIDE",
        sections=sections,
    )


def render_receipt(rent: Dict[str, Any], generated_on: Optional[date] = None) -> DocumentContent:
    lease = rent.get("lease") or {}
    prop = lease.get("property") or {}
    tenant = lease.get("tenant") or {}
    owner = lease.get("owner") or {}

    period_start = format_date(rent.get("period_start"))
    period_end = format_date(rent.get("period_end"))
    total = rent.get("total_amount")
    tenant_name = _text(person_name(tenant))
    landlord_name = _text(owner_display_name(owner))

    sections = [
        f"PROPRIÉTAIRE: Nom/Société: {landlord_name} - Adresse: {_text(owner_address(owner))}",
        f"LOCATAIRE: Nom: {tenant_name}",
        "BIEN LOUÉ: "
        f"Adresse: {_text(prop.get('address'), NOT_SPECIFIED)} - "
        f"Ville: {_text(' '.join(str(p) for p in (prop.get('postal_code'), prop.get('city')) if p))} - "
        f"Type: {_text(prop.get('property_type'))}",
        "DÉTAILS DU PAIEMENT: "
        f"Période: du {period_start} au {period_end} - "
        f"Date de paiement: {_text(format_date(rent.get('paid_date')))} - "
        f"Loyer: {format_currency(rent.get('rent_amount') or 0)} - "
        f"Charges: {format_currency(rent.get('charges_amount') or 0)} - "
        f"Total payé: {format_currency(total)}",
        f"ATTESTATION: Je soussigné(e) {landlord_name}, propriétaire du logement désigné ci-dessus, "
        f"reconnais avoir reçu la somme de {format_currency(total)} ({amount_in_words(total)} euros) "
        f"de {tenant_name}, locataire dudit logement, pour le paiement du loyer et des charges "
        f"de la période du {period_start} au {period_end}.",
        f"Fait le {format_date(generated_on or date.today())} - Signature du propriétaire",
    ]
    return DocumentContent(
        title=RECEIPT_TITLE,
        subtitle=f"Période du {period_start} au {period_end}",
        sections=sections,
    )
