"""
Semantic vocabulary shared by template field names and document data.

A template field name is normalised (lower-case, alphanumerics only) and
matched first exactly against the value map, then against CONCEPT_RULES in
order. The first rule whose predicate accepts the name wins. Add a synonym by
editing the tuple for its concept.
"""
import logging
import os
import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# Semantic keys (the contract between template field names and data)
TENANT = "locataire"
LANDLORD = "bailleur"
LANDLORD_ADDRESS = "adressebailleur"
PROPERTY_ADDRESS = "adresse"
CITY = "ville"
POSTAL_CODE = "codepostal"
PERIOD = "periode"
RENT = "loyer"
CHARGES = "charges"
TOTAL = "total"
DATE = "date"
PAYMENT_STATUS = "statut"

# Synonym groups
TENANT_WORDS = ("locataire", "tenant", "preneur")
LANDLORD_WORDS = ("bailleur", "proprietaire", "owner", "landlord")
ADDRESS_WORDS = ("adresse", "address")
PROPERTY_WORDS = ("bien", "logement", "property", "local", "lieu")
CITY_WORDS = ("ville", "city", "commune")
POSTAL_WORDS = ("codepostal", "postal", "zipcode", "zip")
PERIOD_WORDS = ("periode", "period", "mois", "month")
RENT_WORDS = ("loyer", "rent", "montant", "amount")
CHARGES_WORDS = ("charge",)
TOTAL_WORDS = ("total",)
DATE_WORDS = ("date", "fait", "le")
STATUS_WORDS = ("statut", "status", "paye", "paid", "acquitte", "reglement")

# Canonical receipt layout used when no field name is recognised
DEFAULT_POSITIONAL_ORDER = (
    PERIOD, LANDLORD, LANDLORD_ADDRESS, TENANT, PROPERTY_ADDRESS,
    POSTAL_CODE, CITY, RENT, CHARGES, TOTAL, DATE, PAYMENT_STATUS,
)


def normalize_key(name: str) -> str:
    """'Nom_du Locataire' -> 'nomdulocataire'. Accents are folded."""
    folded = unicodedata.normalize("NFKD", name or "")
    folded = "".join(c for c in folded if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]", "", folded.lower())


def _has_any(words: Sequence[str]) -> Callable[[str], bool]:
    return lambda name: any(word in name for word in words)


def _is_exactly(words: Sequence[str]) -> Callable[[str], bool]:
    return lambda name: name in words


def _both(first: Sequence[str], second: Sequence[str]) -> Callable[[str], bool]:
    return lambda name: any(a in name for a in first) and any(b in name for b in second)


@dataclass(frozen=True)
class ConceptRule:
    concept: str
    semantic_key: str
    predicate: Callable[[str], bool]


# Order matters: compound names ("adressebailleur") must hit their specific
# concept before the generic one ("bailleur", "adresse").
CONCEPT_RULES: Tuple[ConceptRule, ...] = (
    ConceptRule("landlord_address", LANDLORD_ADDRESS, _both(ADDRESS_WORDS, LANDLORD_WORDS)),
    ConceptRule("property_address", PROPERTY_ADDRESS, _both(ADDRESS_WORDS, PROPERTY_WORDS + TENANT_WORDS)),
    ConceptRule("postal_code", POSTAL_CODE, lambda n: _has_any(POSTAL_WORDS)(n) or n == "cp"),
    ConceptRule("city", CITY, _has_any(CITY_WORDS)),
    ConceptRule("property_address_generic", PROPERTY_ADDRESS, _has_any(ADDRESS_WORDS)),
    ConceptRule("tenant", TENANT, _has_any(TENANT_WORDS)),
    ConceptRule("landlord", LANDLORD, _has_any(LANDLORD_WORDS)),
    ConceptRule("period", PERIOD, _has_any(PERIOD_WORDS)),
    ConceptRule("total", TOTAL, _has_any(TOTAL_WORDS)),
    ConceptRule("charges", CHARGES, _has_any(CHARGES_WORDS)),
    ConceptRule("rent", RENT, _has_any(RENT_WORDS)),
    ConceptRule("payment_status", PAYMENT_STATUS, _has_any(STATUS_WORDS)),
    ConceptRule("date", DATE, lambda n: _has_any(DATE_WORDS[:1])(n) or _is_exactly(DATE_WORDS[1:])(n)),
)


@dataclass(frozen=True)
class FieldMatch:
    semantic_key: str
    concept: str
    exact: bool


def match_field_name(field_name: str, values: Mapping[str, str]) -> Optional[FieldMatch]:
    """Resolve a template field name to the semantic key whose value should fill it."""
    name = normalize_key(field_name)
    if not name:
        return None
    if name in values:
        return FieldMatch(semantic_key=name, concept="exact", exact=True)
    for rule in CONCEPT_RULES:
        if rule.predicate(name):
            return FieldMatch(semantic_key=rule.semantic_key, concept=rule.concept, exact=False)
    return None


def positional_order_from_env() -> Tuple[str, ...]:
    raw = os.environ.get("PDF_POSITIONAL_FIELD_ORDER", "").strip()
    if not raw:
        return DEFAULT_POSITIONAL_ORDER
    order = tuple(normalize_key(part) for part in raw.split(",") if normalize_key(part))
    if not order:
        logger.warning("PDF_POSITIONAL_FIELD_ORDER is set but empty after normalisation, using default")
        return DEFAULT_POSITIONAL_ORDER
    return order


def positional_values(values: Mapping[str, str], order: Sequence[str]) -> List[str]:
    """Values in positional order, skipping keys with no value."""
    return [values[key] for key in order if values.get(key)]


def build_value_map(raw: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """Normalise keys and drop empty values."""
    return {normalize_key(k): str(v) for k, v in raw.items() if v not in (None, "") and normalize_key(k)}
