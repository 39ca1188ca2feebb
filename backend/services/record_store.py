"""
Record store access for document generation.

Each fetch is a single aggregation that joins the related property, tenant and
owner profile, and returns a plain dict (no Mongo _id) or raises
RecordNotFoundError.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from database import database
from services.document_errors import RecordNotFoundError

logger = logging.getLogger(__name__)


def _join(local_field: str, collection: str, foreign_field: str, as_field: str) -> List[Dict[str, Any]]:
    """$lookup + $unwind for a to-one relation; a missing target leaves the field absent."""
    return [
        {"$lookup": {"from": collection, "localField": local_field, "foreignField": foreign_field, "as": as_field}},
        {"$unwind": {"path": f"${as_field}", "preserveNullAndEmptyArrays": True}},
    ]


def _strip_ids(fields: List[str]) -> Dict[str, Any]:
    return {"$project": {"_id": 0, **{f"{name}._id": 0 for name in fields}}}


async def _fetch_one(collection: str, record_id: str, pipeline: List[Dict[str, Any]], label: str) -> Dict[str, Any]:
    if not record_id:
        raise RecordNotFoundError(f"{label} not found", record_id=record_id)
    db = database.get_db()
    stages = [{"$match": {"id": record_id}}, {"$limit": 1}] + pipeline
    documents = await db[collection].aggregate(stages).to_list(length=1)
    if not documents:
        logger.info(f"{label} {record_id} not found")
        raise RecordNotFoundError(f"{label} not found", record_id=record_id)
    return documents[0]


async def fetch_inventory(inventory_id: str) -> Dict[str, Any]:
    pipeline = (
        _join("property_id", "properties", "id", "property")
        + _join("owner_id", "profiles", "user_id", "owner")
        + [_strip_ids(["property", "owner"])]
    )
    return await _fetch_one("inventories", inventory_id, pipeline, "Inventory")


async def fetch_lease(lease_id: str) -> Dict[str, Any]:
    pipeline = (
        _join("property_id", "properties", "id", "property")
        + _join("tenant_id", "tenants", "id", "tenant")
        + _join("owner_id", "profiles", "user_id", "owner")
        + [_strip_ids(["property", "tenant", "owner"])]
    )
    return await _fetch_one("leases", lease_id, pipeline, "Lease")


async def fetch_rent(rent_id: str) -> Dict[str, Any]:
    pipeline = (
        _join("lease_id", "leases", "id", "lease")
        + _join("lease.property_id", "properties", "id", "lease.property")
        + _join("lease.tenant_id", "tenants", "id", "lease.tenant")
        + _join("lease.owner_id", "profiles", "user_id", "lease.owner")
        + [_strip_ids(["lease", "lease.property", "lease.tenant", "lease.owner"])]
    )
    return await _fetch_one("rents", rent_id, pipeline, "Rent")


async def insert_document_entry(entry: Dict[str, Any]) -> str:
    db = database.get_db()
    await db.documents.insert_one(dict(entry))
    return entry["id"]


async def mark_rent_receipt_sent(rent_id: str) -> None:
    db = database.get_db()
    await db.rents.update_one(
        {"id": rent_id},
        {"$set": {"receipt_sent": True, "updated_at": datetime.now(timezone.utc).isoformat()}},
    )


async def mark_lease_sent(lease_id: str, status: Optional[str] = "envoye") -> None:
    db = database.get_db()
    await db.leases.update_one(
        {"id": lease_id},
        {"$set": {"status": status, "updated_at": datetime.now(timezone.utc).isoformat()}},
    )
