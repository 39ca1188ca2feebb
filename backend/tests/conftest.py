"""
Pytest configuration and shared fixtures for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip the MongoDB connection in the app lifespan when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app)."""
    return TestClient(app)


@pytest.fixture
def owner_profile():
    return {
        "user_id": "owner-1",
        "first_name": "Paul",
        "last_name": "Dupont",
        "company": "SCI Dupont",
        "email": "paul@sci-dupont.fr",
        "address": "3 rue des Lilas",
        "postal_code": "69003",
        "city": "Lyon",
    }


@pytest.fixture
def property_record():
    return {
        "id": "prop-1",
        "title": "Appartement Bellecour",
        "address": "12 place Bellecour",
        "postal_code": "69002",
        "city": "Lyon",
        "property_type": "appartement",
        "surface": 48,
        "rooms": 2,
    }


@pytest.fixture
def tenant_record():
    return {"id": "tenant-1", "first_name": "Jean", "last_name": "Dupont", "email": "jean.dupont@example.fr"}


@pytest.fixture
def lease_record(property_record, tenant_record, owner_profile):
    return {
        "id": "lease-1",
        "owner_id": "owner-1",
        "property_id": "prop-1",
        "tenant_id": "tenant-1",
        "lease_type": "vide",
        "start_date": "2024-01-01",
        "end_date": None,
        "rent_amount": 950,
        "charges_amount": 50,
        "deposit_amount": 950,
        "notes": None,
        "property": property_record,
        "tenant": tenant_record,
        "owner": owner_profile,
    }


@pytest.fixture
def rent_record(lease_record):
    lease = {key: value for key, value in lease_record.items()}
    return {
        "id": "rent-1",
        "lease_id": "lease-1",
        "period_start": "2024-01-01",
        "period_end": "2024-01-31",
        "rent_amount": 950,
        "charges_amount": 50,
        "total_amount": 1000,
        "paid_date": "2024-01-05",
        "lease": lease,
    }


@pytest.fixture
def inventory_record(property_record, owner_profile):
    return {
        "id": "inv-1",
        "property_id": "prop-1",
        "owner_id": "owner-1",
        "inventory_type": "entree",
        "inventory_date": "2024-01-02",
        "general_comments": None,
        "rooms": [
            {"name": "Salon", "condition": "bon", "description": "Parquet refait", "photos": []},
            {"name": "Cuisine", "condition": "mauvais", "description": "", "photos": []},
        ],
        "property": property_record,
        "owner": owner_profile,
    }
