import os
import tempfile
from contextlib import contextmanager

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="event-uploads-"))
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import identity
import main
from database import create_document, ensure_indexes, get_db

TRANSACTIONAL = ("user", "customer", "admin", "feedback")


@contextmanager
def snapshot_transaction(db):
    """mongomock has no sessions: restore the collections when the block fails."""
    saved = {name: list(db[name].find({})) for name in TRANSACTIONAL}
    try:
        yield None
    except BaseException:
        for name, docs in saved.items():
            db[name].delete_many({})
            if docs:
                db[name].insert_many(docs)
        raise


@pytest.fixture
def db(monkeypatch):
    database = mongomock.MongoClient().get_database("event_planning_test")
    ensure_indexes(database)
    monkeypatch.setattr(identity, "transaction", snapshot_transaction)
    monkeypatch.setattr(identity, "LEGACY_FALLBACK", True)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def auth_headers(user_id, role, user_name=None):
    token = main.create_access_token({"userId": user_id, "userName": user_name or user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return auth_headers("AD01", "admin", "admin")


@pytest.fixture
def customer_headers():
    return auth_headers("CUS01", "customer", "jdoe")


@pytest.fixture
def catalog_data(db):
    create_document(db, "event", {"E_ID": "EVT001", "E_name": "Wedding", "E_description": "Full service", "status": "active"})
    create_document(db, "package", {"Pg_ID": "PG001", "Pg_price": 1500.0, "event": "EVT001"})
    return {"eventId": "EVT001", "packageId": "PG001"}


@pytest.fixture
def customer(db):
    return identity.create_user(db, "customer", {
        "userId": "CUS01",
        "firstName": "Jane",
        "lastName": "Doe",
        "userName": "jdoe",
        "password": "secret1",
        "phoneNo": "0771234567",
    })


def card_fields(**overrides):
    fields = {
        "p_amount": 1500.0,
        "customerId": "CUS01",
        "eventId": "EVT001",
        "packageId": "PG001",
        "c_type": "Credit Card",
        "c_description": "Payment for event EVT001, package PG001",
        "cardNumber": "4111111111111111",
        "cardholderName": "Jane Doe",
        "expiryDate": "12/28",
    }
    fields.update(overrides)
    return fields


def portal_fields(**overrides):
    fields = {
        "p_amount": 1500.0,
        "customerId": "CUS01",
        "eventId": "EVT001",
        "packageId": "PG001",
        "p_description": "Bank transfer",
        "reference": "TRX-99812",
        "bankSlipUrl": "http://localhost:8000/uploads/bank-slips/slip.png",
    }
    fields.update(overrides)
    return fields
