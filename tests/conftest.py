"""
Shared fixtures: an in-memory MongoDB (mongomock), a settable clock wired
into the app's get_now dependency, and helpers for seeding users and
minting bearer tokens.
"""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LIVE_POLL_SECONDS", "0.01")
os.environ.setdefault("VERIFICATION_POLL_SECONDS", "0.01")

from datetime import datetime
from typing import Any, Dict

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import get_optional_db
from identity import Identity, create_token
from schemas import CheckoutRequest, OrderItem, User


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def set(self, *args) -> datetime:
        self.now = datetime(*args)
        return self.now


@pytest.fixture
def db():
    return mongomock.MongoClient()["grocery_test"]


@pytest.fixture
def clock():
    return Clock(datetime(2024, 1, 15, 10, 0, 0))


@pytest.fixture
def client(db, clock):
    main.app.dependency_overrides[get_optional_db] = lambda: db
    main.app.dependency_overrides[main.get_now] = lambda: clock.now
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
    main.app.state.identity_provider = None


@pytest.fixture
def make_user(db):
    def _make(uid: str, role: str = "customer", verified: bool = True, **fields) -> Dict[str, Any]:
        defaults = {"name": uid.title(), "email": f"{uid}@example.com", "phone": "01712345678"}
        if role == "agent":
            defaults.update(is_paid_agent=True, rating=0, total_ratings=0, location="Dhanmondi")
        if role == "customer":
            defaults.update(location="Dhanmondi")
        defaults.update(fields)
        record = User(role=role, verified=verified, created_at="2024-01-01T00:00:00", **defaults)
        doc = record.model_dump(mode="json")
        doc["_id"] = uid
        db["user"].insert_one(doc)
        doc = dict(doc)
        doc["id"] = doc.pop("_id")
        return doc

    return _make


def auth_headers(uid: str, verified: bool = True, expire_minutes: int = 60) -> Dict[str, str]:
    token = create_token(Identity(id=uid, email=f"{uid}@example.com", email_verified=verified, name=uid.title()),
                         expire_minutes=expire_minutes)
    return {"Authorization": f"Bearer {token}"}


def cart(*lines, delivery_type: str = "normal", address: str = "House 12, Road 5, Dhanmondi") -> CheckoutRequest:
    items = [OrderItem(id=str(i), name=name, price=price, quantity=qty, unit="pcs")
             for i, (name, price, qty) in enumerate(lines, start=101)]
    return CheckoutRequest(items=items, delivery_type=delivery_type, delivery_address=address)
