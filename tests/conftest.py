import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import itertools
from typing import Dict, List, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from payments import PaymentIntent, get_payment_gateway, to_minor_units
from schemas import Hotel, User
from security import hash_password
from storage import get_image_store

PASSWORD = "password123"


class FakeGateway:
    """In-process stand-in for the payment processor."""

    def __init__(self):
        self.intents: Dict[str, PaymentIntent] = {}
        self._ids = itertools.count(1)

    def create_intent(self, amount: float, metadata: Dict[str, str]) -> PaymentIntent:
        intent_id = f"pi_test_{next(self._ids)}"
        intent = PaymentIntent(
            id=intent_id,
            amount=to_minor_units(amount),
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        return self.intents.get(intent_id)

    def succeed(self, intent_id: str) -> None:
        self.intents[intent_id].status = "succeeded"


class FakeImageStore:
    def __init__(self):
        self.uploaded: List[str] = []
        self.deleted: List[str] = []

    def upload(self, files) -> List[str]:
        urls = []
        for f in files:
            url = f"https://res.cloudinary.com/demo/image/upload/v1/hotels/{len(self.uploaded) + 1}-{f.filename}"
            self.uploaded.append(url)
            urls.append(url)
        return urls

    def delete(self, url: str) -> None:
        self.deleted.append(url)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["hotel_booking_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture(autouse=True)
def overrides(db, gateway, image_store):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_image_store] = lambda: image_store
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def make_client():
    clients = []

    def factory() -> TestClient:
        client = TestClient(app)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture
def client(make_client):
    return make_client()


def create_user(db, email: str, role: str = "user") -> str:
    user = User(email=email, password=hash_password(PASSWORD), first_name="Test", last_name=role.title(), role=role)
    return create_document(db, "users", user)


def login(client: TestClient, email: str) -> str:
    response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return response.json()["userId"]


def create_hotel(db, owner_id: str, **overrides) -> str:
    data = dict(
        user_id=owner_id,
        name="Seaside Resort",
        city="Malibu",
        country="USA",
        description="Oceanfront stays",
        type=["Resort"],
        adult_count=2,
        child_count=1,
        facilities=["WiFi", "Pool"],
        price_per_night=100,
        star_rating=4,
    )
    data.update(overrides)
    return create_document(db, "hotels", Hotel(**data))


@pytest.fixture
def login_as(db, make_client):
    """Create a user with the given role and return a logged-in client and its id."""
    counter = itertools.count(1)

    def factory(role: str = "user"):
        email = f"{role}{next(counter)}@example.com"
        user_id = create_user(db, email, role)
        client = make_client()
        login(client, email)
        return client, user_id

    return factory


@pytest.fixture
def owner_hotel(db, login_as):
    owner, owner_id = login_as("hotel_owner")
    hotel_id = create_hotel(db, owner_id)
    return owner, owner_id, hotel_id
