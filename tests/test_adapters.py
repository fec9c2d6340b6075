import io
import logging
from types import SimpleNamespace

import cloudinary.exceptions
import cloudinary.uploader
import pytest
import stripe
from fastapi import UploadFile

from errors import UpstreamFailure, ValidationError
from payments import PaymentGateway
from schemas import PaymentIntentStatus
from storage import MAX_FILE_SIZE, MAX_FILES, ImageStore


class Metadata(dict):
    def to_dict(self):
        return dict(self)


def stripe_intent(**overrides):
    fields = dict(
        id="pi_123",
        amount=45000,
        status="succeeded",
        client_secret="pi_123_secret",
        metadata=Metadata(hotelId="h1", userId="u1"),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class PaymentIntents:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def create(self, params=None):
        self.calls.append(("create", params))
        if self.error:
            raise self.error
        return self.result

    def retrieve(self, intent_id):
        self.calls.append(("retrieve", intent_id))
        if self.error:
            raise self.error
        return self.result


def gateway_with(intents):
    gateway = PaymentGateway("sk_test_123", currency="gbp", timeout=5)
    gateway.client = SimpleNamespace(payment_intents=intents)
    return gateway


# Payments

def test_create_intent_sends_minor_units_and_metadata():
    intents = PaymentIntents(result=stripe_intent(status="requires_payment_method"))
    gateway = gateway_with(intents)

    intent = gateway.create_intent(450.0, {"hotelId": "h1", "userId": "u1"})

    assert intents.calls == [
        ("create", {"amount": 45000, "currency": "gbp", "metadata": {"hotelId": "h1", "userId": "u1"}})
    ]
    assert intent.id == "pi_123"
    assert intent.client_secret == "pi_123_secret"
    assert intent.state is PaymentIntentStatus.REQUIRES_PAYMENT_METHOD


def test_create_intent_failure_is_upstream():
    gateway = gateway_with(PaymentIntents(error=stripe.APIConnectionError("network down")))
    with pytest.raises(UpstreamFailure) as excinfo:
        gateway.create_intent(100, {"hotelId": "h1", "userId": "u1"})
    assert excinfo.value.status_code == 500


def test_retrieve_intent_converts_fields():
    gateway = gateway_with(PaymentIntents(result=stripe_intent(metadata=Metadata(hotelId="h1", nights=3))))

    intent = gateway.retrieve_intent("pi_123")

    assert intent.amount == 45000
    assert intent.metadata == {"hotelId": "h1", "nights": "3"}
    assert intent.state is PaymentIntentStatus.SUCCEEDED


def test_retrieve_intent_without_metadata():
    gateway = gateway_with(PaymentIntents(result=stripe_intent(metadata=None)))
    assert gateway.retrieve_intent("pi_123").metadata == {}


def test_unknown_processor_status():
    gateway = gateway_with(PaymentIntents(result=stripe_intent(status="something_new")))
    intent = gateway.retrieve_intent("pi_123")
    assert intent.state is PaymentIntentStatus.UNKNOWN
    assert intent.status == "something_new"


def test_missing_intent_is_none():
    error = stripe.InvalidRequestError("No such payment_intent", "intent", code="resource_missing")
    gateway = gateway_with(PaymentIntents(error=error))
    assert gateway.retrieve_intent("pi_missing") is None


def test_rejected_lookup_is_upstream():
    error = stripe.InvalidRequestError("Invalid API key", None, code="api_key_invalid")
    gateway = gateway_with(PaymentIntents(error=error))
    with pytest.raises(UpstreamFailure):
        gateway.retrieve_intent("pi_123")


def test_processor_outage_is_upstream():
    gateway = gateway_with(PaymentIntents(error=stripe.APIConnectionError("timed out")))
    with pytest.raises(UpstreamFailure):
        gateway.retrieve_intent("pi_123")


# Images

def upload_file(name="room.png", size=16):
    return UploadFile(file=io.BytesIO(b"x" * size), filename=name)


@pytest.fixture
def store():
    return ImageStore("demo", "key", "secret", timeout=5)


@pytest.fixture
def uploads(monkeypatch):
    calls = []

    def fake_upload(content, **options):
        calls.append((content, options))
        return {"secure_url": f"https://res.cloudinary.com/demo/image/upload/v1/hotels/{options['public_id']}.png"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    return calls


def test_upload_returns_secure_urls(store, uploads):
    urls = store.upload([upload_file("a.png", size=4), upload_file("b.png")])

    assert len(urls) == 2
    assert all(url.startswith("https://res.cloudinary.com/") for url in urls)
    content, options = uploads[0]
    assert content == b"xxxx"
    assert options["folder"] == "hotels"
    assert options["timeout"] == 5
    assert uploads[0][1]["public_id"] != uploads[1][1]["public_id"]


def test_upload_rejects_too_many_files(store, uploads):
    with pytest.raises(ValidationError):
        store.upload([upload_file() for _ in range(MAX_FILES + 1)])
    assert uploads == []


def test_upload_rejects_large_files(store, uploads):
    with pytest.raises(ValidationError) as excinfo:
        store.upload([upload_file("huge.png", size=MAX_FILE_SIZE + 1)])
    assert "huge.png" in excinfo.value.message
    assert uploads == []


def test_upload_failure_is_upstream(store, monkeypatch):
    def broken_upload(content, **options):
        raise cloudinary.exceptions.Error("quota exceeded")

    monkeypatch.setattr(cloudinary.uploader, "upload", broken_upload)
    with pytest.raises(UpstreamFailure):
        store.upload([upload_file()])


def test_delete_destroys_public_id(store, monkeypatch):
    destroyed = []
    monkeypatch.setattr(cloudinary.uploader, "destroy", lambda public_id, **options: destroyed.append(public_id))

    store.delete("https://res.cloudinary.com/demo/image/upload/v17/hotels/abc.jpg")
    store.delete("https://example.com/not-cloudinary.jpg")

    assert destroyed == ["hotels/abc"]


def test_delete_failure_is_logged(store, monkeypatch, caplog):
    def broken_destroy(public_id, **options):
        raise cloudinary.exceptions.Error("not found")

    monkeypatch.setattr(cloudinary.uploader, "destroy", broken_destroy)

    with caplog.at_level(logging.WARNING, logger="storage"):
        store.delete("https://res.cloudinary.com/demo/image/upload/v17/hotels/abc.jpg")

    assert "Failed to delete image hotels/abc" in caplog.text
