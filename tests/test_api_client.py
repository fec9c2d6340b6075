import httpx
import pytest

from api_client import ApiClientError, HotelBookingClient, SessionExpired
from conftest import create_hotel, create_user, login
from settings import settings


def mock_client(handler, sleeps):
    http = httpx.Client(base_url="http://api.test", transport=httpx.MockTransport(handler))
    return HotelBookingClient(client=http, sleep=sleeps.append)


def test_expired_session_is_refreshed_and_replayed(client, db, monkeypatch):
    user_id = create_user(db, "guest@example.com")
    monkeypatch.setattr(settings, "access_token_ttl_seconds", -60)
    login(client, "guest@example.com")
    monkeypatch.undo()
    assert client.get("/api/users/me").status_code == 401

    api = HotelBookingClient(client=client)

    assert api.me()["_id"] == user_id
    assert api.validate_token()["userId"] == user_id


def test_failed_refresh_ends_session(client):
    api = HotelBookingClient(client=client)

    with pytest.raises(SessionExpired) as excinfo:
        api.favorites()

    assert excinfo.value.status_code == 401
    assert "refresh_token" not in client.cookies


def test_login_failure_is_not_refreshed(client, db):
    create_user(db, "guest@example.com")
    api = HotelBookingClient(client=client)

    with pytest.raises(ApiClientError) as excinfo:
        api.login("guest@example.com", "wrong-password")

    assert not isinstance(excinfo.value, SessionExpired)
    assert excinfo.value.message == "Invalid email or password"


def test_search_passes_repeated_filters(client, db):
    create_hotel(db, "owner-1", name="Pool Hotel", facilities=["WiFi", "Pool"], star_rating=4)
    create_hotel(db, "owner-1", name="Plain Hotel", facilities=["WiFi"], star_rating=4)
    api = HotelBookingClient(client=client)

    body = api.search_hotels(facilities=["WiFi", "Pool"], stars=[4, 5], max_price=500)

    assert [h["name"] for h in body["data"]] == ["Pool Hotel"]


def test_rate_limited_requests_back_off():
    calls = []
    sleeps = []

    def handler(request):
        calls.append(request.url.path)
        if len(calls) < 3:
            return httpx.Response(429, json={"message": "Too many requests"})
        return httpx.Response(200, json={"data": [], "pagination": {"total": 0, "page": 1, "pages": 0}})

    api = mock_client(handler, sleeps)

    assert api.search_hotels()["pagination"]["total"] == 0
    assert sleeps == [1, 2]
    assert len(calls) == 3


def test_rate_limit_gives_up_after_three_retries():
    sleeps = []
    api = mock_client(lambda request: httpx.Response(429, json={"message": "Too many requests"}), sleeps)

    with pytest.raises(ApiClientError) as excinfo:
        api.hotel("abc")

    assert excinfo.value.status_code == 429
    assert sleeps == [1, 2, 4]


def test_network_errors_are_retried():
    attempts = []
    sleeps = []

    def handler(request):
        attempts.append(1)
        if len(attempts) <= 2:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=[])

    api = mock_client(handler, sleeps)

    assert api.my_bookings() == []
    assert sleeps == [2.0, 4.0]


def test_network_errors_exhaust_retries():
    sleeps = []

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    api = mock_client(handler, sleeps)

    with pytest.raises(httpx.ConnectError):
        api.dashboard()
    assert sleeps == [2.0, 4.0]


def test_error_body_message_is_surfaced():
    api = mock_client(lambda request: httpx.Response(404, json={"message": "Hotel not found"}), [])

    with pytest.raises(ApiClientError) as excinfo:
        api.hotel("missing")

    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Hotel not found"
    assert excinfo.value.body == {"message": "Hotel not found"}
