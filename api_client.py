"""
HTTP client for the Hotel Booking API.

Session cookies live in the underlying httpx client's cookie jar. An expired
access token is refreshed once and the request replayed once; if the refresh
fails the session is dropped and SessionExpired is raised. Rate-limited and
network-failed requests are retried with a short backoff.
"""
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

REFRESH_PATH = "/api/auth/refresh-token"
NO_REFRESH_PATHS = {REFRESH_PATH, "/api/auth/login", "/api/auth/logout", "/api/users/register"}
SESSION_COOKIES = ("auth_token", "refresh_token")

RATE_LIMIT_RETRIES = 3
NETWORK_RETRIES = 2
NETWORK_RETRY_DELAY = 2.0


class ApiClientError(Exception):
    def __init__(self, status_code: int, message: str, body: Any = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.body = body


class SessionExpired(ApiClientError):
    def __init__(self, message: str = "Session expired. Please login again."):
        super().__init__(401, message)


class HotelBookingClient:
    def __init__(
        self,
        base_url: str = "http://localhost:7002",
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.http = client or httpx.Client(base_url=base_url, timeout=timeout)
        self.sleep = sleep

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # transport

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        rate_limited = 0
        network_failures = 0
        while True:
            try:
                response = self.http.request(method, path, **kwargs)
            except httpx.TransportError as exc:
                if network_failures >= NETWORK_RETRIES:
                    raise
                network_failures += 1
                logger.warning("%s %s failed (%s), retrying", method, path, exc)
                self.sleep(NETWORK_RETRY_DELAY * 2 ** (network_failures - 1))
                continue
            if response.status_code == 429 and rate_limited < RATE_LIMIT_RETRIES:
                rate_limited += 1
                self.sleep(2 ** (rate_limited - 1))
                continue
            return response

    def _refresh(self) -> bool:
        response = self._send("POST", REFRESH_PATH)
        return response.status_code == 200

    def _drop_session(self) -> None:
        for name in SESSION_COOKIES:
            for cookie in list(self.http.cookies.jar):
                if cookie.name == name:
                    self.http.cookies.jar.clear(cookie.domain, cookie.path, cookie.name)

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = self._send(method, path, **kwargs)
        if response.status_code != 401 or path in NO_REFRESH_PATHS:
            return response
        if not self._refresh():
            self._drop_session()
            raise SessionExpired()
        return self._send(method, path, **kwargs)

    def _json(self, method: str, path: str, **kwargs) -> Any:
        response = self.request(method, path, **kwargs)
        body = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = response.text
        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else str(body)
            raise ApiClientError(response.status_code, message or response.reason_phrase, body)
        return body

    # endpoints

    def register(self, first_name: str, last_name: str, email: str, password: str, role: str = "user") -> Dict:
        payload = {"firstName": first_name, "lastName": last_name, "email": email, "password": password, "role": role}
        return self._json("POST", "/api/users/register", json=payload)

    def login(self, email: str, password: str) -> Dict:
        return self._json("POST", "/api/auth/login", json={"email": email, "password": password})

    def logout(self) -> Dict:
        return self._json("POST", "/api/auth/logout")

    def validate_token(self) -> Dict:
        return self._json("GET", "/api/auth/validate-token")

    def me(self) -> Dict:
        return self._json("GET", "/api/users/me")

    def search_hotels(
        self,
        destination: Optional[str] = None,
        page: Optional[int] = None,
        sort_option: Optional[str] = None,
        facilities: Iterable[str] = (),
        types: Iterable[str] = (),
        stars: Iterable[str] = (),
        max_price: Optional[int] = None,
        adult_count: Optional[int] = None,
        child_count: Optional[int] = None,
    ) -> Dict:
        params = [
            (key, str(value))
            for key, value in (
                ("destination", destination),
                ("page", page),
                ("sortOption", sort_option),
                ("maxPrice", max_price),
                ("adultCount", adult_count),
                ("childCount", child_count),
            )
            if value not in (None, "")
        ]
        params += [("facilities", f) for f in facilities]
        params += [("types", t) for t in types]
        params += [("stars", str(s)) for s in stars]
        return self._json("GET", "/api/hotels/search", params=params)

    def hotel(self, hotel_id: str) -> Dict:
        return self._json("GET", f"/api/hotels/{hotel_id}")

    def create_payment_intent(self, hotel_id: str, number_of_nights: int) -> Dict:
        return self._json(
            "POST", f"/api/hotels/{hotel_id}/bookings/payment-intent", json={"numberOfNights": number_of_nights}
        )

    def confirm_booking(self, hotel_id: str, booking: Dict[str, Any]) -> Dict:
        return self._json("POST", f"/api/hotels/{hotel_id}/bookings", json=booking)

    def my_bookings(self) -> list:
        return self._json("GET", "/api/my-bookings")

    def favorites(self) -> list:
        return self._json("GET", "/api/favorites")

    def add_favorite(self, hotel_id: str) -> Dict:
        return self._json("POST", f"/api/favorites/{hotel_id}")

    def remove_favorite(self, hotel_id: str) -> Dict:
        return self._json("DELETE", f"/api/favorites/{hotel_id}")

    def reviews(self, hotel_id: str) -> list:
        return self._json("GET", f"/api/reviews/{hotel_id}")

    def add_review(self, hotel_id: str, rating: int, comment: str = "", categories: Optional[Dict] = None) -> Dict:
        payload = {"rating": rating, "comment": comment, "categories": categories or {}}
        return self._json("POST", f"/api/reviews/{hotel_id}", json=payload)

    def dashboard(self) -> Dict:
        return self._json("GET", "/api/admin/dashboard")
