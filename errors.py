"""
API error taxonomy.

Handlers raise these; the exception handlers registered in main.py turn them
into JSON responses of the form {"message": ...}.
"""
from typing import Any, Dict, List, Optional, Sequence


class ApiError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def body(self) -> Dict[str, Any]:
        return {"message": self.message}


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []

    def body(self) -> Dict[str, Any]:
        body = super().body()
        if self.errors:
            body["errors"] = self.errors
        return body


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None, clear_cookies: Sequence[str] = ()):
        super().__init__(message)
        self.clear_cookies = tuple(clear_cookies)


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class UpstreamFailure(ApiError):
    """The payment processor or the storage provider failed."""

    status_code = 500
    default_message = "Upstream service failure"


class InternalError(ApiError):
    status_code = 500


def format_validation_errors(errors) -> List[Dict[str, Any]]:
    """Reduce pydantic error dicts to JSON-safe {"field", "message"} pairs."""
    formatted = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        formatted.append({"field": ".".join(loc), "message": error.get("msg", "Invalid value")})
    return formatted
