# -*- coding: utf-8 -*-
"""
Application error taxonomy.

Every failure that should reach an HTTP caller is raised as a WaifuError
subclass; src.middleware.errors turns them into JSON responses of the form
{"error": <code>, "message": <text>, ...details}.
"""
from typing import Any, Dict, Optional


class WaifuError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(WaifuError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class Unauthorized(WaifuError):
    status_code = 401
    code = "unauthorized"
    default_message = "No token, authorization denied"


class Forbidden(WaifuError):
    status_code = 403
    code = "forbidden"
    default_message = "Not authorized"


class NotFound(WaifuError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class Conflict(WaifuError):
    status_code = 409
    code = "conflict"
    default_message = "Request conflicts with current state"


class OutOfStock(Conflict):
    """Raised at completion time when a line asks for more than is in stock."""

    code = "out_of_stock"

    def __init__(self, merchandise_id: str, name: str, requested: int, available: int):
        self.merchandise_id = merchandise_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough stock for {name}: requested {requested}, available {available}",
            details={
                "merchandise_id": merchandise_id,
                "requested": requested,
                "available": available,
            },
        )


class ExternalServiceError(WaifuError):
    """A third-party gateway call failed (network, auth, rate limit, bad payload)."""

    status_code = 502
    code = "external_service_error"

    def __init__(self, provider: str, message: str, upstream_status: Optional[int] = None):
        self.provider = provider
        self.upstream_status = upstream_status
        super().__init__(f"{provider}: {message}", details={"provider": provider})


class InternalError(WaifuError):
    pass
