"""
Store errors

Every error the API reports on purpose is a StoreError. They subclass
FastAPI's HTTPException so both route handlers and the inventory layer can
raise them and FastAPI renders them as {"detail": ...}.
"""

from typing import Optional

from fastapi import HTTPException


class StoreError(HTTPException):
    status_code = 500
    message = "Store error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(status_code=self.status_code, detail=detail or self.message, headers=headers)


class InvalidRequest(StoreError):
    status_code = 400
    message = "Invalid request"


class Unauthorized(StoreError):
    status_code = 401
    message = "Not authenticated"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(StoreError):
    status_code = 403
    message = "Admin only"


class NotFound(StoreError):
    status_code = 404
    message = "Not found"


class Conflict(StoreError):
    status_code = 409
    message = "Conflict"


class InsufficientStock(Conflict):
    message = "Insufficient stock"

    def __init__(self, available: int, name: Optional[str] = None):
        self.available = available
        label = f" for {name}" if name else ""
        super().__init__(f"Insufficient stock{label}: only {available} available")


class InvalidStatus(InvalidRequest):
    message = "Invalid status"


class InvalidTransition(Conflict):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")


class DatabaseUnavailable(StoreError):
    status_code = 503
    message = "Database not available. Check DATABASE_URL and DATABASE_NAME environment variables."
