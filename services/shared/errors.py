"""Domain errors raised by the core services.

Only conditions the caller can act on get a class here. Cache and pub/sub
failures never surface as exceptions, and persistence errors propagate as the
driver raised them.
"""
from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        super().__init__(f"{resource} not found", {"id": resource_id} if resource_id else None)
        self.resource = resource
