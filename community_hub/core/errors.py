"""
Service-level error taxonomy.

Services raise these instead of HTTPException so they stay usable outside a
request; the app-level handler in main.py renders them into the response envelope.
"""
from typing import Any

from fastapi import status


class ServiceError(Exception):
    """Base class for errors raised by feature services."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int | None = None, data: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.data = data


class BadRequestError(ServiceError):
    """Precondition violation (tenant/branch mismatch, invalid state)."""
    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    """Duplicate / uniqueness violation, whether detected by a pre-check or by the database."""
    status_code = status.HTTP_409_CONFLICT
