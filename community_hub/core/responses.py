"""
Uniform result envelope returned by every endpoint.
"""
import math
from typing import Any, Generic, Optional, TypeVar

from fastapi import status
from pydantic import BaseModel


T = TypeVar("T")


class Pagination(BaseModel):
    """Pagination metadata for list responses."""
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        return cls(total=total, page=page, limit=limit, pages=math.ceil(total / limit) if limit else 0)


class AppResponse(BaseModel, Generic[T]):
    """
    Envelope: {success, code, message, data?, pagination?}
    """
    success: bool = True
    code: int = status.HTTP_200_OK
    message: str = "Success"
    data: Optional[T] = None
    pagination: Optional[Pagination] = None


def success(
    data: Any = None,
    message: str = "Success",
    code: int = status.HTTP_200_OK,
    pagination: Pagination | None = None,
) -> AppResponse:
    return AppResponse(success=True, code=code, message=message, data=data, pagination=pagination)


def failure(message: str, code: int = status.HTTP_400_BAD_REQUEST, data: Any = None) -> AppResponse:
    return AppResponse(success=False, code=code, message=message, data=data)
