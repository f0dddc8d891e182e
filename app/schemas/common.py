"""Shared schema primitives and the {success, data | error} response envelope."""

import uuid
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class IDSchema(BaseSchema):
    id: uuid.UUID


class TimestampedSchema(IDSchema):
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseSchema):
    message: str


class ErrorBody(BaseSchema):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorEnvelope(BaseSchema):
    success: bool = False
    error: ErrorBody


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int
    pages: int


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def paginate(items: list, total: int, page: int, limit: int) -> dict[str, Any]:
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit if limit else 0,
    }
