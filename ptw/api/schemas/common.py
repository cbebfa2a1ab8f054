"""Common schemas for the permit-to-work API."""

from typing import Any, Dict, Generic, List, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response wrapper."""
    items: List[T]
    total: int
    page: int
    per_page: int
    pages: int

    @classmethod
    def create(cls, items: List[T], total: int, page: int, per_page: int):
        pages = (total + per_page - 1) // per_page if per_page > 0 else 0
        return cls(items=items, total=total, page=page, per_page=per_page, pages=pages)


class ErrorDetail(BaseModel):
    """Body of every lifecycle error: a stable code and a readable message."""
    error: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: ErrorDetail


# Lifecycle errors every permit-facing router can answer with
ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Wrong stage, invalid payload or already decided"},
    403: {"model": ErrorResponse, "description": "Caller is not the bound approver or owner"},
    404: {"model": ErrorResponse, "description": "Permit or extension request not found"},
    503: {"model": ErrorResponse, "description": "Permit store failure"},
}
