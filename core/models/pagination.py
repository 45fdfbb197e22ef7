"""Pagination models.

Workers walk unbounded row sets with an opaque forward cursor: the url-safe
base64 encoding of the last-seen invoice id. Rows are ordered by id, so a
cursor stays valid when new rows are inserted between pages.
"""

import base64
import binascii
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from core.errors import InvalidArgumentError

T = TypeVar("T")


def encode_cursor(last_id: UUID) -> str:
    return base64.urlsafe_b64encode(last_id.bytes).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> UUID:
    """
    Decode a cursor token back to the last-seen id.

    Raises:
        InvalidArgumentError: If the token was not produced by encode_cursor
    """
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return UUID(bytes=raw)
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise InvalidArgumentError(f"Invalid pagination cursor: {token!r}") from e


class CursorPaginationRequest(BaseModel):
    limit: int = Field(100, ge=1, le=1000)
    cursor: str | None = None

    def after_id(self) -> UUID | None:
        """Last-seen id encoded in the cursor, None on the first page."""
        return decode_cursor(self.cursor) if self.cursor else None


class CursorPaginatedVec(BaseModel, Generic[T]):
    items: list[T]
    next_cursor: str | None = None
    # Rows of the page that could not be read; the cursor already moved past them
    failed_ids: list[UUID] = Field(default_factory=list)


class OrderBy(str, Enum):
    DATE_ASC = "date_asc"
    DATE_DESC = "date_desc"
    ID_ASC = "id_asc"
    ID_DESC = "id_desc"

    @property
    def sql(self) -> str:
        return {
            "date_asc": "invoice_date ASC, id ASC",
            "date_desc": "invoice_date DESC, id DESC",
            "id_asc": "id ASC",
            "id_desc": "id DESC",
        }[self.value]


class PaginationRequest(BaseModel):
    page: int = Field(0, ge=0)
    per_page: int = Field(50, ge=1, le=500)

    @property
    def offset(self) -> int:
        return self.page * self.per_page


class PaginatedVec(BaseModel, Generic[T]):
    items: list[T]
    total_pages: int
    total_results: int
