"""
Book model for the Library Ledger.

Represents a catalog entry together with its copy accounting:
- ``quantity``: copies the library owns
- ``available``: copies currently on the shelf

The REST API serializes these models with camelCase aliases
(``publishedYear``, ``createdAt``), matching what catalog clients send.
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ISBN_PATTERN = re.compile(r"^(\d{13}|\d{9}[\dX])$")


def normalize_isbn(value: str) -> str:
    """Strip hyphens and spaces and upper-case a trailing ISBN-10 check 'x'.

    Raises:
        ValueError: If the result is not an ISBN-10 or ISBN-13
    """
    normalized = value.replace("-", "").replace(" ", "").upper()
    if not ISBN_PATTERN.match(normalized):
        raise ValueError("ISBN must be 10 or 13 characters (digits, ISBN-10 may end in X)")
    return normalized


class BookBase(BaseModel):
    """Descriptive catalog fields shared by create, update and read models."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    isbn: str = Field(
        ...,
        description="ISBN-10 or ISBN-13, stored without hyphens",
        examples=["9780134685479", "0-306-40615-2"],
    )

    title: str = Field(
        ...,
        description="The title of the book",
        min_length=1,
        max_length=500,
        examples=["The Great Gatsby"],
    )

    author: str = Field(
        ...,
        description="Author display name",
        min_length=1,
        max_length=200,
        examples=["F. Scott Fitzgerald"],
    )

    genre: str | None = Field(
        None,
        description="Literary genre or category",
        max_length=100,
        examples=["Fiction", "Science Fiction"],
    )

    published_year: int | None = Field(
        None,
        description="Year the book was published",
        ge=1450,
        le=datetime.now().year + 1,
    )

    description: str | None = Field(None, max_length=2000)

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str) -> str:
        return normalize_isbn(v)

    @field_validator("title", "author")
    @classmethod
    def strip_text(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("genre")
    @classmethod
    def normalize_genre(cls, v: str | None) -> str | None:
        """Normalize genre to title case; blank means no genre."""
        if v is None or not v.strip():
            return None
        return v.strip().title()


class Book(BookBase):
    """
    A catalog entry as stored.

    ``available`` never exceeds ``quantity``; the difference is the number of
    copies currently out on loan.
    """

    id: str = Field(
        ...,
        description="Opaque book identifier",
        pattern=r"^book_[a-f0-9]{8,}$",
        examples=["book_3f2c1a9b7d4e"],
    )

    quantity: int = Field(..., description="Total copies owned by the library", ge=0)

    available: int = Field(..., description="Copies currently available for checkout", ge=0)

    created_at: datetime | None = None

    updated_at: datetime | None = None

    @model_validator(mode="after")
    def validate_copies(self) -> "Book":
        if self.available > self.quantity:
            raise ValueError("Available copies cannot exceed quantity")
        return self

    @property
    def is_available(self) -> bool:
        return self.available > 0

    @property
    def on_loan(self) -> int:
        """Copies currently checked out."""
        return self.quantity - self.available
