from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional


class Role(str, Enum):
    """Staff roles. A user without a role is an ordinary patron."""

    SENIOR_STAFF = "SeniorStaff"
    JUNIOR_STAFF = "JuniorStaff"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Role"]:
        if value is None:
            return None
        return cls(value)


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    return date.fromisoformat(value)


@dataclass
class User:
    id: str
    username: str
    password_hash: str
    role: Optional[Role] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role is not None

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data["id"],
            username=data["username"],
            password_hash=data["password_hash"],
            role=Role.parse(data.get("role")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Author:
    id: str
    name: str
    bio: Optional[str] = None
    book_ids: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @staticmethod
    def from_dict(data: dict, book_ids: Optional[List[str]] = None) -> "Author":
        return Author(
            id=data["id"],
            name=data["name"],
            bio=data.get("bio"),
            book_ids=list(book_ids or []),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Book:
    id: str
    title: str
    isbn: str
    published_date: date
    author_ids: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @staticmethod
    def from_dict(data: dict, author_ids: Optional[List[str]] = None) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            isbn=data["isbn"],
            published_date=date.fromisoformat(data["published_date"]),
            author_ids=list(author_ids or []),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Borrower:
    id: str
    user_id: str
    name: str
    email: str
    phone: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @staticmethod
    def from_dict(data: dict) -> "Borrower":
        return Borrower(
            id=data["id"],
            user_id=data["user_id"],
            name=data["name"],
            email=data["email"],
            phone=data["phone"],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Loan:
    """A loan of one book to one borrower.

    ``return_date`` is the planned (or, once closed, the actual) end of the
    loan; ``None`` means the book is out with no end in sight. The loan
    occupies the book over ``[loan_date, return_date)``. ``returned_at`` is
    set when the return is confirmed and makes the loan closed.
    """

    id: str
    book_id: str
    borrower_id: str
    loan_date: date
    return_date: Optional[date] = None
    returned_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.returned_at is not None

    def effective_end(self) -> date:
        return self.return_date if self.return_date is not None else date.max

    def is_active_on(self, day: date) -> bool:
        return self.loan_date <= day < self.effective_end()

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            id=data["id"],
            book_id=data["book_id"],
            borrower_id=data["borrower_id"],
            loan_date=date.fromisoformat(data["loan_date"]),
            return_date=_parse_date(data.get("return_date")),
            returned_at=data.get("returned_at"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
