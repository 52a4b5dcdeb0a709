"""Request and response models for the HTTP API.

Every request type has one pydantic model. ``validate`` parses a raw JSON
body into that model and turns any failure into a ``ValidationError`` with a
field -> messages map. Cross-field rules live in each model's ``problems``.
Responses are built from entities with the explicit ``to_*_response``
functions at the bottom of this module.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

from errors import ValidationError
from models import Author, Book, Borrower, Loan, Role, User, utc_today
from utils.validators import ContactValidator, ISBNValidator, PasswordValidator, TextValidator

USERNAME_MIN, USERNAME_MAX = 3, 50
NAME_MAX = 100
BIO_MAX = 1000
TITLE_MAX = 200
EMAIL_MAX = 100
PHONE_MAX = 15


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestModel(CamelModel):
    def problems(self) -> Dict[str, List[str]]:
        return {}


def _check_length(value: Optional[str], label: str, max_length: int,
                  min_length: int = 1, required: bool = True) -> Optional[str]:
    problem = TextValidator.length_problem(value, label, max_length, min_length, required)
    if problem:
        raise ValueError(problem)
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not ContactValidator.is_valid_email(value):
        raise ValueError("A valid email is required")
    if len(value) > EMAIL_MAX:
        raise ValueError(f"Email cannot exceed {EMAIL_MAX} characters")
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if len(value) > PHONE_MAX:
        raise ValueError(f"Phone number cannot exceed {PHONE_MAX} characters")
    if not ContactValidator.is_valid_phone(value):
        raise ValueError("Phone number must be a valid international number")
    return value


def _check_password(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    found = PasswordValidator.problems(value)
    if found:
        raise PydanticCustomError("password_rules", "; ".join(found), {"problems": found})
    return value


def _check_author_ids(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return value
    if not value:
        raise ValueError("At least one author is required")
    if len(set(value)) != len(value):
        raise ValueError("Duplicate author IDs are not allowed")
    return value


# --- Users ---

class RegisterRequest(RequestModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        return _check_length(v, "Username", USERNAME_MAX, USERNAME_MIN)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)


class LoginRequest(RequestModel):
    username: str
    password: str

    @field_validator("username", "password")
    @classmethod
    def _required(cls, v: str, info: ValidationInfo) -> str:
        if TextValidator.is_blank(v):
            raise ValueError(f"{info.field_name.capitalize()} is required")
        return v


class UserUpdateRequest(RequestModel):
    username: str | None = None
    password: str | None = None
    role: Role | None = None

    @field_validator("username")
    @classmethod
    def _username(cls, v: Optional[str]) -> Optional[str]:
        return _check_length(v, "Username", USERNAME_MAX, USERNAME_MIN, required=False)

    @field_validator("password")
    @classmethod
    def _password(cls, v: Optional[str]) -> Optional[str]:
        return _check_password(v)

    @property
    def role_provided(self) -> bool:
        return "role" in self.model_fields_set


# --- Authors ---

class AuthorCreateRequest(RequestModel):
    name: str
    bio: str | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _check_length(v, "Name", NAME_MAX)

    @field_validator("bio")
    @classmethod
    def _bio(cls, v: Optional[str]) -> Optional[str]:
        return _check_length(v, "Bio", BIO_MAX, min_length=0, required=False)


class AuthorUpdateRequest(RequestModel):
    name: str | None = None
    bio: str | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and TextValidator.is_blank(v):
            raise ValueError("Name cannot be empty")
        return _check_length(v, "Name", NAME_MAX, required=False)

    @field_validator("bio")
    @classmethod
    def _bio(cls, v: Optional[str]) -> Optional[str]:
        return _check_length(v, "Bio", BIO_MAX, min_length=0, required=False)


# --- Books ---

class BookCreateRequest(RequestModel):
    title: str
    isbn: str
    published_date: date
    author_ids: List[str]

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return _check_length(v, "Title", TITLE_MAX)

    @field_validator("isbn")
    @classmethod
    def _isbn(cls, v: str) -> str:
        if not ISBNValidator.is_valid_isbn(v):
            raise ValueError("ISBN must be exactly 13 digits")
        return v

    @field_validator("author_ids")
    @classmethod
    def _author_ids(cls, v: List[str]) -> List[str]:
        return _check_author_ids(v)


class BookUpdateRequest(RequestModel):
    title: str | None = None
    isbn: str | None = None
    published_date: date | None = None
    author_ids: List[str] | None = None

    @field_validator("title")
    @classmethod
    def _title(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and TextValidator.is_blank(v):
            raise ValueError("Title cannot be empty")
        return _check_length(v, "Title", TITLE_MAX, required=False)

    @field_validator("isbn")
    @classmethod
    def _isbn(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not ISBNValidator.is_valid_isbn(v):
            raise ValueError("ISBN must be exactly 13 digits")
        return v

    @field_validator("author_ids")
    @classmethod
    def _author_ids(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _check_author_ids(v)


# --- Borrowers ---

class BorrowerCreateRequest(RequestModel):
    user_id: str
    name: str
    email: str
    phone: str

    @field_validator("user_id")
    @classmethod
    def _user_id(cls, v: str) -> str:
        if TextValidator.is_blank(v):
            raise ValueError("User ID is required")
        return v

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _check_length(v, "Name", NAME_MAX)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        return _check_phone(v)


class BorrowerUpdateRequest(RequestModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and TextValidator.is_blank(v):
            raise ValueError("Name cannot be empty")
        return _check_length(v, "Name", NAME_MAX, required=False)

    @field_validator("email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)


# --- Loans ---

class LoanCreateRequest(RequestModel):
    book_id: str
    borrower_id: str
    loan_date: date
    return_date: date | None = None

    @field_validator("book_id", "borrower_id")
    @classmethod
    def _ids(cls, v: str, info: ValidationInfo) -> str:
        if TextValidator.is_blank(v):
            label = "Book ID" if info.field_name == "book_id" else "Borrower ID"
            raise ValueError(f"{label} is required")
        return v

    @field_validator("loan_date")
    @classmethod
    def _loan_date(cls, v: date) -> date:
        if v > utc_today():
            raise ValueError("Loan date cannot be in the future")
        return v

    def problems(self) -> Dict[str, List[str]]:
        if self.return_date is not None and self.return_date <= self.loan_date:
            return {"returnDate": ["Return date must be after loan date"]}
        return {}


class LoanReturnRequest(RequestModel):
    return_date: date | None = None


RequestT = TypeVar("RequestT", bound=RequestModel)


def _field_errors(exc: PydanticValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "body"
        messages = errors.setdefault(field, [])
        if err["type"] == "password_rules":
            messages.extend(err["ctx"]["problems"])
        elif err["type"] == "value_error":
            messages.append(str(err["ctx"]["error"]))
        else:
            messages.append(err["msg"])
    return errors


def validate(model: Type[RequestT], data: Any) -> RequestT:
    """Parse ``data`` into ``model`` or raise ValidationError.

    Field rules are reported together. Cross-field ``problems`` only run once
    every field has parsed.
    """
    if not isinstance(data, dict):
        raise ValidationError.for_field("body", "Request body must be a JSON object")
    try:
        parsed = model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_field_errors(e)) from e
    problems = parsed.problems()
    if problems:
        raise ValidationError(problems)
    return parsed


# --- Responses ---

class UserResponse(CamelModel):
    id: str
    username: str
    role: Role | None = None


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "Bearer"


class AuthorResponse(CamelModel):
    id: str
    name: str
    bio: str | None = None
    book_ids: List[str]
    created_at: str | None = None
    updated_at: str | None = None


class BookResponse(CamelModel):
    id: str
    title: str
    isbn: str
    published_date: date
    author_ids: List[str]
    created_at: str | None = None
    updated_at: str | None = None


class BorrowerResponse(CamelModel):
    id: str
    user_id: str
    name: str
    email: str
    phone: str
    created_at: str | None = None
    updated_at: str | None = None


class LoanResponse(CamelModel):
    id: str
    book_id: str
    borrower_id: str
    loan_date: date
    return_date: date | None = None
    returned_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class AvailabilityResponse(CamelModel):
    book_id: str
    start: date
    end: date | None = None
    available: bool


def to_user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, username=user.username, role=user.role)


def to_author_response(author: Author) -> AuthorResponse:
    return AuthorResponse(
        id=author.id,
        name=author.name,
        bio=author.bio,
        book_ids=author.book_ids,
        created_at=author.created_at,
        updated_at=author.updated_at,
    )


def to_book_response(book: Book) -> BookResponse:
    return BookResponse(
        id=book.id,
        title=book.title,
        isbn=book.isbn,
        published_date=book.published_date,
        author_ids=book.author_ids,
        created_at=book.created_at,
        updated_at=book.updated_at,
    )


def to_borrower_response(borrower: Borrower) -> BorrowerResponse:
    return BorrowerResponse(
        id=borrower.id,
        user_id=borrower.user_id,
        name=borrower.name,
        email=borrower.email,
        phone=borrower.phone,
        created_at=borrower.created_at,
        updated_at=borrower.updated_at,
    )


def to_loan_response(loan: Loan) -> LoanResponse:
    return LoanResponse(
        id=loan.id,
        book_id=loan.book_id,
        borrower_id=loan.borrower_id,
        loan_date=loan.loan_date,
        return_date=loan.return_date,
        returned_at=loan.returned_at,
        created_at=loan.created_at,
        updated_at=loan.updated_at,
    )
