import json
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Type

from fastapi import Depends, FastAPI, Query, Request, Response, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authorization import Operation, authorize, authorize_owner
from config import settings
from errors import LibraryError, UnauthorizedError, ValidationError
from library import Library
from schemas import (
    AuthorCreateRequest, AuthorResponse, AuthorUpdateRequest, AvailabilityResponse,
    BookCreateRequest, BookResponse, BookUpdateRequest, BorrowerCreateRequest,
    BorrowerResponse, BorrowerUpdateRequest, LoanCreateRequest, LoanResponse,
    LoanReturnRequest, LoginRequest, RegisterRequest, RequestT, TokenResponse,
    UserResponse, UserUpdateRequest, to_author_response, to_book_response,
    to_borrower_response, to_loan_response, to_user_response, validate,
)
from security import Principal

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

library = Library()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("%s %s starting (database: %s)", settings.app_name, settings.app_version, library.db_file)
    yield
    logger.info("%s shutting down", settings.app_name)


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    return response


# --- Error responses ---

PROBLEM_MEDIA_TYPE = "application/problem+json"


def _problem(request: Request, status: int, title: str, detail: str,
             errors: Optional[dict] = None, headers: Optional[dict] = None) -> JSONResponse:
    body = {"title": title, "status": status, "detail": detail, "instance": request.url.path}
    if errors is not None:
        body["errors"] = errors
    return JSONResponse(body, status_code=status, media_type=PROBLEM_MEDIA_TYPE, headers=headers)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    logger.warning("%s %s failed with %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    errors = exc.errors if isinstance(exc, ValidationError) else None
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return _problem(request, exc.status_code, exc.title, exc.detail, errors, headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        # drop the "path"/"query" prefix FastAPI puts in front of the parameter name
        field = ".".join(str(part) for part in err["loc"][1:]) or "request"
        errors.setdefault(field, []).append(err["msg"])
    logger.warning("%s %s failed with 400: %s", request.method, request.url.path, errors)
    return _problem(request, ValidationError.status_code, ValidationError.title,
                    "One or more validation errors occurred", errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    detail = str(exc) if settings.is_development else "An unexpected error occurred."
    return _problem(request, 500, "Internal Server Error", detail)


# --- Security ---

bearer_scheme = HTTPBearer(auto_error=False)


def get_principal(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> Optional[Principal]:
    """Resolve the caller from the bearer token, if one was sent."""
    if credentials is None:
        return None
    return library.tokens.verify(credentials.credentials)


def requires(operation: Operation) -> Callable:
    """Dependency that rejects the request unless the caller may perform ``operation``."""
    def dependency(principal: Optional[Principal] = Depends(get_principal)) -> Optional[Principal]:
        authorize(principal, operation)
        return principal
    return dependency


def body(model: Type[RequestT]) -> Callable:
    """Dependency that parses and validates the JSON body into ``model``.

    Route-level ``requires`` dependencies run before this one, so callers
    without access are turned away before their payload is looked at. An
    empty body is read as ``{}``.
    """
    async def dependency(request: Request):
        raw = await request.body()
        try:
            data = json.loads(raw) if raw else {}
        except ValueError as e:
            raise ValidationError.for_field("body", "Request body must be valid JSON") from e
        return validate(model, data)
    return dependency


def request_body(model: Type[RequestT], required: bool = True) -> dict:
    """``openapi_extra`` documenting ``model`` as the JSON body read by :func:`body`."""
    schema = model.model_json_schema(ref_template="#/components/schemas/{model}")
    schema.pop("$defs", None)
    return {"requestBody": {"required": required, "content": {"application/json": {"schema": schema}}}}


# --- Health ---

@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": library.database_ok(),
    }


# --- Users ---

@app.post("/users/register", response_model=UserResponse, status_code=201,
          openapi_extra=request_body(RegisterRequest))
def register_user(payload: RegisterRequest = Depends(body(RegisterRequest))):
    return to_user_response(library.users.register(payload.username, payload.password))


@app.post("/users/login", response_model=TokenResponse,
          openapi_extra=request_body(LoginRequest))
def login(payload: LoginRequest = Depends(body(LoginRequest))):
    return TokenResponse(access_token=library.users.login(payload.username, payload.password))


@app.get("/users/{user_id}", response_model=UserResponse,
         dependencies=[Depends(requires(Operation.USER_GET))])
def get_user(user_id: str):
    return to_user_response(library.users.get_user(user_id))


@app.put("/users/update/{user_id}", response_model=UserResponse,
         dependencies=[Depends(requires(Operation.USER_UPDATE))],
         openapi_extra=request_body(UserUpdateRequest))
def update_user(user_id: str, payload: UserUpdateRequest = Depends(body(UserUpdateRequest))):
    changes = {"username": payload.username, "password": payload.password}
    if payload.role_provided:
        changes["role"] = payload.role
    return to_user_response(library.users.update_user(user_id, **changes))


# --- Authors ---

@app.get("/api/authors", response_model=List[AuthorResponse])
def list_authors():
    return [to_author_response(a) for a in library.authors.list_authors()]


@app.get("/api/authors/{author_id}", response_model=AuthorResponse)
def get_author(author_id: str):
    return to_author_response(library.authors.get_author(author_id))


@app.post("/api/authors", response_model=AuthorResponse, status_code=201,
          dependencies=[Depends(requires(Operation.AUTHOR_CREATE))],
          openapi_extra=request_body(AuthorCreateRequest))
def create_author(payload: AuthorCreateRequest = Depends(body(AuthorCreateRequest))):
    return to_author_response(library.authors.create_author(payload.name, payload.bio))


@app.put("/api/authors/{author_id}", response_model=AuthorResponse,
         dependencies=[Depends(requires(Operation.AUTHOR_UPDATE))],
         openapi_extra=request_body(AuthorUpdateRequest))
def update_author(author_id: str, payload: AuthorUpdateRequest = Depends(body(AuthorUpdateRequest))):
    return to_author_response(library.authors.update_author(author_id, payload.name, payload.bio))


@app.delete("/api/authors/{author_id}", status_code=204,
            dependencies=[Depends(requires(Operation.AUTHOR_DELETE))])
def delete_author(author_id: str):
    library.authors.delete_author(author_id)
    return Response(status_code=204)


# --- Books ---

@app.get("/api/books", response_model=List[BookResponse])
def list_books():
    return [to_book_response(b) for b in library.books.list_books()]


@app.get("/api/books/{book_id}", response_model=BookResponse)
def get_book(book_id: str):
    return to_book_response(library.books.get_book(book_id))


@app.get("/api/books/{book_id}/availability", response_model=AvailabilityResponse)
def get_book_availability(book_id: str, start: date = Query(...), end: Optional[date] = Query(None)):
    """Whether the book is free over ``[start, end)``; no ``end`` means open-ended."""
    available = library.books.check_availability(book_id, start, end)
    return AvailabilityResponse(book_id=book_id, start=start, end=end, available=available)


@app.post("/api/books", response_model=BookResponse, status_code=201,
          dependencies=[Depends(requires(Operation.BOOK_CREATE))],
          openapi_extra=request_body(BookCreateRequest))
def create_book(payload: BookCreateRequest = Depends(body(BookCreateRequest))):
    book = library.books.create_book(payload.title, payload.isbn, payload.published_date, payload.author_ids)
    return to_book_response(book)


@app.put("/api/books/{book_id}", response_model=BookResponse,
         dependencies=[Depends(requires(Operation.BOOK_UPDATE))],
         openapi_extra=request_body(BookUpdateRequest))
def update_book(book_id: str, payload: BookUpdateRequest = Depends(body(BookUpdateRequest))):
    book = library.books.update_book(
        book_id,
        title=payload.title,
        isbn=payload.isbn,
        published_date=payload.published_date,
        author_ids=payload.author_ids,
    )
    return to_book_response(book)


@app.delete("/api/books/{book_id}", status_code=204,
            dependencies=[Depends(requires(Operation.BOOK_DELETE))])
def delete_book(book_id: str):
    library.books.delete_book(book_id)
    return Response(status_code=204)


# --- Borrowers ---

@app.get("/api/borrowers", response_model=List[BorrowerResponse],
         dependencies=[Depends(requires(Operation.BORROWER_LIST))])
def list_borrowers():
    return [to_borrower_response(b) for b in library.borrowers.list_borrowers()]


@app.get("/api/borrowers/{borrower_id}", response_model=BorrowerResponse,
         dependencies=[Depends(requires(Operation.BORROWER_GET))])
def get_borrower(borrower_id: str):
    return to_borrower_response(library.borrowers.get_borrower(borrower_id))


@app.post("/api/borrowers", response_model=BorrowerResponse, status_code=201,
          openapi_extra=request_body(BorrowerCreateRequest))
def create_borrower(principal: Principal = Depends(requires(Operation.BORROWER_CREATE)),
                    payload: BorrowerCreateRequest = Depends(body(BorrowerCreateRequest))):
    authorize_owner(principal, payload.user_id)
    borrower = library.borrowers.create_borrower(payload.user_id, payload.name, payload.email, payload.phone)
    return to_borrower_response(borrower)


@app.put("/api/borrowers/{borrower_id}", response_model=BorrowerResponse,
         openapi_extra=request_body(BorrowerUpdateRequest))
def update_borrower(borrower_id: str, principal: Principal = Depends(requires(Operation.BORROWER_UPDATE)),
                    payload: BorrowerUpdateRequest = Depends(body(BorrowerUpdateRequest))):
    authorize_owner(principal, library.borrowers.get_borrower(borrower_id).user_id)
    borrower = library.borrowers.update_borrower(borrower_id, payload.name, payload.email, payload.phone)
    return to_borrower_response(borrower)


@app.delete("/api/borrowers/{borrower_id}", status_code=204,
            dependencies=[Depends(requires(Operation.BORROWER_DELETE))])
def delete_borrower(borrower_id: str):
    library.borrowers.delete_borrower(borrower_id)
    return Response(status_code=204)


# --- Loans ---

@app.get("/api/loans", response_model=List[LoanResponse],
         dependencies=[Depends(requires(Operation.LOAN_LIST))])
def list_loans():
    return [to_loan_response(loan) for loan in library.loans.list_all()]


@app.get("/api/loans/{loan_id}", response_model=LoanResponse,
         dependencies=[Depends(requires(Operation.LOAN_GET))])
def get_loan(loan_id: str):
    return to_loan_response(library.loans.get_loan(loan_id))


@app.post("/api/loans", response_model=LoanResponse, status_code=201,
          dependencies=[Depends(requires(Operation.LOAN_CREATE))],
          openapi_extra=request_body(LoanCreateRequest))
def create_loan(payload: LoanCreateRequest = Depends(body(LoanCreateRequest))):
    loan = library.loans.create_loan(payload.book_id, payload.borrower_id, payload.loan_date, payload.return_date)
    return to_loan_response(loan)


@app.put("/api/loans/{loan_id}", response_model=LoanResponse,
         dependencies=[Depends(requires(Operation.LOAN_RETURN))],
         openapi_extra=request_body(LoanReturnRequest, required=False))
def return_loan(loan_id: str, payload: LoanReturnRequest = Depends(body(LoanReturnRequest))):
    """Confirm a return; without ``returnDate`` the loan closes today."""
    return to_loan_response(library.loans.close_loan(loan_id, payload.return_date))
