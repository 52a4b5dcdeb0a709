"""Domain services: loans, borrowers, catalog and user accounts.

Services raise the exceptions from ``errors``; translating them to HTTP
responses is left to the API layer. Writes that depend on a prior read run
inside ``database.transaction`` so the read and the write see the same state.
"""

import logging
from datetime import date
from typing import Any, Callable, List, Optional

from availability import AvailabilityOracle
from database import transaction
from errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from models import Author, Book, Borrower, Loan, Role, User, new_id, utc_now, utc_today
from repositories import AuthorRepository, BookRepository, BorrowerRepository, LoanRepository, UserRepository
from security import PasswordHasher, TokenService

logger = logging.getLogger(__name__)

# Marks an argument the caller did not pass, where None is a meaningful value.
_UNSET: Any = object()


class LoanService:
    """Opens and closes loans.

    A loan is open until its return is confirmed with :meth:`close_loan`;
    after that it is closed for good. While open, the loan occupies its book
    from ``loan_date`` up to the planned ``return_date`` (or indefinitely when
    no return date was given).
    """

    def __init__(self, loans: LoanRepository, books: BookRepository, borrowers: BorrowerRepository,
                 oracle: AvailabilityOracle, today: Callable[[], date] = utc_today):
        self.loans = loans
        self.books = books
        self.borrowers = borrowers
        self.oracle = oracle
        self.today = today

    def create_loan(self, book_id: str, borrower_id: str, loan_date: date,
                    return_date: Optional[date] = None) -> Loan:
        """Lend ``book_id`` to ``borrower_id`` over ``[loan_date, return_date)``.

        Raises NotFoundError if the book or borrower does not exist and
        ConflictError if the book is already lent during that period.
        """
        if return_date is not None and return_date < loan_date:
            raise ValidationError.for_field("returnDate", "Return date must be after loan date")

        with transaction() as conn:
            if self.books.get(book_id, conn=conn) is None:
                raise NotFoundError("Book", book_id)
            if self.borrowers.get(borrower_id, conn=conn) is None:
                raise NotFoundError("Borrower", borrower_id)
            if not self.oracle.is_available(book_id, loan_date, return_date, conn=conn):
                raise ConflictError("Book is already loaned for this period")

            now = utc_now()
            loan = Loan(
                id=new_id(),
                book_id=book_id,
                borrower_id=borrower_id,
                loan_date=loan_date,
                return_date=return_date,
                created_at=now,
                updated_at=now,
            )
            self.loans.create(loan, conn=conn)

        logger.info("Loan %s created: book %s to borrower %s from %s", loan.id, book_id, borrower_id, loan_date)
        return loan

    def close_loan(self, loan_id: str, actual_return_date: Optional[date] = None) -> Loan:
        """Confirm the return of a loan, on ``actual_return_date`` or today."""
        returned_on = actual_return_date or self.today()

        with transaction() as conn:
            loan = self.loans.get(loan_id, conn=conn)
            if loan is None:
                raise NotFoundError("Loan", loan_id)
            if loan.is_closed:
                raise ConflictError("Loan has already been returned")
            if returned_on < loan.loan_date:
                raise ValidationError.for_field("returnDate", "Return date can't be before loan date")
            if returned_on > self.today():
                raise ValidationError.for_field("returnDate", "Return date cannot be in the future")
            if not self.oracle.is_available(loan.book_id, loan.loan_date, returned_on,
                                            exclude_loan_id=loan.id, conn=conn):
                raise ConflictError("Return date overlaps a later loan of this book")

            now = utc_now()
            loan.return_date = returned_on
            loan.returned_at = now
            loan.updated_at = now
            self.loans.update(loan, conn=conn)

        logger.info("Loan %s closed on %s", loan.id, returned_on)
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        loan = self.loans.get(loan_id)
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan

    def list_all(self) -> List[Loan]:
        return self.loans.list_all()


class BorrowerService:
    """Borrower profiles. Only users without a staff role may borrow."""

    def __init__(self, borrowers: BorrowerRepository, users: UserRepository,
                 oracle: AvailabilityOracle, today: Callable[[], date] = utc_today):
        self.borrowers = borrowers
        self.users = users
        self.oracle = oracle
        self.today = today

    def create_borrower(self, user_id: str, name: str, email: str, phone: str) -> Borrower:
        with transaction() as conn:
            user = self.users.get(user_id, conn=conn)
            if user is None:
                raise NotFoundError("User", user_id)
            if user.is_staff:
                raise UnauthorizedError("Only normal users can be borrowers")
            if self.borrowers.get_by_user_id(user_id, conn=conn) is not None:
                raise ConflictError("Borrower profile already exists")

            now = utc_now()
            borrower = Borrower(
                id=new_id(), user_id=user_id, name=name, email=email, phone=phone,
                created_at=now, updated_at=now,
            )
            self.borrowers.create(borrower, conn=conn)

        logger.info("Borrower %s created for user %s", borrower.id, user_id)
        return borrower

    def get_borrower(self, borrower_id: str) -> Borrower:
        borrower = self.borrowers.get(borrower_id)
        if borrower is None:
            raise NotFoundError("Borrower", borrower_id)
        return borrower

    def list_borrowers(self) -> List[Borrower]:
        return self.borrowers.list_all()

    def update_borrower(self, borrower_id: str, name: Optional[str] = None,
                        email: Optional[str] = None, phone: Optional[str] = None) -> Borrower:
        borrower = self.get_borrower(borrower_id)
        if name is not None:
            borrower.name = name
        if email is not None:
            borrower.email = email
        if phone is not None:
            borrower.phone = phone
        borrower.updated_at = utc_now()
        return self.borrowers.update(borrower)

    def delete_borrower(self, borrower_id: str) -> None:
        """Delete a borrower that has no loan running today.

        Historical loans go with the borrower.
        """
        with transaction() as conn:
            if self.borrowers.get(borrower_id, conn=conn) is None:
                raise NotFoundError("Borrower", borrower_id)
            if self.oracle.has_active_loans(borrower_id, self.today(), conn=conn):
                raise ConflictError("Cannot delete borrower with active loans")
            self.borrowers.delete(borrower_id, conn=conn)
        logger.info("Borrower %s deleted", borrower_id)


class AuthorService:
    def __init__(self, authors: AuthorRepository):
        self.authors = authors

    def create_author(self, name: str, bio: Optional[str] = None) -> Author:
        now = utc_now()
        author = Author(id=new_id(), name=name, bio=bio, created_at=now, updated_at=now)
        self.authors.create(author)
        logger.info("Author %s created", author.id)
        return author

    def get_author(self, author_id: str) -> Author:
        author = self.authors.get(author_id)
        if author is None:
            raise NotFoundError("Author", author_id)
        return author

    def list_authors(self) -> List[Author]:
        return self.authors.list_all()

    def update_author(self, author_id: str, name: Optional[str] = None, bio: Optional[str] = None) -> Author:
        author = self.get_author(author_id)
        if name is not None:
            author.name = name
        if bio is not None:
            author.bio = bio
        author.updated_at = utc_now()
        return self.authors.update(author)

    def delete_author(self, author_id: str) -> None:
        self.get_author(author_id)
        if self.authors.has_books(author_id):
            raise ConflictError("Cannot delete an author with associated books.")
        self.authors.delete(author_id)
        logger.info("Author %s deleted", author_id)


class BookService:
    def __init__(self, books: BookRepository, authors: AuthorRepository,
                 oracle: AvailabilityOracle, today: Callable[[], date] = utc_today):
        self.books = books
        self.authors = authors
        self.oracle = oracle
        self.today = today

    def _require_authors(self, author_ids: List[str], conn) -> None:
        found = {a.id for a in self.authors.get_by_ids(author_ids, conn=conn)}
        missing = [a for a in author_ids if a not in found]
        if missing:
            raise NotFoundError("Author", ", ".join(missing))

    def create_book(self, title: str, isbn: str, published_date: date, author_ids: List[str]) -> Book:
        now = utc_now()
        book = Book(
            id=new_id(), title=title, isbn=isbn, published_date=published_date,
            author_ids=list(dict.fromkeys(author_ids)), created_at=now, updated_at=now,
        )
        with transaction() as conn:
            self._require_authors(book.author_ids, conn)
            self.books.create(book, conn=conn)
        logger.info("Book %s created (ISBN %s)", book.id, isbn)
        return book

    def get_book(self, book_id: str) -> Book:
        book = self.books.get(book_id)
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    def list_books(self) -> List[Book]:
        return self.books.list_all()

    def update_book(self, book_id: str, title: Optional[str] = None, isbn: Optional[str] = None,
                    published_date: Optional[date] = None, author_ids: Optional[List[str]] = None) -> Book:
        with transaction() as conn:
            book = self.books.get(book_id, conn=conn)
            if book is None:
                raise NotFoundError("Book", book_id)
            if title is not None:
                book.title = title
            if isbn is not None:
                book.isbn = isbn
            if published_date is not None:
                book.published_date = published_date
            if author_ids is not None:
                self._require_authors(author_ids, conn)
                book.author_ids = list(dict.fromkeys(author_ids))
            book.updated_at = utc_now()
            self.books.update(book, conn=conn)
        return book

    def delete_book(self, book_id: str) -> None:
        with transaction() as conn:
            if self.books.get(book_id, conn=conn) is None:
                raise NotFoundError("Book", book_id)
            if self.oracle.is_currently_out(book_id, self.today(), conn=conn):
                raise ConflictError("Book is still loaned, you can't delete it")
            self.books.delete(book_id, conn=conn)
        logger.info("Book %s deleted", book_id)

    def check_availability(self, book_id: str, start: date, end: Optional[date] = None) -> bool:
        self.get_book(book_id)
        if end is not None and end < start:
            raise ValidationError.for_field("end", "End date must not be before start date")
        return self.oracle.is_available(book_id, start, end)


class UserService:
    def __init__(self, users: UserRepository, hasher: PasswordHasher, tokens: TokenService):
        self.users = users
        self.hasher = hasher
        self.tokens = tokens

    def create_user(self, username: str, password: str, role: Optional[Role] = None) -> User:
        if self.users.get_by_username(username) is not None:
            raise ConflictError(f"Username '{username}' is already in use.")
        now = utc_now()
        user = User(
            id=new_id(), username=username, password_hash=self.hasher.hash(password),
            role=role, created_at=now, updated_at=now,
        )
        self.users.create(user)
        logger.info("User %s created with role %s", user.id, role.value if role else "none")
        return user

    def register(self, username: str, password: str) -> User:
        """Public sign-up. Always creates a patron; roles are granted by staff."""
        return self.create_user(username, password)

    def login(self, username: str, password: str) -> str:
        user = self.users.get_by_username(username)
        if user is None or not self.hasher.verify(password, user.password_hash):
            logger.warning("Failed login for %r", username)
            raise UnauthorizedError("Invalid credentials")
        return self.tokens.issue(user.id, user.role)

    def issue_token(self, username: str) -> str:
        user = self.users.get_by_username(username)
        if user is None:
            raise NotFoundError("User", username)
        return self.tokens.issue(user.id, user.role)

    def get_user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def update_user(self, user_id: str, username: Optional[str] = None, password: Optional[str] = None,
                    role: Optional[Role] = _UNSET) -> User:
        """Change a user's credentials or role.

        Passing ``role=None`` removes the user's staff role; leaving it out
        keeps the current one.
        """
        user = self.get_user(user_id)
        if username is not None and username != user.username:
            if self.users.get_by_username(username) is not None:
                raise ConflictError(f"Username '{username}' is already in use.")
            user.username = username
        if password is not None:
            user.password_hash = self.hasher.hash(password)
        if role is not _UNSET:
            user.role = role
        user.updated_at = utc_now()
        self.users.update(user)
        logger.info("User %s updated", user.id)
        return user
