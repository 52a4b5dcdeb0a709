"""SQLite-backed repositories, one per entity.

Every method opens its own connection unless the caller passes ``conn``,
in which case it runs inside the caller's transaction. Rows are turned into
fresh model objects on every read; nothing is cached between calls.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date
from typing import Iterable, Iterator, List, Optional

from database import get_db_connection
from errors import ConflictError
from models import Author, Book, Borrower, Loan, User


class _Repository:
    @contextmanager
    def _connect(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        own = get_db_connection()
        try:
            yield own
        finally:
            own.close()


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class UserRepository(_Repository):
    def get(self, user_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[User]:
        with self._connect(conn) as c:
            row = c.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return User.from_dict(dict(row)) if row else None

    def get_by_username(self, username: str) -> Optional[User]:
        with self._connect() as c:
            row = c.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
            return User.from_dict(dict(row)) if row else None

    def create(self, user: User) -> User:
        with self._connect() as c:
            try:
                c.execute(
                    "INSERT INTO users (id, username, password_hash, role, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (user.id, user.username, user.password_hash,
                     user.role.value if user.role else None, user.created_at, user.updated_at),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"Username '{user.username}' is already in use.") from e
        return user

    def update(self, user: User) -> User:
        with self._connect() as c:
            try:
                c.execute(
                    "UPDATE users SET username = ?, password_hash = ?, role = ?, updated_at = ? WHERE id = ?",
                    (user.username, user.password_hash,
                     user.role.value if user.role else None, user.updated_at, user.id),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"Username '{user.username}' is already in use.") from e
        return user


class AuthorRepository(_Repository):
    def _book_ids(self, c: sqlite3.Connection, author_id: str) -> List[str]:
        rows = c.execute(
            "SELECT book_id FROM book_authors WHERE author_id = ? ORDER BY rowid", (author_id,)
        ).fetchall()
        return [r["book_id"] for r in rows]

    def get(self, author_id: str) -> Optional[Author]:
        with self._connect() as c:
            row = c.execute("SELECT * FROM authors WHERE id = ?", (author_id,)).fetchone()
            if not row:
                return None
            return Author.from_dict(dict(row), self._book_ids(c, author_id))

    def get_by_ids(self, author_ids: Iterable[str], conn: Optional[sqlite3.Connection] = None) -> List[Author]:
        ids = list(author_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._connect(conn) as c:
            rows = c.execute(f"SELECT * FROM authors WHERE id IN ({placeholders})", ids).fetchall()
            return [Author.from_dict(dict(r)) for r in rows]

    def list_all(self) -> List[Author]:
        with self._connect() as c:
            rows = c.execute("SELECT * FROM authors ORDER BY rowid").fetchall()
            return [Author.from_dict(dict(r), self._book_ids(c, r["id"])) for r in rows]

    def has_books(self, author_id: str) -> bool:
        with self._connect() as c:
            row = c.execute("SELECT 1 FROM book_authors WHERE author_id = ? LIMIT 1", (author_id,)).fetchone()
            return row is not None

    def create(self, author: Author) -> Author:
        with self._connect() as c:
            c.execute(
                "INSERT INTO authors (id, name, bio, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (author.id, author.name, author.bio, author.created_at, author.updated_at),
            )
        return author

    def update(self, author: Author) -> Author:
        with self._connect() as c:
            c.execute(
                "UPDATE authors SET name = ?, bio = ?, updated_at = ? WHERE id = ?",
                (author.name, author.bio, author.updated_at, author.id),
            )
        return author

    def delete(self, author_id: str) -> bool:
        with self._connect() as c:
            try:
                cursor = c.execute("DELETE FROM authors WHERE id = ?", (author_id,))
            except sqlite3.IntegrityError as e:
                raise ConflictError("Cannot delete an author with associated books.") from e
            return cursor.rowcount > 0


class BookRepository(_Repository):
    def _author_ids(self, c: sqlite3.Connection, book_id: str) -> List[str]:
        rows = c.execute(
            "SELECT author_id FROM book_authors WHERE book_id = ? ORDER BY rowid", (book_id,)
        ).fetchall()
        return [r["author_id"] for r in rows]

    def get(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Book]:
        with self._connect(conn) as c:
            row = c.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
            if not row:
                return None
            return Book.from_dict(dict(row), self._author_ids(c, book_id))

    def list_all(self) -> List[Book]:
        with self._connect() as c:
            rows = c.execute("SELECT * FROM books ORDER BY rowid").fetchall()
            return [Book.from_dict(dict(r), self._author_ids(c, r["id"])) for r in rows]

    def _link_authors(self, c: sqlite3.Connection, book: Book) -> None:
        c.execute("DELETE FROM book_authors WHERE book_id = ?", (book.id,))
        c.executemany(
            "INSERT INTO book_authors (book_id, author_id) VALUES (?, ?)",
            [(book.id, author_id) for author_id in book.author_ids],
        )

    def create(self, book: Book, conn: sqlite3.Connection) -> Book:
        conn.execute(
            "INSERT INTO books (id, title, isbn, published_date, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (book.id, book.title, book.isbn, book.published_date.isoformat(),
             book.created_at, book.updated_at),
        )
        self._link_authors(conn, book)
        return book

    def update(self, book: Book, conn: sqlite3.Connection) -> Book:
        conn.execute(
            "UPDATE books SET title = ?, isbn = ?, published_date = ?, updated_at = ? WHERE id = ?",
            (book.title, book.isbn, book.published_date.isoformat(), book.updated_at, book.id),
        )
        self._link_authors(conn, book)
        return book

    def delete(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        with self._connect(conn) as c:
            cursor = c.execute("DELETE FROM books WHERE id = ?", (book_id,))
            return cursor.rowcount > 0


class BorrowerRepository(_Repository):
    def get(self, borrower_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Borrower]:
        with self._connect(conn) as c:
            row = c.execute("SELECT * FROM borrowers WHERE id = ?", (borrower_id,)).fetchone()
            return Borrower.from_dict(dict(row)) if row else None

    def get_by_user_id(self, user_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Borrower]:
        with self._connect(conn) as c:
            row = c.execute("SELECT * FROM borrowers WHERE user_id = ?", (user_id,)).fetchone()
            return Borrower.from_dict(dict(row)) if row else None

    def list_all(self) -> List[Borrower]:
        with self._connect() as c:
            rows = c.execute("SELECT * FROM borrowers ORDER BY rowid").fetchall()
            return [Borrower.from_dict(dict(r)) for r in rows]

    def create(self, borrower: Borrower, conn: Optional[sqlite3.Connection] = None) -> Borrower:
        with self._connect(conn) as c:
            try:
                c.execute(
                    "INSERT INTO borrowers (id, user_id, name, email, phone, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (borrower.id, borrower.user_id, borrower.name, borrower.email, borrower.phone,
                     borrower.created_at, borrower.updated_at),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError("Borrower profile already exists") from e
        return borrower

    def update(self, borrower: Borrower) -> Borrower:
        with self._connect() as c:
            c.execute(
                "UPDATE borrowers SET name = ?, email = ?, phone = ?, updated_at = ? WHERE id = ?",
                (borrower.name, borrower.email, borrower.phone, borrower.updated_at, borrower.id),
            )
        return borrower

    def delete(self, borrower_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        with self._connect(conn) as c:
            cursor = c.execute("DELETE FROM borrowers WHERE id = ?", (borrower_id,))
            return cursor.rowcount > 0


class LoanRepository(_Repository):
    def get(self, loan_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Loan]:
        with self._connect(conn) as c:
            row = c.execute("SELECT * FROM loans WHERE id = ?", (loan_id,)).fetchone()
            return Loan.from_dict(dict(row)) if row else None

    def list_all(self) -> List[Loan]:
        with self._connect() as c:
            rows = c.execute("SELECT * FROM loans ORDER BY rowid").fetchall()
            return [Loan.from_dict(dict(r)) for r in rows]

    def list_for_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> List[Loan]:
        with self._connect(conn) as c:
            rows = c.execute(
                "SELECT * FROM loans WHERE book_id = ? ORDER BY loan_date", (book_id,)
            ).fetchall()
            return [Loan.from_dict(dict(r)) for r in rows]

    def list_for_borrower(self, borrower_id: str, conn: Optional[sqlite3.Connection] = None) -> List[Loan]:
        with self._connect(conn) as c:
            rows = c.execute(
                "SELECT * FROM loans WHERE borrower_id = ? ORDER BY loan_date", (borrower_id,)
            ).fetchall()
            return [Loan.from_dict(dict(r)) for r in rows]

    def create(self, loan: Loan, conn: Optional[sqlite3.Connection] = None) -> Loan:
        with self._connect(conn) as c:
            try:
                c.execute(
                    "INSERT INTO loans (id, book_id, borrower_id, loan_date, return_date, returned_at, "
                    "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (loan.id, loan.book_id, loan.borrower_id, loan.loan_date.isoformat(),
                     _iso(loan.return_date), loan.returned_at, loan.created_at, loan.updated_at),
                )
            except sqlite3.IntegrityError as e:
                if "loan_overlap" in str(e):
                    raise ConflictError("Book is already loaned for this period") from e
                raise
        return loan

    def update(self, loan: Loan, conn: Optional[sqlite3.Connection] = None) -> Loan:
        with self._connect(conn) as c:
            try:
                c.execute(
                    "UPDATE loans SET return_date = ?, returned_at = ?, updated_at = ? WHERE id = ?",
                    (_iso(loan.return_date), loan.returned_at, loan.updated_at, loan.id),
                )
            except sqlite3.IntegrityError as e:
                if "loan_overlap" in str(e):
                    raise ConflictError("Return date overlaps a later loan of this book") from e
                raise
        return loan
