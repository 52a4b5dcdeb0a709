import os
from datetime import date
from types import SimpleNamespace

import pytest

import database
from config import settings
from library import Library
from models import Role

TEST_PASSWORD = "Passw0rdOK"


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    # Minimum bcrypt cost keeps the suite fast
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)
    monkeypatch.setattr(settings, "jwt_secret_key", "test-secret-key-that-is-long-enough-for-hs256")


@pytest.fixture(autouse=True)
def restore_database_file():
    original = database.DATABASE_FILE
    yield
    database.DATABASE_FILE = original


@pytest.fixture
def lib(tmp_path, request):
    # Each test gets its own database file
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    yield Library(db_file=db_file)
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def catalog(lib):
    """One author, two books, a patron with a borrower profile and one staff member of each kind."""
    author = lib.authors.create_author("Ursula K. Le Guin", "Wrote Earthsea.")
    book = lib.books.create_book("A Wizard of Earthsea", "9780547773742", date(1968, 1, 1), [author.id])
    other_book = lib.books.create_book("The Dispossessed", "9780061054884", date(1974, 5, 1), [author.id])
    patron = lib.users.create_user("patron", TEST_PASSWORD)
    borrower = lib.borrowers.create_borrower(patron.id, "Pat Ron", "pat@example.com", "+15551234567")
    senior = lib.users.create_user("senior", TEST_PASSWORD, Role.SENIOR_STAFF)
    junior = lib.users.create_user("junior", TEST_PASSWORD, Role.JUNIOR_STAFF)
    return SimpleNamespace(
        author=author,
        book=book,
        other_book=other_book,
        patron=patron,
        borrower=borrower,
        senior=senior,
        junior=junior,
    )
