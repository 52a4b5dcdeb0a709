import logging
import os
import sqlite3
from typing import Optional

import database
from availability import AvailabilityOracle
from database import initialize_database
from repositories import AuthorRepository, BookRepository, BorrowerRepository, LoanRepository, UserRepository
from security import PasswordHasher, TokenService
from services import AuthorService, BookService, BorrowerService, LoanService, UserService

logger = logging.getLogger(__name__)


class Library:
    """Wires the store, the availability oracle and the domain services together.

    One instance is shared by the API and the CLI. It holds no entity state;
    every call goes to the database.
    """

    def __init__(self, db_file: Optional[str] = None, hasher: Optional[PasswordHasher] = None,
                 tokens: Optional[TokenService] = None) -> None:
        # database.py helpers read DATABASE_FILE on every connection, so
        # pointing it elsewhere here redirects the whole process.
        db_file = db_file or os.environ.get("LIBRARY_DB_FILE")
        if db_file:
            database.DATABASE_FILE = db_file
        initialize_database()

        self.users_repo = UserRepository()
        self.authors_repo = AuthorRepository()
        self.books_repo = BookRepository()
        self.borrowers_repo = BorrowerRepository()
        self.loans_repo = LoanRepository()

        self.oracle = AvailabilityOracle(self.loans_repo)
        self.hasher = hasher or PasswordHasher()
        self.tokens = tokens or TokenService()

        self.users = UserService(self.users_repo, self.hasher, self.tokens)
        self.authors = AuthorService(self.authors_repo)
        self.books = BookService(self.books_repo, self.authors_repo, self.oracle)
        self.borrowers = BorrowerService(self.borrowers_repo, self.users_repo, self.oracle)
        self.loans = LoanService(self.loans_repo, self.books_repo, self.borrowers_repo, self.oracle)

        logger.debug("Library ready on %s", database.DATABASE_FILE)

    @property
    def db_file(self) -> str:
        return database.DATABASE_FILE

    def database_ok(self) -> bool:
        conn = database.get_db_connection()
        try:
            conn.execute("SELECT 1")
            return True
        except sqlite3.Error:
            logger.exception("Database health check failed")
            return False
        finally:
            conn.close()
