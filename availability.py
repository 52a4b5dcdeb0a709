"""Availability checks for books and borrowers.

A loan occupies its book over the half-open interval ``[loan_date, end)``,
where ``end`` is the loan's return date or, for a loan with no return date,
unbounded. Two intervals that merely touch (one ends on the day the other
starts) do not overlap.
"""

import logging
import sqlite3
from datetime import date
from typing import Iterable, Optional

from models import Loan
from repositories import LoanRepository

logger = logging.getLogger(__name__)


def intervals_overlap(a_start: date, a_end: Optional[date], b_start: date, b_end: Optional[date]) -> bool:
    """Return True if ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect.

    ``None`` as an end means the interval never ends.
    """
    a_stop = a_end if a_end is not None else date.max
    b_stop = b_end if b_end is not None else date.max
    return a_start < b_stop and b_start < a_stop


def first_conflict(loans: Iterable[Loan], start: date, end: Optional[date],
                   exclude_loan_id: Optional[str] = None) -> Optional[Loan]:
    for loan in loans:
        if exclude_loan_id is not None and loan.id == exclude_loan_id:
            continue
        if intervals_overlap(loan.loan_date, loan.return_date, start, end):
            return loan
    return None


class AvailabilityOracle:
    """Answers whether a book can be lent over a period.

    Holds no state of its own; every answer is computed from the loans
    currently in the store. Pass ``conn`` to read inside a caller's
    transaction.
    """

    def __init__(self, loans: LoanRepository):
        self.loans = loans

    def is_available(self, book_id: str, start: date, end: Optional[date] = None,
                     exclude_loan_id: Optional[str] = None,
                     conn: Optional[sqlite3.Connection] = None) -> bool:
        blocking = first_conflict(self.loans.list_for_book(book_id, conn=conn), start, end, exclude_loan_id)
        if blocking is not None:
            logger.debug("Book %s unavailable for %s..%s, blocked by loan %s", book_id, start, end, blocking.id)
            return False
        return True

    def is_currently_out(self, book_id: str, today: date,
                         conn: Optional[sqlite3.Connection] = None) -> bool:
        for loan in self.loans.list_for_book(book_id, conn=conn):
            if loan.return_date is None or loan.return_date > today:
                return True
        return False

    def has_active_loans(self, borrower_id: str, today: date,
                         conn: Optional[sqlite3.Connection] = None) -> bool:
        return any(loan.is_active_on(today) for loan in self.loans.list_for_borrower(borrower_id, conn=conn))
