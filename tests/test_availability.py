from datetime import date

import pytest

from availability import intervals_overlap


@pytest.mark.parametrize(
    "a_start, a_end, b_start, b_end, expected",
    [
        (date(2024, 1, 1), date(2024, 1, 10), date(2024, 1, 5), date(2024, 1, 15), True),
        (date(2024, 1, 1), date(2024, 1, 10), date(2024, 1, 10), date(2024, 1, 20), False),
        (date(2024, 1, 10), date(2024, 1, 20), date(2024, 1, 1), date(2024, 1, 10), False),
        (date(2024, 1, 1), date(2024, 1, 31), date(2024, 1, 10), date(2024, 1, 12), True),
        (date(2024, 1, 1), None, date(2030, 6, 1), date(2030, 6, 2), True),
        (date(2024, 1, 1), None, date(2023, 12, 1), date(2024, 1, 1), False),
        (date(2024, 1, 1), None, date(2023, 12, 1), None, True),
    ],
)
def test_intervals_overlap(a_start, a_end, b_start, b_end, expected):
    assert intervals_overlap(a_start, a_end, b_start, b_end) is expected
    assert intervals_overlap(b_start, b_end, a_start, a_end) is expected


def test_book_without_loans_is_available(lib, catalog):
    assert lib.oracle.is_available(catalog.book.id, date(2024, 1, 1), date(2024, 2, 1))
    assert lib.oracle.is_available(catalog.book.id, date(2024, 1, 1))
    assert not lib.oracle.is_currently_out(catalog.book.id, date(2024, 1, 1))


def test_open_loan_blocks_everything_after_its_start(lib, catalog):
    lib.loans.create_loan(catalog.book.id, catalog.borrower.id, date(2024, 1, 1))

    assert not lib.oracle.is_available(catalog.book.id, date(2025, 1, 1), date(2025, 1, 2))
    assert not lib.oracle.is_available(catalog.book.id, date(2023, 12, 1))
    assert lib.oracle.is_available(catalog.book.id, date(2023, 12, 1), date(2024, 1, 1))
    # other books are unaffected
    assert lib.oracle.is_available(catalog.other_book.id, date(2024, 1, 1))


def test_exclude_loan_id_ignores_the_loan_being_edited(lib, catalog):
    loan = lib.loans.create_loan(catalog.book.id, catalog.borrower.id, date(2024, 1, 1), date(2024, 1, 10))

    assert not lib.oracle.is_available(catalog.book.id, date(2024, 1, 1), date(2024, 1, 20))
    assert lib.oracle.is_available(catalog.book.id, date(2024, 1, 1), date(2024, 1, 20), exclude_loan_id=loan.id)


def test_currently_out_follows_return_date(lib, catalog):
    lib.loans.create_loan(catalog.book.id, catalog.borrower.id, date(2024, 1, 1), date(2024, 1, 10))

    assert lib.oracle.is_currently_out(catalog.book.id, date(2024, 1, 5))
    assert lib.oracle.is_currently_out(catalog.book.id, date(2024, 1, 9))
    assert not lib.oracle.is_currently_out(catalog.book.id, date(2024, 1, 10))


def test_has_active_loans_uses_half_open_interval(lib, catalog):
    lib.loans.create_loan(catalog.book.id, catalog.borrower.id, date(2024, 1, 1), date(2024, 1, 10))

    assert not lib.oracle.has_active_loans(catalog.borrower.id, date(2023, 12, 31))
    assert lib.oracle.has_active_loans(catalog.borrower.id, date(2024, 1, 1))
    assert lib.oracle.has_active_loans(catalog.borrower.id, date(2024, 1, 9))
    assert not lib.oracle.has_active_loans(catalog.borrower.id, date(2024, 1, 10))
