from datetime import date

import pytest

from errors import ConflictError, NotFoundError, ValidationError


def test_author_crud(lib):
    author = lib.authors.create_author("Octavia Butler")
    assert author.bio is None

    updated = lib.authors.update_author(author.id, bio="Kindred, Parable of the Sower.")
    assert updated.name == "Octavia Butler"
    assert updated.bio == "Kindred, Parable of the Sower."

    assert [a.id for a in lib.authors.list_authors()] == [author.id]
    lib.authors.delete_author(author.id)
    with pytest.raises(NotFoundError, match="Author"):
        lib.authors.get_author(author.id)


def test_author_with_books_cannot_be_deleted(lib, catalog):
    with pytest.raises(ConflictError, match="associated books"):
        lib.authors.delete_author(catalog.author.id)

    assert lib.authors.get_author(catalog.author.id).book_ids == [catalog.book.id, catalog.other_book.id]


def test_author_deletable_once_books_are_gone(lib, catalog):
    lib.books.delete_book(catalog.book.id)
    lib.books.delete_book(catalog.other_book.id)

    lib.authors.delete_author(catalog.author.id)
    assert lib.authors.list_authors() == []


def test_create_book_links_authors(lib):
    first = lib.authors.create_author("Terry Pratchett")
    second = lib.authors.create_author("Neil Gaiman")

    book = lib.books.create_book("Good Omens", "9780060853983", date(1990, 5, 1), [first.id, second.id])

    stored = lib.books.get_book(book.id)
    assert stored.author_ids == [first.id, second.id]
    assert stored.published_date == date(1990, 5, 1)
    assert lib.authors.get_author(second.id).book_ids == [book.id]


def test_create_book_with_unknown_author(lib, catalog):
    with pytest.raises(NotFoundError, match="ghost"):
        lib.books.create_book("Nope", "9780000000000", date(2000, 1, 1), [catalog.author.id, "ghost"])
    assert len(lib.books.list_books()) == 2


def test_update_book_replaces_authors(lib, catalog):
    co_author = lib.authors.create_author("Co Author")

    updated = lib.books.update_book(catalog.book.id, title="Earthsea", author_ids=[co_author.id])

    assert updated.title == "Earthsea"
    assert updated.isbn == catalog.book.isbn
    assert lib.books.get_book(catalog.book.id).author_ids == [co_author.id]
    assert lib.authors.get_author(catalog.author.id).book_ids == [catalog.other_book.id]


def test_update_unknown_book(lib):
    with pytest.raises(NotFoundError):
        lib.books.update_book("missing", title="x")


def test_book_on_loan_cannot_be_deleted(lib, catalog):
    lib.books.today = lambda: date(2024, 1, 5)
    lib.loans.create_loan(catalog.book.id, catalog.borrower.id, date(2024, 1, 1), date(2024, 1, 10))

    with pytest.raises(ConflictError, match="still loaned"):
        lib.books.delete_book(catalog.book.id)
    assert lib.books.get_book(catalog.book.id).title == catalog.book.title


def test_returned_book_can_be_deleted(lib, catalog):
    lib.books.today = lambda: date(2024, 2, 1)
    lib.loans.create_loan(catalog.book.id, catalog.borrower.id, date(2024, 1, 1), date(2024, 1, 10))

    lib.books.delete_book(catalog.book.id)
    with pytest.raises(NotFoundError):
        lib.books.get_book(catalog.book.id)
    assert lib.loans.list_all() == []


def test_check_availability(lib, catalog):
    lib.loans.create_loan(catalog.book.id, catalog.borrower.id, date(2024, 1, 1), date(2024, 1, 10))

    assert lib.books.check_availability(catalog.book.id, date(2024, 1, 10), date(2024, 1, 12))
    assert not lib.books.check_availability(catalog.book.id, date(2024, 1, 9), date(2024, 1, 12))
    with pytest.raises(ValidationError):
        lib.books.check_availability(catalog.book.id, date(2024, 1, 12), date(2024, 1, 10))
    with pytest.raises(NotFoundError):
        lib.books.check_availability("missing", date(2024, 1, 1))
