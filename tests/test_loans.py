"""
Test cases for the loan lifecycle engine.
"""

from datetime import date, timedelta

import pytest

from catalog.errors import (
    ActiveLoanExistsError, BookNotFoundError, InvalidLoanStatusError, LoanNotFoundError, UserNotFoundError,
)
from catalog.models import LoanStatus


@pytest.fixture
def lend(catalog, make_book_request, make_user_request):
    """Create a book and a user and lend the book; returns (book, user, loan)."""
    async def factory(**loan_kwargs):
        book = await catalog.books.create_book(make_book_request())
        user = await catalog.users.create_user(make_user_request())
        loan = await catalog.loans.create_loan(book.id, user.id, **loan_kwargs)
        return book, user, loan

    return factory


class TestCreateLoan:

    @pytest.mark.asyncio
    async def test_create_loan_mirrors_and_blocks_book(self, catalog, store, lend):
        book, user, loan = await lend()

        assert loan.status == LoanStatus.CHECKED_OUT
        assert loan.loan_date == date.today()
        assert loan.expected_return_date == date.today() + timedelta(days=30)

        stored_book = await store.books.require(book.id)
        assert stored_book.available is False
        assert stored_book.loans[loan.id].status == LoanStatus.CHECKED_OUT
        assert stored_book.loans[loan.id].user.id == user.id
        assert (await store.users.require(user.id)).loans[loan.id].book.id == book.id

    @pytest.mark.asyncio
    async def test_explicit_dates(self, lend):
        _, _, loan = await lend(loan_date=date(2024, 1, 1), expected_return_date=date(2024, 1, 15))

        assert loan.loan_date == date(2024, 1, 1)
        assert loan.expected_return_date == date(2024, 1, 15)

    @pytest.mark.asyncio
    async def test_unavailable_book_raises_with_active_loan(self, catalog, lend, make_user_request):
        book, _, loan = await lend()
        other = await catalog.users.create_user(make_user_request())

        with pytest.raises(ActiveLoanExistsError) as exc_info:
            await catalog.loans.create_loan(book.id, other.id)

        assert exc_info.value.active_loan.id == loan.id
        assert exc_info.value.active_loan.status == LoanStatus.CHECKED_OUT

    @pytest.mark.asyncio
    async def test_unknown_book_or_user(self, catalog, make_book_request):
        with pytest.raises(BookNotFoundError):
            await catalog.loans.create_loan("missing", "missing")

        book = await catalog.books.create_book(make_book_request())
        with pytest.raises(UserNotFoundError):
            await catalog.loans.create_loan(book.id, "missing")


class TestReturnLoan:

    @pytest.mark.asyncio
    async def test_mark_as_returned(self, catalog, store, lend):
        book, user, loan = await lend()

        returned = await catalog.loans.mark_as_returned(loan.id)

        assert returned.status == LoanStatus.RETURNED
        assert returned.return_date == date.today()
        stored_book = await store.books.require(book.id)
        assert stored_book.available is True
        assert stored_book.loans[loan.id].status == LoanStatus.RETURNED
        assert (await store.users.require(user.id)).loans[loan.id].return_date == date.today()
        assert (await store.loans.require(loan.id)).status == LoanStatus.RETURNED

    @pytest.mark.asyncio
    async def test_returning_twice_changes_nothing(self, catalog, collections, lend):
        _, _, loan = await lend()
        await catalog.loans.mark_as_returned(loan.id)
        snapshot = [dict(document) for document in collections["loans"].documents]

        with pytest.raises(InvalidLoanStatusError):
            await catalog.loans.mark_as_returned(loan.id)

        assert collections["loans"].documents == snapshot

    @pytest.mark.asyncio
    async def test_book_can_be_lent_again(self, catalog, lend, make_user_request):
        book, _, loan = await lend()
        await catalog.loans.mark_as_returned(loan.id)
        other = await catalog.users.create_user(make_user_request())

        second = await catalog.loans.create_loan(book.id, other.id)

        assert second.status == LoanStatus.CHECKED_OUT

    @pytest.mark.asyncio
    async def test_unknown_loan(self, catalog):
        with pytest.raises(LoanNotFoundError):
            await catalog.loans.mark_as_returned("missing")


class TestDeleteLoan:

    @pytest.mark.asyncio
    async def test_delete_removes_mirrors_without_restoring_availability(self, catalog, store, lend):
        book, user, loan = await lend()

        await catalog.loans.delete_loan(loan.id)

        assert await store.loans.get(loan.id) is None
        stored_book = await store.books.require(book.id)
        assert loan.id not in stored_book.loans
        assert stored_book.available is False
        assert loan.id not in (await store.users.require(user.id)).loans

    @pytest.mark.asyncio
    async def test_delete_tolerates_missing_parents(self, catalog, store, lend):
        book, user, loan = await lend()
        await store.users.delete(user.id)

        await catalog.loans.delete_loan(loan.id)

        assert await store.loans.get(loan.id) is None


class TestOverdueSweep:

    @pytest.mark.asyncio
    async def test_only_past_due_checked_out_loans(self, catalog, store, lend):
        _, _, late = await lend(loan_date=date(2024, 1, 1), expected_return_date=date(2024, 1, 31))
        _, _, current = await lend(loan_date=date(2024, 1, 20), expected_return_date=date(2024, 2, 20))
        _, _, returned = await lend(loan_date=date(2024, 1, 1), expected_return_date=date(2024, 1, 10))
        await catalog.loans.mark_as_returned(returned.id)

        marked = await catalog.loans.mark_overdue_loans(today=date(2024, 2, 1))

        assert marked == [late.id]
        stored = await store.loans.require(late.id)
        assert stored.status == LoanStatus.OVERDUE
        book = await store.books.require(stored.book.book_id)
        assert book.loans[late.id].status == LoanStatus.OVERDUE
        assert book.available is False
        user = await store.users.require(stored.user.user_id)
        assert user.loans[late.id].status == LoanStatus.OVERDUE
        assert (await store.loans.require(current.id)).status == LoanStatus.CHECKED_OUT
        assert (await store.loans.require(returned.id)).status == LoanStatus.RETURNED

    @pytest.mark.asyncio
    async def test_overdue_loan_can_be_returned(self, catalog, store, lend):
        book, _, loan = await lend(loan_date=date(2024, 1, 1), expected_return_date=date(2024, 1, 2))
        await catalog.loans.mark_overdue_loans(today=date(2024, 1, 5))

        await catalog.loans.mark_as_returned(loan.id)

        assert (await store.books.require(book.id)).available is True


class TestLoanReads:

    @pytest.mark.asyncio
    async def test_reads_are_cached_and_invalidated(self, catalog, lend):
        _, user, loan = await lend()

        assert [item.id for item in await catalog.loans.get_loans_for_user(user.id)] == [loan.id]
        assert (await catalog.loans.get_loan(loan.id)).status == LoanStatus.CHECKED_OUT

        await catalog.loans.mark_as_returned(loan.id)

        assert (await catalog.loans.get_loan(loan.id)).status == LoanStatus.RETURNED
        returned = await catalog.loans.get_loans(LoanStatus.RETURNED)
        assert [item.id for item in returned] == [loan.id]

    @pytest.mark.asyncio
    async def test_loans_for_unknown_user(self, catalog):
        with pytest.raises(UserNotFoundError):
            await catalog.loans.get_loans_for_user("missing")
