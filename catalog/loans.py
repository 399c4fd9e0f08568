"""
Loan Lifecycle Engine.

Loan states: CheckedOut ("Prestado") -> Overdue ("Vencido") -> Returned
("Entregado"); CheckedOut may also go straight to Returned. Returned is
terminal. A book is available exactly when none of its loans is active.
"""

from datetime import date, timedelta
from typing import List, Optional

import structlog

from catalog import projector
from catalog.cache import CacheRegion, CatalogCache, ChangeKind
from catalog.errors import ActiveLoanExistsError, InvalidLoanStatusError
from catalog.fanout import FanoutSynchronizer
from catalog.models import EntityType, Loan, LoanStatus
from catalog.outbox import IntentKind, IntentLog
from catalog.store import EntityStore

logger = structlog.get_logger(__name__)


class LoanLifecycleEngine:
    """Creates, returns, deletes and ages loans, keeping Book and User mirrors in step."""

    def __init__(
        self,
        store: EntityStore,
        synchronizer: FanoutSynchronizer,
        intents: IntentLog,
        cache: CatalogCache,
        loan_period_days: int = 30
    ):
        self.store = store
        self.synchronizer = synchronizer
        self.intents = intents
        self.cache = cache
        self.loan_period = timedelta(days=loan_period_days)
        self.logger = logger.bind(component="loan_engine")

    async def create_loan(
        self,
        book_id: str,
        user_id: str,
        loan_date: Optional[date] = None,
        expected_return_date: Optional[date] = None
    ) -> Loan:
        """
        Check a book out to a user.

        Raises:
            BookNotFoundError: unknown book
            ActiveLoanExistsError: the book is not available
            UserNotFoundError: unknown user
        """
        book = await self.store.books.require(book_id)
        if not book.available:
            raise ActiveLoanExistsError(book.id, book.active_loan())
        user = await self.store.users.require(user_id)

        loan_date = loan_date or date.today()
        loan = Loan(
            loan_date=loan_date,
            expected_return_date=expected_return_date or loan_date + self.loan_period,
            book=projector.book_summary(book),
            user=projector.user_summary(user),
        )

        keys = {EntityType.LOAN: loan.id, EntityType.BOOK: book.id, EntityType.USER: user.id}
        with self.cache.invalidating(EntityType.LOAN, ChangeKind.CREATED, keys):
            async with self.intents.track(IntentKind.LOAN_SYNC, loan.id):
                await self.store.loans.insert(loan)
                await self.store.books.set_fields(book.id, {"available": False})
                await self.synchronizer.mirror_loan(loan)

        self.logger.info(
            "Loan created",
            loan_id=loan.id,
            book_id=book.id,
            user_id=user.id,
            expected_return_date=loan.expected_return_date.isoformat()
        )
        return loan

    async def mark_as_returned(self, loan_id: str) -> Loan:
        """
        Close an active loan and make its book available again.

        Raises:
            LoanNotFoundError: unknown loan
            InvalidLoanStatusError: the loan is already returned; nothing is written
            BookNotFoundError, UserNotFoundError: a parent vanished after the loan was updated
        """
        loan = await self.store.loans.require(loan_id)
        if not loan.is_active:
            raise InvalidLoanStatusError(loan.id, loan.status.value)

        loan.status = LoanStatus.RETURNED
        loan.return_date = date.today()

        keys = {EntityType.LOAN: loan.id, EntityType.BOOK: loan.book.book_id, EntityType.USER: loan.user.user_id}
        with self.cache.invalidating(EntityType.LOAN, ChangeKind.UPDATED, keys):
            async with self.intents.track(IntentKind.LOAN_SYNC, loan.id):
                await self.store.loans.set_fields(loan.id, {
                    "status": loan.status,
                    "returnDate": loan.return_date,
                })
                await self.store.books.require(loan.book.book_id)
                await self.store.users.require(loan.user.user_id)
                await self.synchronizer.mirror_loan(loan)
                await self.store.books.set_fields(loan.book.book_id, {"available": True})

        self.logger.info("Loan returned", loan_id=loan.id, book_id=loan.book.book_id)
        return loan

    async def delete_loan(self, loan_id: str) -> None:
        """
        Delete a loan and its mirrors. Missing parents are tolerated.

        Book availability is not restored; returning the loan first is the
        caller's responsibility.
        """
        loan = await self.store.loans.require(loan_id)

        keys = {EntityType.LOAN: loan.id, EntityType.BOOK: loan.book.book_id, EntityType.USER: loan.user.user_id}
        with self.cache.invalidating(EntityType.LOAN, ChangeKind.DELETED, keys):
            async with self.intents.track(IntentKind.LOAN_SYNC, loan.id):
                await self.store.users.remove_entry(loan.user.user_id, "loans", loan.id)
                await self.store.books.remove_entry(loan.book.book_id, "loans", loan.id)
                await self.store.loans.delete(loan.id)

        self.logger.info("Loan deleted", loan_id=loan.id, was_active=loan.is_active)

    async def mark_overdue_loans(self, today: Optional[date] = None) -> List[str]:
        """
        Move CheckedOut loans past their expected return date to Overdue.

        Status is mirrored into Book.loans and User.loans; availability does
        not change because an overdue loan is still active.

        Returns:
            Ids of the loans that were marked overdue
        """
        today = today or date.today()
        due = await self.store.loans.find({
            "status": LoanStatus.CHECKED_OUT.value,
            "expectedReturnDate": {"$lt": today.isoformat()},
        })

        marked = []
        keys = {EntityType.LOAN: marked, EntityType.BOOK: [], EntityType.USER: []}
        with self.cache.invalidating(EntityType.LOAN, ChangeKind.UPDATED, keys):
            for loan in due:
                async with self.intents.track(IntentKind.LOAN_SYNC, loan.id):
                    loan.status = LoanStatus.OVERDUE
                    await self.store.loans.set_fields(loan.id, {"status": loan.status})
                    await self.synchronizer.mirror_loan(loan)
                marked.append(loan.id)
                keys[EntityType.BOOK].append(loan.book.book_id)
                keys[EntityType.USER].append(loan.user.user_id)

        self.logger.info("Overdue sweep finished", today=today.isoformat(), marked=len(marked))
        return marked

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_loan(self, loan_id: str) -> Loan:
        return await self.cache.get_or_load(
            CacheRegion.LOANS_BY_ID, loan_id, lambda: self.store.loans.require(loan_id)
        )

    async def get_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        query = {"status": status.value} if status else {}
        key = f"status:{status.value if status else 'all'}"
        return await self.cache.get_or_load(CacheRegion.LOANS, key, lambda: self.store.loans.find(query))

    async def get_loans_for_user(self, user_id: str) -> List[Loan]:
        """Loans of one user; raises UserNotFoundError for an unknown user."""
        async def load():
            await self.store.users.require(user_id)
            return await self.store.loans.find({"user.userId": user_id})

        return await self.cache.get_or_load(CacheRegion.LOANS, f"user:{user_id}", load)
