"""
Fan-out Synchronizer: propagates a committed primary-entity change into every
document that embeds a copy of it.

Embedded collections are maps keyed by foreign id, so every propagation step
is a targeted upsert or removal of one entry (``field.<foreignId>``). Running a
propagation twice leaves exactly one entry per foreign id.

Dependent writes run one after another. A failing write raises immediately;
earlier writes stay committed and no rollback is attempted.
"""

from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, Set

import structlog

from catalog import projector
from catalog.models import ACTIVE_LOAN_STATUSES, Book, BookSummary, Loan, Review, User
from catalog.store import EntityRepository, EntityStore
from utilities.logger import FanoutLogger

logger = structlog.get_logger(__name__)

EMBEDDED_BOOKS = "books"


class FanoutSynchronizer:
    """Keeps embedded summaries in step with their source documents."""

    def __init__(self, store: EntityStore):
        self.store = store
        self.logger = logger.bind(component="fanout_synchronizer")
        self.fanout_log = FanoutLogger(__name__).bind_context(component="fanout_synchronizer")

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    async def book_created(self, book: Book) -> int:
        """Add the new book to its author and to each of its categories."""
        self.fanout_log.log_fanout_start("book_created", "book", book.id)
        summary = projector.book_summary(book)
        writes = await self._sync_memberships(book, summary, set(), set(), refresh_kept=False)
        self.fanout_log.log_fanout_complete("book_created", book.id, writes)
        return writes

    async def book_updated(self, previous: Book, book: Book) -> int:
        """
        Apply the author/category diff between two states of a book.

        Documents for names present in both states are rewritten only when
        the book's summary itself changed.
        """
        self.fanout_log.log_fanout_start("book_updated", "book", book.id)
        summary = projector.book_summary(book)
        changed = summary != projector.book_summary(previous)

        writes = await self._sync_memberships(
            book,
            summary,
            {previous.author},
            set(previous.categories),
            refresh_kept=changed,
        )
        if changed:
            writes += await self._refresh_book_copies(book, summary)

        self.fanout_log.log_fanout_complete("book_updated", book.id, writes)
        return writes

    async def book_deleted(self, book: Book, loan_ids: Iterable[str] = (), review_ids: Iterable[str] = ()) -> int:
        """Remove every embedded trace of a deleted book."""
        self.fanout_log.log_fanout_start("book_deleted", "book", book.id)
        writes = await self._sync_memberships(book, None, {book.author}, set(book.categories), refresh_kept=False)
        writes += await self._purge_book_copies(book.id, set(loan_ids) | set(book.loans), set(review_ids) | set(book.reviews))
        self.fanout_log.log_fanout_complete("book_deleted", book.id, writes)
        return writes

    async def reconcile_book(self, book_id: str, loan_ids: Iterable[str] = (), review_ids: Iterable[str] = ()) -> int:
        """
        Re-derive every copy of a book from the stored state.

        Membership is diffed against the authors and categories that currently
        hold an entry for the book. A missing book is purged everywhere and
        its leftover loan and review documents are deleted.
        """
        self.fanout_log.log_fanout_start("reconcile_book", "book", book_id)
        authors = {author.name for author in await self.store.authors.holders_of(EMBEDDED_BOOKS, book_id)}
        categories = {
            category.name for category in await self.store.categories.holders_of(EMBEDDED_BOOKS, book_id)
        }

        book = await self.store.books.get(book_id)
        if book is None:
            writes = 0
            for name in sorted(authors):
                writes += await self._detach(self.store.authors, name, book_id)
            for name in sorted(categories):
                writes += await self._detach(self.store.categories, name, book_id)
            orphans = {"book.bookId": book_id}
            stale_loans = set(loan_ids) | {loan.id for loan in await self.store.loans.find(orphans)}
            stale_reviews = set(review_ids) | {review.id for review in await self.store.reviews.find(orphans)}
            writes += await self._purge_book_copies(book_id, stale_loans, stale_reviews)
            writes += await self._delete_orphans(orphans)
        else:
            summary = projector.book_summary(book)
            writes = await self._sync_memberships(book, summary, authors, categories, refresh_kept=True)
            writes += await self._refresh_book_copies(book, summary)

        self.fanout_log.log_fanout_complete("reconcile_book", book_id, writes)
        return writes

    async def rename_author_on_books(self, old_name: str, new_name: str) -> int:
        """Point every book written under ``old_name`` at ``new_name``, one write per book."""
        books = await self.store.books.find({"author": old_name})
        for book in books:
            await self._write(
                self.store.books,
                "rename_author",
                book.id,
                self.store.books.set_fields(book.id, {"author": new_name, "updatedAt": datetime.utcnow()}),
            )
        self.logger.info(
            "Propagated author rename to books",
            old_name=old_name,
            new_name=new_name,
            books_updated=len(books)
        )
        return len(books)

    async def _sync_memberships(
        self,
        book: Book,
        summary: BookSummary,
        old_authors: Set[str],
        old_categories: Set[str],
        refresh_kept: bool,
    ) -> int:
        """Diff author and category names; a ``None`` summary detaches from all old names."""
        new_authors = {book.author} if summary is not None else set()
        new_categories = set(book.categories) if summary is not None else set()
        writes = await self._apply_diff(self.store.authors, old_authors, new_authors, book.id, summary, refresh_kept)
        writes += await self._apply_diff(
            self.store.categories, old_categories, new_categories, book.id, summary, refresh_kept
        )
        return writes

    async def _apply_diff(
        self,
        repository: EntityRepository,
        old_names: Set[str],
        new_names: Set[str],
        book_id: str,
        summary: BookSummary,
        refresh_kept: bool,
    ) -> int:
        removed = old_names - new_names
        added = new_names - old_names
        kept = old_names & new_names if refresh_kept else set()

        for name in sorted(removed):
            await self._detach(repository, name, book_id)
        for name in sorted(added | kept):
            await self._write(
                repository,
                "attach",
                name,
                repository.put_entry_by_name(name, EMBEDDED_BOOKS, book_id, summary),
            )
        return len(removed) + len(added) + len(kept)

    async def _detach(self, repository: EntityRepository, name: str, book_id: str) -> int:
        await self._write(
            repository,
            "detach",
            name,
            repository.remove_entry_where({"name": name}, EMBEDDED_BOOKS, book_id),
        )
        return 1

    async def _refresh_book_copies(self, book: Book, summary: BookSummary) -> int:
        """Push a changed BookSummary/BookInfo into users, loans and reviews."""
        info = projector.book_info(book)
        users, loans, reviews = self.store.users, self.store.loans, self.store.reviews

        await self._write(users, "refresh_favorite", book.id,
                          users.replace_entry_where({}, "favorites", book.id, summary))
        await self._write(loans, "refresh_book", book.id,
                          loans.set_fields_where({"book.bookId": book.id}, {"book": summary}))
        await self._write(reviews, "refresh_book", book.id,
                          reviews.set_fields_where({"book.bookId": book.id}, {"book": summary}))
        writes = 3
        for loan_id in book.loans:
            await self._write(users, "refresh_loan_book", loan_id,
                              users.set_entry_fields_where({}, "loans", loan_id, {"book": info}))
            writes += 1
        for review_id in book.reviews:
            await self._write(users, "refresh_review_book", review_id,
                              users.set_entry_fields_where({}, "reviews", review_id, {"book": info}))
            writes += 1
        return writes

    async def _purge_book_copies(self, book_id: str, loan_ids: Set[str], review_ids: Set[str]) -> int:
        users = self.store.users
        await self._write(users, "remove_favorite", book_id, users.remove_entry_where({}, "favorites", book_id))
        writes = 1
        for loan_id in sorted(loan_ids):
            await self._write(users, "remove_loan", loan_id, users.remove_entry_where({}, "loans", loan_id))
            writes += 1
        for review_id in sorted(review_ids):
            await self._write(users, "remove_review", review_id, users.remove_entry_where({}, "reviews", review_id))
            writes += 1
        return writes

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def user_updated(self, previous: User, user: User) -> int:
        """Push the user's new summary everywhere it is embedded, if it changed."""
        if projector.user_summary(previous) == projector.user_summary(user):
            return 0
        self.fanout_log.log_fanout_start("user_updated", "user", user.id)
        writes = await self._refresh_user_copies(user)
        self.fanout_log.log_fanout_complete("user_updated", user.id, writes)
        return writes

    async def user_deleted(self, user: User, loan_ids: Iterable[str] = (), review_ids: Iterable[str] = ()) -> int:
        """Remove the user's favorite, loan and review traces from books."""
        self.fanout_log.log_fanout_start("user_deleted", "user", user.id)
        writes = await self._purge_user_copies(
            user.id,
            set(loan_ids) | set(user.loans),
            set(review_ids) | set(user.reviews),
        )
        self.fanout_log.log_fanout_complete("user_deleted", user.id, writes)
        return writes

    async def reconcile_user(self, user_id: str, loan_ids: Iterable[str] = (), review_ids: Iterable[str] = ()) -> int:
        """
        Re-derive the user's copies in books, loans and reviews.

        Favorites are mirrored from User.favorites into Book.favoredByUsers.
        A missing user is purged from books and its leftover loan and review
        documents are deleted.
        """
        self.fanout_log.log_fanout_start("reconcile_user", "user", user_id)
        books = self.store.books
        user = await self.store.users.get(user_id)
        if user is None:
            orphans = {"user.userId": user_id}
            stale_loans = set(loan_ids) | {loan.id for loan in await self.store.loans.find(orphans)}
            stale_reviews = set(review_ids) | {review.id for review in await self.store.reviews.find(orphans)}
            writes = await self._purge_user_copies(user_id, stale_loans, stale_reviews)
            writes += await self._delete_orphans(orphans)
        else:
            summary = projector.user_summary(user)
            writes = 0
            for holder in await books.holders_of("favoredByUsers", user_id):
                if holder.id not in user.favorites:
                    await self._write(books, "remove_favorite", holder.id,
                                      books.remove_entry(holder.id, "favoredByUsers", user_id))
                    writes += 1
            for book_id in user.favorites:
                await self._write(books, "put_favorite", book_id,
                                  books.put_entry(book_id, "favoredByUsers", user_id, summary))
                writes += 1
            writes += await self._refresh_user_copies(user)
        self.fanout_log.log_fanout_complete("reconcile_user", user_id, writes)
        return writes

    async def _refresh_user_copies(self, user: User) -> int:
        summary = projector.user_summary(user)
        info = projector.user_info(user)
        books, loans, reviews = self.store.books, self.store.loans, self.store.reviews

        await self._write(books, "refresh_favorite", user.id,
                          books.replace_entry_where({}, "favoredByUsers", user.id, summary))
        await self._write(loans, "refresh_user", user.id,
                          loans.set_fields_where({"user.userId": user.id}, {"user": summary}))
        await self._write(reviews, "refresh_user", user.id,
                          reviews.set_fields_where({"user.userId": user.id}, {"user": summary}))
        writes = 3
        for loan_id in user.loans:
            await self._write(books, "refresh_loan_user", loan_id,
                              books.set_entry_fields_where({}, "loans", loan_id, {"user": info}))
            writes += 1
        for review_id in user.reviews:
            await self._write(books, "refresh_review_user", review_id,
                              books.set_entry_fields_where({}, "reviews", review_id, {"user": info}))
            writes += 1
        return writes

    async def _purge_user_copies(self, user_id: str, loan_ids: Set[str], review_ids: Set[str]) -> int:
        books = self.store.books
        await self._write(books, "remove_favorite", user_id,
                          books.remove_entry_where({}, "favoredByUsers", user_id))
        writes = 1
        for loan_id in sorted(loan_ids):
            await self._write(books, "remove_loan", loan_id, books.remove_entry_where({}, "loans", loan_id))
            writes += 1
        for review_id in sorted(review_ids):
            await self._write(books, "remove_review", review_id, books.remove_entry_where({}, "reviews", review_id))
            writes += 1
        return writes

    # ------------------------------------------------------------------
    # Loans and reviews
    # ------------------------------------------------------------------

    async def reconcile_loan(self, loan_id: str) -> int:
        """
        Re-mirror a loan into its book and user and re-derive availability.

        A deleted loan is removed from every book and user that still holds
        it; availability is left alone in that case.
        """
        self.fanout_log.log_fanout_start("reconcile_loan", "loan", loan_id)
        books, users = self.store.books, self.store.users
        loan = await self.store.loans.get(loan_id)
        if loan is None:
            await self._write(books, "remove_loan", loan_id, books.remove_entry_where({}, "loans", loan_id))
            await self._write(users, "remove_loan", loan_id, users.remove_entry_where({}, "loans", loan_id))
            writes = 2
        else:
            writes = await self.mirror_loan(loan)
            has_active = await self.store.loans.exists({
                "book.bookId": loan.book.book_id,
                "status": {"$in": [status.value for status in ACTIVE_LOAN_STATUSES]},
            })
            await self._write(books, "set_available", loan.book.book_id,
                              books.set_fields(loan.book.book_id, {"available": not has_active}))
            writes += 1
        self.fanout_log.log_fanout_complete("reconcile_loan", loan_id, writes)
        return writes

    async def mirror_loan(self, loan: Loan) -> int:
        """Write the loan's summaries into Book.loans and User.loans."""
        books, users = self.store.books, self.store.users
        await self._write(books, "put_loan", loan.book.book_id,
                          books.put_entry(loan.book.book_id, "loans", loan.id, projector.book_loan_summary(loan)))
        await self._write(users, "put_loan", loan.user.user_id,
                          users.put_entry(loan.user.user_id, "loans", loan.id, projector.user_loan_summary(loan)))
        return 2

    async def mirror_review(self, review: Review) -> int:
        """Write the review's summaries into Book.reviews and User.reviews."""
        books, users = self.store.books, self.store.users
        await self._write(books, "put_review", review.book.book_id,
                          books.put_entry(review.book.book_id, "reviews", review.id,
                                          projector.book_review_summary(review)))
        await self._write(users, "put_review", review.user.user_id,
                          users.put_entry(review.user.user_id, "reviews", review.id,
                                          projector.user_review_summary(review)))
        return 2

    async def unmirror_review(self, review: Review) -> int:
        books, users = self.store.books, self.store.users
        await self._write(books, "remove_review", review.book.book_id,
                          books.remove_entry(review.book.book_id, "reviews", review.id))
        await self._write(users, "remove_review", review.user.user_id,
                          users.remove_entry(review.user.user_id, "reviews", review.id))
        return 2

    async def reconcile_review(self, review_id: str) -> int:
        """Re-mirror a review, or purge its entries when the review is gone."""
        self.fanout_log.log_fanout_start("reconcile_review", "review", review_id)
        review = await self.store.reviews.get(review_id)
        if review is None:
            books, users = self.store.books, self.store.users
            await self._write(books, "remove_review", review_id, books.remove_entry_where({}, "reviews", review_id))
            await self._write(users, "remove_review", review_id, users.remove_entry_where({}, "reviews", review_id))
            writes = 2
        else:
            writes = await self.mirror_review(review)
        self.fanout_log.log_fanout_complete("reconcile_review", review_id, writes)
        return writes

    # ------------------------------------------------------------------

    async def _delete_orphans(self, query: Dict[str, Any]) -> int:
        """Delete loan and review documents still pointing at a deleted primary."""
        loans, reviews = self.store.loans, self.store.reviews
        await self._write(loans, "delete_orphans", str(query), loans.delete_where(query))
        await self._write(reviews, "delete_orphans", str(query), reviews.delete_where(query))
        return 2

    async def _write(self, repository: EntityRepository, action: str, target: str, operation: Awaitable):
        """Await one dependent write, logging its outcome."""
        try:
            result = await operation
        except Exception as e:
            self.fanout_log.log_write_failure(repository.name, action, target, str(e))
            raise
        self.fanout_log.log_dependent_write(
            repository.name, action, target, result if isinstance(result, int) else None
        )
        return result
