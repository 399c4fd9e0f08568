"""
Book use cases: create, update and delete with fan-out, plus cached reads.
"""

import re
from datetime import datetime
from typing import List, Optional

import structlog
from pymongo.errors import DuplicateKeyError

from catalog.cache import CacheRegion, CatalogCache, ChangeKind
from catalog.errors import DuplicateIsbnError, StateConflictError
from catalog.fanout import FanoutSynchronizer
from catalog.models import ACTIVE_LOAN_STATUSES, Book, EntityType, UserSummary
from catalog.outbox import IntentKind, IntentLog
from catalog.schemas import BookRequest
from catalog.store import EntityStore

logger = structlog.get_logger(__name__)

# Book fields a BookRequest may overwrite.
EDITABLE_FIELDS = {
    "title", "synopsis", "author", "categories", "isbn", "publisher",
    "publication_date", "page_count", "language", "cover_image_url",
}


class BookService:

    def __init__(self, store: EntityStore, synchronizer: FanoutSynchronizer, intents: IntentLog, cache: CatalogCache):
        self.store = store
        self.synchronizer = synchronizer
        self.intents = intents
        self.cache = cache
        self.logger = logger.bind(component="book_service")

    async def create_book(self, request: BookRequest) -> Book:
        """
        Create a book and register it with its author and categories.

        Missing authors and categories are created on the fly by name.

        Raises:
            DuplicateIsbnError: another book already has this ISBN
        """
        if await self.store.books.exists({"isbn": request.isbn}):
            raise DuplicateIsbnError(request.isbn)

        data = request.model_dump()
        data["categories"] = set(data["categories"])
        book = Book(**data)

        with self.cache.invalidating(EntityType.BOOK, ChangeKind.CREATED, {EntityType.BOOK: book.id}):
            async with self.intents.track(IntentKind.BOOK_SYNC, book.id):
                try:
                    await self.store.books.insert(book)
                except DuplicateKeyError:
                    raise DuplicateIsbnError(request.isbn)
                await self.synchronizer.book_created(book)

        self.logger.info("Book created", book_id=book.id, isbn=book.isbn, author=book.author)
        return book

    async def update_book(self, book_id: str, request: BookRequest) -> Book:
        """
        Overwrite a book's descriptive fields and propagate the association diff.

        Embedded maps (favorites, reviews, loans) are not touched by this write.

        Raises:
            BookNotFoundError: unknown book
            DuplicateIsbnError: the new ISBN belongs to another book
        """
        previous = await self.store.books.require(book_id)
        if request.isbn != previous.isbn and await self.store.books.exists({"isbn": request.isbn}):
            raise DuplicateIsbnError(request.isbn)

        changes = request.model_dump()
        changes["categories"] = set(changes["categories"])
        changes["updated_at"] = datetime.utcnow()
        book = previous.model_copy(update=changes)

        fields = book.model_dump(by_alias=True, mode="json", include=EDITABLE_FIELDS | {"updated_at"})
        with self.cache.invalidating(EntityType.BOOK, ChangeKind.UPDATED, {EntityType.BOOK: book.id}):
            async with self.intents.track(IntentKind.BOOK_SYNC, book.id):
                try:
                    await self.store.books.set_fields(book.id, fields)
                except DuplicateKeyError:
                    raise DuplicateIsbnError(request.isbn)
                await self.synchronizer.book_updated(previous, book)

        self.logger.info("Book updated", book_id=book.id)
        return book

    async def delete_book(self, book_id: str) -> None:
        """
        Delete a book, every summary of it, and its loans and reviews.

        Raises:
            BookNotFoundError: unknown book
            StateConflictError: the book is currently lent out
        """
        book = await self.store.books.require(book_id)
        active = await self.store.loans.exists({
            "book.bookId": book_id,
            "status": {"$in": [status.value for status in ACTIVE_LOAN_STATUSES]},
        })
        if active or book.active_loan() is not None:
            raise StateConflictError(f"Book {book_id} has an active loan and cannot be deleted")

        loan_ids = [loan.id for loan in await self.store.loans.find({"book.bookId": book_id})]
        review_ids = [review.id for review in await self.store.reviews.find({"book.bookId": book_id})]

        with self.cache.invalidating(EntityType.BOOK, ChangeKind.DELETED, {EntityType.BOOK: book_id}):
            async with self.intents.track(IntentKind.BOOK_SYNC, book_id, loan_ids=loan_ids, review_ids=review_ids):
                await self.store.books.delete(book_id)
                await self.synchronizer.book_deleted(book, loan_ids, review_ids)
                await self.store.loans.delete_many(loan_ids)
                await self.store.reviews.delete_many(review_ids)

        self.logger.info(
            "Book deleted",
            book_id=book_id,
            loans_deleted=len(loan_ids),
            reviews_deleted=len(review_ids)
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_books(self, available: Optional[bool] = None) -> List[Book]:
        query = {} if available is None else {"available": available}
        return await self.cache.get_or_load(
            CacheRegion.BOOKS, f"available:{available}", lambda: self.store.books.find(query)
        )

    async def get_book(self, book_id: str) -> Book:
        return await self.cache.get_or_load(
            CacheRegion.BOOKS_BY_ID, book_id, lambda: self.store.books.require(book_id)
        )

    async def search_books(self, query: str) -> List[Book]:
        """Case-insensitive substring match on title or author, or an exact category name."""
        pattern = re.escape(query)
        criteria = {"$or": [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"author": {"$regex": pattern, "$options": "i"}},
            {"categories": query},
        ]}
        return await self.cache.get_or_load(
            CacheRegion.BOOKS_BY_SEARCH, query, lambda: self.store.books.find(criteria)
        )

    async def get_top_rated(self, min_rating: float = 5.0) -> List[Book]:
        return await self.cache.get_or_load(
            CacheRegion.BOOKS,
            f"top:{min_rating}",
            lambda: self.store.books.find({"averageRating": {"$gte": min_rating}})
        )

    async def get_books_by_category(self, name: str) -> List[Book]:
        return await self.cache.get_or_load(
            CacheRegion.BOOKS, f"category:{name}", lambda: self.store.books.find({"categories": name})
        )

    async def get_users_who_favorited(self, book_id: str) -> List[UserSummary]:
        book = await self.get_book(book_id)
        return list(book.favored_by_users.values())
