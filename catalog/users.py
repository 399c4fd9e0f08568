"""
User use cases, including favorites and the guarded delete cascade.
"""

import re
from typing import List

import structlog
from pymongo.errors import DuplicateKeyError

from catalog import projector
from catalog.cache import CacheRegion, CatalogCache, ChangeKind
from catalog.errors import (
    DuplicateCardNumberError, FavoriteAlreadyExistsError, FavoriteNotFoundError, StateConflictError,
)
from catalog.fanout import FanoutSynchronizer
from catalog.models import ACTIVE_LOAN_STATUSES, BookSummary, EntityType, User
from catalog.outbox import IntentKind, IntentLog
from catalog.ratings import RatingAggregator
from catalog.schemas import UserRequest
from catalog.store import EntityStore

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = {"card_num", "full_name", "address", "email", "number"}


class UserService:

    def __init__(
        self,
        store: EntityStore,
        synchronizer: FanoutSynchronizer,
        ratings: RatingAggregator,
        intents: IntentLog,
        cache: CatalogCache
    ):
        self.store = store
        self.synchronizer = synchronizer
        self.ratings = ratings
        self.intents = intents
        self.cache = cache
        self.logger = logger.bind(component="user_service")

    async def create_user(self, request: UserRequest) -> User:
        if await self.store.users.exists({"cardNum": request.card_num}):
            raise DuplicateCardNumberError(request.card_num)

        user = User(**request.model_dump())
        with self.cache.invalidating(EntityType.USER, ChangeKind.CREATED, {EntityType.USER: user.id}):
            try:
                await self.store.users.insert(user)
            except DuplicateKeyError:
                raise DuplicateCardNumberError(request.card_num)

        self.logger.info("User created", user_id=user.id, card_num=user.card_num)
        return user

    async def update_user(self, user_id: str, request: UserRequest) -> User:
        """
        Overwrite a user's own fields and refresh every copy of the user.

        Raises:
            UserNotFoundError: unknown user
            DuplicateCardNumberError: the new card number belongs to another user
        """
        previous = await self.store.users.require(user_id)
        if request.card_num != previous.card_num and await self.store.users.exists({"cardNum": request.card_num}):
            raise DuplicateCardNumberError(request.card_num)

        user = previous.model_copy(update=request.model_dump())
        fields = user.model_dump(by_alias=True, mode="json", include=EDITABLE_FIELDS)

        with self.cache.invalidating(EntityType.USER, ChangeKind.UPDATED, {EntityType.USER: user.id}):
            async with self.intents.track(IntentKind.USER_SYNC, user.id):
                try:
                    await self.store.users.set_fields(user.id, fields)
                except DuplicateKeyError:
                    raise DuplicateCardNumberError(request.card_num)
                await self.synchronizer.user_updated(previous, user)

        self.logger.info("User updated", user_id=user.id)
        return user

    async def delete_user(self, user_id: str) -> None:
        """
        Delete a user together with their loans and reviews.

        Favorite, loan and review entries are removed from books and the
        ratings of every reviewed book are recomputed.

        Raises:
            UserNotFoundError: unknown user
            StateConflictError: the user still has a CheckedOut or Overdue loan
        """
        user = await self.store.users.require(user_id)
        owned = {"user.userId": user_id}
        active = await self.store.loans.exists({
            **owned,
            "status": {"$in": [status.value for status in ACTIVE_LOAN_STATUSES]},
        })
        if active or any(loan.is_active for loan in user.loans.values()):
            raise StateConflictError(f"User {user_id} has active loans and cannot be deleted")

        loan_ids = [loan.id for loan in await self.store.loans.find(owned)]
        reviews = await self.store.reviews.find(owned)
        review_ids = [review.id for review in reviews]
        book_ids = sorted({review.book.book_id for review in reviews})

        with self.cache.invalidating(EntityType.USER, ChangeKind.DELETED, {EntityType.USER: user_id}):
            async with self.intents.track(
                IntentKind.USER_SYNC, user_id, loan_ids=loan_ids, review_ids=review_ids, book_ids=book_ids
            ):
                await self.store.loans.delete_many(loan_ids)
                await self.store.reviews.delete_many(review_ids)
                await self.store.users.delete(user_id)
                await self.synchronizer.user_deleted(user, loan_ids, review_ids)
                for book_id in book_ids:
                    if await self.store.books.get(book_id) is not None:
                        await self.ratings.recompute(book_id)

        self.logger.info(
            "User deleted",
            user_id=user_id,
            loans_deleted=len(loan_ids),
            reviews_deleted=len(review_ids)
        )

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def add_favorite(self, user_id: str, book_id: str) -> BookSummary:
        """
        Raises:
            UserNotFoundError, BookNotFoundError: unknown user or book
            FavoriteAlreadyExistsError: the book is already a favorite
        """
        user = await self.store.users.require(user_id)
        book = await self.store.books.require(book_id)
        if book_id in user.favorites:
            raise FavoriteAlreadyExistsError(user_id, book_id)

        summary = projector.book_summary(book)
        keys = {EntityType.USER: user_id}
        with self.cache.invalidating(EntityType.USER, ChangeKind.UPDATED, keys):
            async with self.intents.track(IntentKind.USER_SYNC, user_id):
                await self.store.users.put_entry(user_id, "favorites", book_id, summary)
                await self.store.books.put_entry(book_id, "favoredByUsers", user_id, projector.user_summary(user))

        self.logger.info("Favorite added", user_id=user_id, book_id=book_id)
        return summary

    async def remove_favorite(self, user_id: str, book_id: str) -> None:
        """
        Raises:
            UserNotFoundError: unknown user
            FavoriteNotFoundError: the book is not among the user's favorites
        """
        user = await self.store.users.require(user_id)
        if book_id not in user.favorites:
            raise FavoriteNotFoundError(user_id, book_id)

        with self.cache.invalidating(EntityType.USER, ChangeKind.UPDATED, {EntityType.USER: user_id}):
            async with self.intents.track(IntentKind.USER_SYNC, user_id):
                await self.store.users.remove_entry(user_id, "favorites", book_id)
                await self.store.books.remove_entry(book_id, "favoredByUsers", user_id)

        self.logger.info("Favorite removed", user_id=user_id, book_id=book_id)

    async def get_favorites(self, user_id: str) -> List[BookSummary]:
        user = await self.get_user(user_id)
        return list(user.favorites.values())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_users(self) -> List[User]:
        return await self.cache.get_or_load(CacheRegion.USERS, "all", lambda: self.store.users.find())

    async def get_user(self, user_id: str) -> User:
        return await self.cache.get_or_load(
            CacheRegion.USER_BY_ID, user_id, lambda: self.store.users.require(user_id)
        )

    async def search_users(self, full_name: str) -> List[User]:
        """Users whose full name contains ``full_name``, ignoring case."""
        query = {"fullName": {"$regex": re.escape(full_name), "$options": "i"}}
        return await self.cache.get_or_load(
            CacheRegion.USERS, f"name:{full_name}", lambda: self.store.users.find(query)
        )
