"""
Review use cases. Every mutation recomputes the book's rating and mirrors the
review into Book.reviews and User.reviews.
"""

from datetime import datetime
from typing import List

import structlog

from catalog import projector
from catalog.cache import CacheRegion, CatalogCache, ChangeKind
from catalog.fanout import FanoutSynchronizer
from catalog.models import EntityType, Review
from catalog.outbox import IntentKind, IntentLog
from catalog.ratings import RatingAggregator
from catalog.schemas import ReviewRequest, ReviewUpdateRequest
from catalog.store import EntityStore

logger = structlog.get_logger(__name__)


class ReviewService:

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
        self.logger = logger.bind(component="review_service")

    @staticmethod
    def _keys(review: Review):
        return {
            EntityType.REVIEW: review.id,
            EntityType.BOOK: review.book.book_id,
            EntityType.USER: review.user.user_id,
        }

    async def create_review(self, request: ReviewRequest) -> Review:
        """
        Raises:
            BookNotFoundError, UserNotFoundError: unknown book or user
        """
        book = await self.store.books.require(request.book_id)
        user = await self.store.users.require(request.user_id)

        review = Review(
            book=projector.book_summary(book),
            user=projector.user_summary(user),
            rating=request.rating,
            comment=request.comment,
        )

        with self.cache.invalidating(EntityType.REVIEW, ChangeKind.CREATED, self._keys(review)):
            async with self.intents.track(IntentKind.REVIEW_SYNC, review.id, book_ids=[book.id]):
                await self.store.reviews.insert(review)
                average, _ = await self.ratings.recompute(book.id)
                review.book.average_rating = average
                await self.synchronizer.mirror_review(review)

        self.logger.info("Review created", review_id=review.id, book_id=book.id, rating=review.rating)
        return review

    async def update_review(self, review_id: str, request: ReviewUpdateRequest) -> Review:
        """
        Change a review's rating and/or comment; omitted fields stay as they are.

        Raises:
            ReviewNotFoundError: unknown review
            BookNotFoundError, UserNotFoundError: the review's book or user is gone
        """
        review = await self.store.reviews.require(review_id)
        if request.rating is not None:
            review.rating = request.rating
        if request.comment is not None:
            review.comment = request.comment
        review.updated_at = datetime.utcnow()
        review.version += 1

        book_id = review.book.book_id
        with self.cache.invalidating(EntityType.REVIEW, ChangeKind.UPDATED, self._keys(review)):
            async with self.intents.track(IntentKind.REVIEW_SYNC, review.id, book_ids=[book_id]):
                await self.store.reviews.set_fields(review.id, {
                    "rating": review.rating,
                    "comment": review.comment,
                    "updatedAt": review.updated_at,
                    "version": review.version,
                })
                await self.store.books.require(book_id)
                await self.store.users.require(review.user.user_id)
                average, _ = await self.ratings.recompute(book_id)
                review.book.average_rating = average
                await self.synchronizer.mirror_review(review)

        self.logger.info("Review updated", review_id=review.id, rating=review.rating, version=review.version)
        return review

    async def delete_review(self, review_id: str) -> None:
        """Delete a review, drop its mirrors and recompute the book's rating if the book still exists."""
        review = await self.store.reviews.require(review_id)
        book_id = review.book.book_id

        with self.cache.invalidating(EntityType.REVIEW, ChangeKind.DELETED, self._keys(review)):
            async with self.intents.track(IntentKind.REVIEW_SYNC, review.id, book_ids=[book_id]):
                await self.store.reviews.delete(review.id)
                await self.synchronizer.unmirror_review(review)
                if await self.store.books.get(book_id) is not None:
                    await self.ratings.recompute(book_id)

        self.logger.info("Review deleted", review_id=review.id, book_id=book_id)

    async def get_reviews_for_book(self, book_id: str) -> List[Review]:
        return await self.cache.get_or_load(
            CacheRegion.REVIEWS_BY_BOOK, book_id, lambda: self.store.reviews.find({"book.bookId": book_id})
        )

    async def get_reviews_for_user(self, user_id: str) -> List[Review]:
        return await self.cache.get_or_load(
            CacheRegion.REVIEWS_BY_USER, user_id, lambda: self.store.reviews.find({"user.userId": user_id})
        )
