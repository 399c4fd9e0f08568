"""
Rating Aggregator: recomputes a book's average rating from its reviews and
pushes the new average into every summary of the book.
"""

from datetime import datetime
from typing import Tuple

import structlog

from catalog.store import EntityStore

logger = structlog.get_logger(__name__)


class RatingAggregator:
    """Derives Book.averageRating / ratingsCount from the reviews collection."""

    def __init__(self, store: EntityStore):
        self.store = store
        self.logger = logger.bind(component="rating_aggregator")

    async def recompute(self, book_id: str) -> Tuple[float, int]:
        """
        Recompute and persist the rating of one book.

        Args:
            book_id: Book whose reviews are aggregated

        Returns:
            (average_rating, ratings_count); (0.0, 0) when there are no reviews

        Raises:
            BookNotFoundError: if the book does not exist
        """
        book = await self.store.books.require(book_id)
        reviews = await self.store.reviews.find({"book.bookId": book_id})

        count = len(reviews)
        average = float(sum(review.rating for review in reviews)) / count if count else 0.0

        await self.store.books.set_fields(book_id, {
            "averageRating": average,
            "ratingsCount": count,
            "updatedAt": datetime.utcnow(),
        })

        rating = {"averageRating": average}
        await self.store.authors.set_entry_fields_where({"name": book.author}, "books", book_id, rating)
        for category in sorted(book.categories):
            await self.store.categories.set_entry_fields_where({"name": category}, "books", book_id, rating)
        await self.store.users.set_entry_fields_where({}, "favorites", book_id, rating)
        await self.store.loans.set_fields_where({"book.bookId": book_id}, {"book.averageRating": average})
        await self.store.reviews.set_fields_where({"book.bookId": book_id}, {"book.averageRating": average})

        self.logger.info(
            "Recomputed book rating",
            book_id=book_id,
            average_rating=average,
            ratings_count=count
        )
        return average, count
