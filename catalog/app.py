"""
LibraryCatalog: wires the store, the propagation machinery and the use-case
services together behind one object.
"""

from datetime import timedelta
from typing import Callable, Optional

import structlog

from catalog.authors import AuthorService
from catalog.books import BookService
from catalog.cache import CatalogCache
from catalog.categories import CategoryService
from catalog.database import MongoDBManager
from catalog.errors import NotFoundError
from catalog.fanout import FanoutSynchronizer
from catalog.jobs import JobTracker, PropagationJob
from catalog.loans import LoanLifecycleEngine
from catalog.outbox import IntentLog, RecoveryResult, RecoverySweeper
from catalog.ratings import RatingAggregator
from catalog.reviews import ReviewService
from catalog.store import EntityStore
from catalog.users import UserService
from utilities.config import CatalogConfig

logger = structlog.get_logger(__name__)


class LibraryCatalog:
    """
    Entry point for every catalogue use case.

    Use cases are grouped by entity: ``catalog.books``, ``catalog.authors``,
    ``catalog.categories``, ``catalog.users``, ``catalog.loans`` and
    ``catalog.reviews``.
    """

    def __init__(
        self,
        store: EntityStore,
        config: Optional[CatalogConfig] = None,
        on_job_failure: Optional[Callable[[PropagationJob], None]] = None
    ):
        self.config = config or CatalogConfig()
        self.store = store
        self.logger = logger.bind(component="library_catalog")

        self.cache = CatalogCache(max_entries=self.config.cache_max_entries)
        self.synchronizer = FanoutSynchronizer(store)
        self.ratings = RatingAggregator(store)
        self.intents = IntentLog(store.collections["intents"])
        self.jobs = JobTracker(store.collections["jobs"], on_failure=on_job_failure)
        self.recovery = RecoverySweeper(
            self.intents,
            self.synchronizer,
            self.ratings,
            cache=self.cache,
            grace_seconds=self.config.intent_grace_seconds,
        )

        self.books = BookService(store, self.synchronizer, self.intents, self.cache)
        self.authors = AuthorService(store, self.synchronizer, self.intents, self.cache, self.jobs)
        self.categories = CategoryService(store, self.cache)
        self.users = UserService(store, self.synchronizer, self.ratings, self.intents, self.cache)
        self.reviews = ReviewService(store, self.synchronizer, self.ratings, self.intents, self.cache)
        self.loans = LoanLifecycleEngine(
            store,
            self.synchronizer,
            self.intents,
            self.cache,
            loan_period_days=self.config.loan_period_days,
        )

    @classmethod
    def from_database(cls, database, config: Optional[CatalogConfig] = None, **kwargs) -> "LibraryCatalog":
        """Build a catalogue over the collections of a (motor) database."""
        config = config or CatalogConfig()
        store = EntityStore.from_database(database, config.get_collection_names())
        return cls(store, config, **kwargs)

    @classmethod
    async def from_manager(cls, manager: MongoDBManager, config: Optional[CatalogConfig] = None, **kwargs):
        """Connect ``manager`` (creating indexes) and build a catalogue over it."""
        database = await manager.connect()
        return cls.from_database(database, config, **kwargs)

    async def get_job(self, job_id: str) -> PropagationJob:
        job = await self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(job_id, f"Job not found with ID: {job_id}")
        return job

    async def recover(self) -> RecoveryResult:
        """Replay pending propagation intents."""
        return await self.recovery.sweep()

    async def prune_intents(self) -> int:
        return await self.intents.prune(timedelta(days=self.config.intent_retention_days))

    async def close(self) -> None:
        """Wait for background propagation jobs to finish."""
        await self.jobs.drain()
        self.logger.info("Catalogue closed")
