"""
Author use cases. A rename is propagated to books by a tracked background job.
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog
from pymongo.errors import DuplicateKeyError

from catalog.cache import CacheRegion, CatalogCache, ChangeKind
from catalog.errors import DuplicateAuthorNameError, StateConflictError
from catalog.fanout import FanoutSynchronizer
from catalog.jobs import JobHandle, JobTracker
from catalog.models import Author, EntityType
from catalog.outbox import IntentKind, IntentLog
from catalog.schemas import AuthorRequest, AuthorUpdateRequest
from catalog.store import EntityStore

logger = structlog.get_logger(__name__)

RENAME_JOB = "author_rename"


class AuthorService:

    def __init__(
        self,
        store: EntityStore,
        synchronizer: FanoutSynchronizer,
        intents: IntentLog,
        cache: CatalogCache,
        jobs: JobTracker
    ):
        self.store = store
        self.synchronizer = synchronizer
        self.intents = intents
        self.cache = cache
        self.jobs = jobs
        self.logger = logger.bind(component="author_service")

    async def create_author(self, request: AuthorRequest) -> Author:
        if await self.store.authors.exists({"name": request.name}):
            raise DuplicateAuthorNameError(request.name)

        author = Author(**request.model_dump())
        with self.cache.invalidating(EntityType.AUTHOR, ChangeKind.CREATED, {EntityType.AUTHOR: author.id}):
            try:
                await self.store.authors.insert(author)
            except DuplicateKeyError:
                raise DuplicateAuthorNameError(request.name)

        self.logger.info("Author created", author_id=author.id, name=author.name)
        return author

    async def update_author(self, author_id: str, request: AuthorUpdateRequest) -> Tuple[Author, Optional[JobHandle]]:
        """
        Update an author's fields.

        When the name changes the author document is renamed immediately and
        the books written under the old name are repointed by a background
        job. Until that job completes, books may still carry the old name.

        Returns:
            The updated author and the rename job handle (None without a rename)

        Raises:
            AuthorNotFoundError: unknown author
            DuplicateAuthorNameError: the new name belongs to another author
        """
        author = await self.store.authors.require(author_id)
        old_name = author.name
        renamed = request.name is not None and request.name != old_name
        if renamed and await self.store.authors.exists({"name": request.name}):
            raise DuplicateAuthorNameError(request.name)

        changes = request.model_dump(exclude_none=True)
        author = author.model_copy(update=changes)
        fields = author.model_dump(by_alias=True, mode="json", include=set(changes))

        with self.cache.invalidating(EntityType.AUTHOR, ChangeKind.UPDATED, {EntityType.AUTHOR: author.id}):
            if fields:
                try:
                    await self.store.authors.set_fields(author.id, fields)
                except DuplicateKeyError:
                    raise DuplicateAuthorNameError(author.name)

        job = None
        if renamed:
            job = await self._submit_rename(old_name, author.name)

        self.logger.info("Author updated", author_id=author.id, renamed=renamed)
        return author, job

    async def _submit_rename(self, old_name: str, new_name: str) -> JobHandle:
        intent = await self.intents.record(IntentKind.AUTHOR_RENAME, old_name, old_name=old_name, new_name=new_name)

        async def propagate() -> Dict[str, Any]:
            try:
                books_updated = await self.synchronizer.rename_author_on_books(old_name, new_name)
            except Exception as e:
                await self.intents.mark_failed(intent.id, str(e))
                raise
            finally:
                self.cache.invalidate(EntityType.BOOK, ChangeKind.UPDATED)
            await self.intents.complete(intent.id)
            return {"booksUpdated": books_updated}

        return await self.jobs.submit(RENAME_JOB, propagate, old_name=old_name, new_name=new_name)

    async def delete_author(self, author_id: str) -> None:
        """
        Raises:
            AuthorNotFoundError: unknown author
            StateConflictError: books are still written under this author
        """
        author = await self.store.authors.require(author_id)
        if author.books or await self.store.books.exists({"author": author.name}):
            raise StateConflictError(f"Author '{author.name}' still has books and cannot be deleted")

        with self.cache.invalidating(EntityType.AUTHOR, ChangeKind.DELETED, {EntityType.AUTHOR: author.id}):
            await self.store.authors.delete(author.id)
        self.logger.info("Author deleted", author_id=author.id, name=author.name)

    async def get_authors(self) -> List[Author]:
        return await self.cache.get_or_load(CacheRegion.AUTHORS, "all", lambda: self.store.authors.find())

    async def get_author(self, author_id: str) -> Author:
        return await self.cache.get_or_load(
            CacheRegion.AUTHOR_BY_ID, author_id, lambda: self.store.authors.require(author_id)
        )
