"""
Intent log and recovery sweep for multi-document propagation.

Every mutating use case records a pending intent before its primary write and
marks it complete once all dependent writes succeeded. An intent left pending
(because a dependent write failed, or the process died) is replayed later by
the RecoverySweeper through the idempotent reconcile operations.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from pydantic import Field

from catalog.fanout import FanoutSynchronizer
from catalog.models import Document
from catalog.ratings import RatingAggregator
from catalog.store import encode

logger = structlog.get_logger(__name__)


class IntentKind(str, Enum):
    BOOK_SYNC = "book_sync"
    USER_SYNC = "user_sync"
    LOAN_SYNC = "loan_sync"
    REVIEW_SYNC = "review_sync"
    AUTHOR_RENAME = "author_rename"


class IntentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class FanoutIntent(Document):
    """A propagation that has been started but not yet confirmed complete."""
    kind: IntentKind
    entity_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: IntentStatus = IntentStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None


class IntentLog:
    """Persists intents in the bookkeeping collection."""

    def __init__(self, collection):
        self.collection = collection
        self.logger = logger.bind(component="intent_log")

    async def record(self, kind: IntentKind, entity_id: str, **payload) -> FanoutIntent:
        intent = FanoutIntent(kind=kind, entity_id=entity_id, payload=encode(payload))
        await self.collection.insert_one(intent.to_document())
        self.logger.debug("Intent recorded", intent_id=intent.id, kind=kind.value, entity_id=entity_id)
        return intent

    async def complete(self, intent_id: str) -> None:
        now = encode(datetime.utcnow())
        await self.collection.update_one(
            {"_id": intent_id},
            {"$set": {"status": IntentStatus.COMPLETED.value, "completedAt": now, "updatedAt": now}}
        )

    async def mark_failed(self, intent_id: str, error: str) -> None:
        """Leave the intent pending with one more attempt on record."""
        intent = await self.get(intent_id)
        attempts = intent.attempts + 1 if intent else 1
        await self.collection.update_one(
            {"_id": intent_id},
            {"$set": {
                "status": IntentStatus.PENDING.value,
                "attempts": attempts,
                "lastError": error,
                "updatedAt": encode(datetime.utcnow()),
            }}
        )
        self.logger.warning("Intent left pending", intent_id=intent_id, attempts=attempts, error=error)

    async def get(self, intent_id: str) -> Optional[FanoutIntent]:
        document = await self.collection.find_one({"_id": intent_id})
        return FanoutIntent.from_document(document) if document else None

    async def pending(self, older_than: Optional[datetime] = None) -> List[FanoutIntent]:
        """Pending intents, oldest first, optionally only those created before ``older_than``."""
        query: Dict[str, Any] = {"status": IntentStatus.PENDING.value}
        if older_than is not None:
            query["createdAt"] = {"$lt": encode(older_than)}
        intents = []
        async for document in self.collection.find(query):
            intents.append(FanoutIntent.from_document(document))
        return sorted(intents, key=lambda intent: intent.created_at)

    @asynccontextmanager
    async def track(self, kind: IntentKind, entity_id: str, **payload) -> AsyncIterator[FanoutIntent]:
        """Record an intent, run the body, then complete it or leave it pending."""
        intent = await self.record(kind, entity_id, **payload)
        try:
            yield intent
        except Exception as e:
            await self.mark_failed(intent.id, str(e))
            raise
        await self.complete(intent.id)

    async def prune(self, retention: timedelta) -> int:
        """Delete completed intents older than the retention window."""
        cutoff = encode(datetime.utcnow() - retention)
        result = await self.collection.delete_many({
            "status": IntentStatus.COMPLETED.value,
            "completedAt": {"$lt": cutoff},
        })
        if result.deleted_count:
            self.logger.info("Pruned completed intents", deleted=result.deleted_count)
        return result.deleted_count


class RecoveryResult:
    """Outcome of one recovery sweep."""

    def __init__(self):
        self.reconciled: List[str] = []
        self.failed: Dict[str, str] = {}

    @property
    def total(self) -> int:
        return len(self.reconciled) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reconciled": len(self.reconciled),
            "failed": len(self.failed),
            "failed_intents": dict(self.failed),
        }


class RecoverySweeper:
    """Replays pending intents through the reconcile operations."""

    def __init__(
        self,
        intents: IntentLog,
        synchronizer: FanoutSynchronizer,
        ratings: RatingAggregator,
        cache=None,
        grace_seconds: int = 60
    ):
        self.intents = intents
        self.synchronizer = synchronizer
        self.ratings = ratings
        self.cache = cache
        self.grace = timedelta(seconds=grace_seconds)
        self.logger = logger.bind(component="recovery_sweeper")

    async def sweep(self, now: Optional[datetime] = None) -> RecoveryResult:
        """Reconcile every pending intent older than the grace period."""
        now = now or datetime.utcnow()
        result = RecoveryResult()
        pending = await self.intents.pending(older_than=now - self.grace)

        for intent in pending:
            try:
                await self.replay(intent)
            except Exception as e:
                await self.intents.mark_failed(intent.id, str(e))
                result.failed[intent.id] = str(e)
                self.logger.error(
                    "Intent replay failed",
                    intent_id=intent.id,
                    kind=intent.kind.value,
                    entity_id=intent.entity_id,
                    error=str(e)
                )
                continue
            await self.intents.complete(intent.id)
            result.reconciled.append(intent.id)

        if result.reconciled and self.cache is not None:
            self.cache.clear_all()

        self.logger.info("Recovery sweep finished", pending=len(pending), **result.to_dict())
        return result

    async def replay(self, intent: FanoutIntent) -> None:
        payload = intent.payload
        if intent.kind == IntentKind.BOOK_SYNC:
            await self.synchronizer.reconcile_book(
                intent.entity_id, payload.get("loan_ids", []), payload.get("review_ids", [])
            )
        elif intent.kind == IntentKind.USER_SYNC:
            await self.synchronizer.reconcile_user(
                intent.entity_id, payload.get("loan_ids", []), payload.get("review_ids", [])
            )
            await self._recompute(payload.get("book_ids", []))
        elif intent.kind == IntentKind.LOAN_SYNC:
            await self.synchronizer.reconcile_loan(intent.entity_id)
        elif intent.kind == IntentKind.REVIEW_SYNC:
            await self.synchronizer.reconcile_review(intent.entity_id)
            await self._recompute(payload.get("book_ids", []))
        elif intent.kind == IntentKind.AUTHOR_RENAME:
            await self.synchronizer.rename_author_on_books(payload["old_name"], payload["new_name"])
        else:
            raise ValueError(f"Unknown intent kind: {intent.kind}")

    async def _recompute(self, book_ids: List[str]) -> None:
        """Recompute ratings for books that still exist."""
        for book_id in book_ids:
            if await self.synchronizer.store.books.get(book_id) is not None:
                await self.ratings.recompute(book_id)
