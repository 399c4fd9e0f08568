"""
MongoDB connection management for the catalogue.
Handles connection, collection lookup and index creation.
"""

from typing import Dict, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure

logger = structlog.get_logger(__name__)


class MongoDBManager:
    """
    Async MongoDB manager for the catalogue collections.
    Owns the client and creates the indexes the engine relies on.
    """

    def __init__(self, connection_url: str, database_name: str, collection_names: Dict[str, str]):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            collection_names: Logical collection key -> collection name
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.collection_names = dict(collection_names)
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None

    async def connect(self) -> AsyncIOMotorDatabase:
        """Establish connection to MongoDB and ensure indexes."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]

            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self.create_indexes()
            return self.database

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    def collection(self, key: str) -> AsyncIOMotorCollection:
        """Get a collection by its logical key (books, authors, ...)."""
        if self.database is None:
            raise RuntimeError("MongoDBManager is not connected")
        return self.database[self.collection_names[key]]

    async def create_indexes(self) -> None:
        """
        Create the indexes backing natural keys and fan-out lookups.

        Unique indexes on author and category names make locate-or-create
        resolve a name to exactly one document.
        """
        try:
            await self.collection("books").create_index("isbn", unique=True)
            await self.collection("books").create_index("author")
            await self.collection("books").create_index("categories")
            await self.collection("books").create_index("available")

            await self.collection("authors").create_index("name", unique=True)
            await self.collection("categories").create_index("name", unique=True)

            await self.collection("users").create_index("cardNum", unique=True)
            await self.collection("users").create_index("fullName")

            await self.collection("loans").create_index("book.bookId")
            await self.collection("loans").create_index("user.userId")
            await self.collection("loans").create_index([("status", 1), ("expectedReturnDate", 1)])

            await self.collection("reviews").create_index("book.bookId")
            await self.collection("reviews").create_index("user.userId")

            await self.collection("intents").create_index([("status", 1), ("createdAt", 1)])
            await self.collection("jobs").create_index("status")

            logger.info("Successfully created MongoDB indexes")

        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def health_check(self) -> Dict:
        """Ping the server and count documents per collection."""
        try:
            await self.database.command("ping")
            counts = {}
            for key in ("books", "authors", "categories", "users", "loans", "reviews"):
                counts[key] = await self.collection(key).count_documents({})
            return {"status": "healthy", "counts": counts}
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"status": "unhealthy", "error": str(e)}
