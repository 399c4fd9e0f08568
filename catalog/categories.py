"""
Category use cases.
"""

from datetime import datetime
from typing import List, Optional

import structlog
from pymongo.errors import DuplicateKeyError

from catalog.cache import CacheRegion, CatalogCache, ChangeKind
from catalog.errors import CategoryNotFoundError, DuplicateCategoryNameError
from catalog.models import Category, EntityType
from catalog.schemas import CategoryRequest
from catalog.store import EntityStore

logger = structlog.get_logger(__name__)


class CategoryService:

    def __init__(self, store: EntityStore, cache: CatalogCache):
        self.store = store
        self.cache = cache
        self.logger = logger.bind(component="category_service")

    async def create_category(self, request: CategoryRequest) -> Category:
        if await self.store.categories.exists({"name": request.name}):
            raise DuplicateCategoryNameError(request.name)

        category = Category(**request.model_dump())
        with self.cache.invalidating(EntityType.CATEGORY, ChangeKind.CREATED, {EntityType.CATEGORY: category.id}):
            try:
                await self.store.categories.insert(category)
            except DuplicateKeyError:
                raise DuplicateCategoryNameError(request.name)

        self.logger.info("Category created", category_id=category.id, name=category.name)
        return category

    async def update_category_description(self, name: str, description: Optional[str]) -> Category:
        """Change the description of the category with this exact name."""
        category = await self.store.categories.find_one({"name": name})
        if category is None:
            raise CategoryNotFoundError(name, f"Category not found with name: {name}")

        category.description = description
        with self.cache.invalidating(EntityType.CATEGORY, ChangeKind.UPDATED, {EntityType.CATEGORY: category.id}):
            await self.store.categories.set_fields(category.id, {"description": description})
        return category

    async def delete_category(self, category_id: str) -> int:
        """
        Remove the category's name from every book, then delete the category.

        The category is deleted last, so a failure part way leaves it in place
        and the call can be repeated.

        Returns:
            Number of books that lost the category
        """
        category = await self.store.categories.require(category_id)
        books = await self.store.books.find({"categories": category.name})

        with self.cache.invalidating(EntityType.CATEGORY, ChangeKind.DELETED, {EntityType.CATEGORY: category.id}):
            for book in books:
                await self.store.books.set_fields(book.id, {
                    "categories": sorted(book.categories - {category.name}),
                    "updatedAt": datetime.utcnow(),
                })
            await self.store.categories.delete(category.id)

        self.logger.info("Category deleted", category_id=category.id, name=category.name, books_updated=len(books))
        return len(books)

    async def get_categories(self) -> List[Category]:
        return await self.cache.get_or_load(CacheRegion.CATEGORIES, "all", lambda: self.store.categories.find())

    async def get_category(self, category_id: str) -> Category:
        return await self.cache.get_or_load(
            CacheRegion.CATEGORY_BY_ID, category_id, lambda: self.store.categories.require(category_id)
        )
