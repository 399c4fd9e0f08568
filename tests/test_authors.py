"""
Test cases for author and category use cases.
"""

import pytest

from catalog.errors import (
    AuthorNotFoundError, CategoryNotFoundError, DuplicateAuthorNameError, DuplicateCategoryNameError,
    StateConflictError,
)
from catalog.schemas import AuthorRequest, AuthorUpdateRequest, CategoryRequest


class TestAuthors:

    @pytest.mark.asyncio
    async def test_create_and_read(self, catalog):
        author = await catalog.authors.create_author(AuthorRequest(name="Julio Cortazar", nationality="AR"))

        assert (await catalog.authors.get_author(author.id)).name == "Julio Cortazar"
        assert [item.id for item in await catalog.authors.get_authors()] == [author.id]

    @pytest.mark.asyncio
    async def test_duplicate_name(self, catalog):
        await catalog.authors.create_author(AuthorRequest(name="Borges"))

        with pytest.raises(DuplicateAuthorNameError):
            await catalog.authors.create_author(AuthorRequest(name="Borges"))

    @pytest.mark.asyncio
    async def test_rename_to_taken_name(self, catalog):
        await catalog.authors.create_author(AuthorRequest(name="Borges"))
        other = await catalog.authors.create_author(AuthorRequest(name="Bioy Casares"))

        with pytest.raises(DuplicateAuthorNameError):
            await catalog.authors.update_author(other.id, AuthorUpdateRequest(name="Borges"))

        assert catalog.jobs.active_count == 0

    @pytest.mark.asyncio
    async def test_delete_author_with_books(self, catalog, store, make_book_request):
        await catalog.books.create_book(make_book_request(author="Borges"))
        author = await store.authors.find_one({"name": "Borges"})

        with pytest.raises(StateConflictError):
            await catalog.authors.delete_author(author.id)

    @pytest.mark.asyncio
    async def test_delete_author_without_books(self, catalog, store):
        author = await catalog.authors.create_author(AuthorRequest(name="Nobody"))

        await catalog.authors.delete_author(author.id)

        assert await store.authors.get(author.id) is None
        with pytest.raises(AuthorNotFoundError):
            await catalog.authors.get_author(author.id)


class TestCategories:

    @pytest.mark.asyncio
    async def test_duplicate_name(self, catalog):
        await catalog.categories.create_category(CategoryRequest(name="Poetry"))

        with pytest.raises(DuplicateCategoryNameError):
            await catalog.categories.create_category(CategoryRequest(name="Poetry"))

    @pytest.mark.asyncio
    async def test_update_description_by_name(self, catalog):
        category = await catalog.categories.create_category(CategoryRequest(name="Poetry"))

        updated = await catalog.categories.update_category_description("Poetry", "Verse")

        assert updated.description == "Verse"
        assert (await catalog.categories.get_category(category.id)).description == "Verse"

    @pytest.mark.asyncio
    async def test_update_unknown_category(self, catalog):
        with pytest.raises(CategoryNotFoundError):
            await catalog.categories.update_category_description("Missing", "Nothing")

    @pytest.mark.asyncio
    async def test_delete_removes_name_from_books(self, catalog, store, make_book_request):
        book = await catalog.books.create_book(make_book_request(categories=["Novel", "Classic"]))
        category = await store.categories.find_one({"name": "Classic"})

        assert await catalog.categories.delete_category(category.id) == 1

        assert (await store.books.require(book.id)).categories == {"Novel"}
        assert await store.categories.get(category.id) is None
        assert [item.name for item in await catalog.categories.get_categories()] == ["Novel"]
