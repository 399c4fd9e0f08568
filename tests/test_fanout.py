"""
Test cases for fan-out propagation of embedded summaries.
"""

import pytest
from pymongo.errors import OperationFailure

from catalog import projector
from catalog.fanout import FanoutSynchronizer
from catalog.models import Author, Book, User


async def author_named(store, name):
    return await store.authors.find_one({"name": name})


async def category_named(store, name):
    return await store.categories.find_one({"name": name})


class TestBookMembership:
    """Author/category membership follows the book's associations."""

    @pytest.mark.asyncio
    async def test_create_registers_with_author_and_categories(self, catalog, store, make_book_request):
        book = await catalog.books.create_book(
            make_book_request(author="Isabel Allende", categories=["Novel", "Family Saga"])
        )

        author = await author_named(store, "Isabel Allende")
        assert list(author.books) == [book.id]
        assert author.books[book.id].title == book.title

        for name in ("Novel", "Family Saga"):
            category = await category_named(store, name)
            assert list(category.books) == [book.id]

    @pytest.mark.asyncio
    async def test_existing_author_is_reused(self, catalog, store, collections, make_book_request):
        first = await catalog.books.create_book(make_book_request(author="Borges"))
        second = await catalog.books.create_book(make_book_request(author="Borges"))

        assert len(collections["authors"].documents) == 1
        author = await author_named(store, "Borges")
        assert set(author.books) == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_author_names_are_case_sensitive(self, catalog, collections, make_book_request):
        await catalog.books.create_book(make_book_request(author="borges"))
        await catalog.books.create_book(make_book_request(author="Borges"))

        assert len(collections["authors"].documents) == 2

    @pytest.mark.asyncio
    async def test_category_diff_on_update(self, catalog, store, make_book_request):
        """Test that categories {A, B} -> {B, C} moves the book from A to C."""
        request = make_book_request(categories=["A", "B"])
        book = await catalog.books.create_book(request)

        await catalog.books.update_book(book.id, request.model_copy(update={"categories": ["B", "C"]}))

        assert book.id not in (await category_named(store, "A")).books
        assert list((await category_named(store, "B")).books) == [book.id]
        assert list((await category_named(store, "C")).books) == [book.id]

    @pytest.mark.asyncio
    async def test_author_change_moves_book(self, catalog, store, make_book_request):
        request = make_book_request(author="Old Author")
        book = await catalog.books.create_book(request)

        await catalog.books.update_book(book.id, request.model_copy(update={"author": "New Author"}))

        assert (await author_named(store, "Old Author")).books == {}
        assert list((await author_named(store, "New Author")).books) == [book.id]

    @pytest.mark.asyncio
    async def test_kept_names_not_rewritten_without_summary_change(self, catalog, collections, make_book_request):
        request = make_book_request(categories=["Novel"])
        book = await catalog.books.create_book(request)
        collections["categories"].calls.clear()

        await catalog.books.update_book(book.id, request.model_copy(update={"synopsis": "New synopsis"}))

        assert not [call for call in collections["categories"].calls if call[0] == "update_one"]

    @pytest.mark.asyncio
    async def test_title_change_refreshes_every_copy(
        self, catalog, store, make_book_request, make_user_request, make_review_request
    ):
        request = make_book_request(categories=["Novel"])
        book = await catalog.books.create_book(request)
        user = await catalog.users.create_user(make_user_request())
        await catalog.users.add_favorite(user.id, book.id)
        loan = await catalog.loans.create_loan(book.id, user.id)
        review = await catalog.reviews.create_review(make_review_request(book.id, user.id))

        await catalog.books.update_book(book.id, request.model_copy(update={"title": "Renamed"}))

        assert (await author_named(store, book.author)).books[book.id].title == "Renamed"
        assert (await category_named(store, "Novel")).books[book.id].title == "Renamed"
        stored_user = await store.users.require(user.id)
        assert stored_user.favorites[book.id].title == "Renamed"
        assert stored_user.loans[loan.id].book.title == "Renamed"
        assert stored_user.reviews[review.id].book.title == "Renamed"
        assert (await store.loans.require(loan.id)).book.title == "Renamed"
        assert (await store.reviews.require(review.id)).book.title == "Renamed"

    @pytest.mark.asyncio
    async def test_propagating_twice_keeps_one_entry(self, catalog, store, make_book_request):
        book = await catalog.books.create_book(make_book_request(categories=["Novel"]))

        await catalog.synchronizer.book_created(book)
        await catalog.synchronizer.reconcile_book(book.id)

        assert list((await author_named(store, book.author)).books) == [book.id]
        assert list((await category_named(store, "Novel")).books) == [book.id]


class TestUserPropagation:

    @pytest.mark.asyncio
    async def test_user_update_refreshes_copies(
        self, catalog, store, make_book_request, make_user_request, make_review_request
    ):
        book = await catalog.books.create_book(make_book_request())
        request = make_user_request(full_name="Ana Lopez")
        user = await catalog.users.create_user(request)
        await catalog.users.add_favorite(user.id, book.id)
        loan = await catalog.loans.create_loan(book.id, user.id)
        review = await catalog.reviews.create_review(make_review_request(book.id, user.id))

        await catalog.users.update_user(user.id, request.model_copy(update={"full_name": "Ana Lopez Diaz"}))

        stored_book = await store.books.require(book.id)
        assert stored_book.favored_by_users[user.id].full_name == "Ana Lopez Diaz"
        assert stored_book.loans[loan.id].user.full_name == "Ana Lopez Diaz"
        assert stored_book.reviews[review.id].user.full_name == "Ana Lopez Diaz"
        assert (await store.loans.require(loan.id)).user.full_name == "Ana Lopez Diaz"
        assert (await store.reviews.require(review.id)).user.full_name == "Ana Lopez Diaz"

    @pytest.mark.asyncio
    async def test_unchanged_summary_writes_nothing(self, store):
        synchronizer = FanoutSynchronizer(store)
        user = User(card_num="C1", full_name="Ana", address="Old street")
        moved = user.model_copy(update={"address": "New street"})

        assert await synchronizer.user_updated(user, moved) == 0


class TestReconcile:
    """Reconcile operations re-derive copies from primary documents."""

    @pytest.mark.asyncio
    async def test_reconcile_book_repairs_membership(self, store, collections):
        synchronizer = FanoutSynchronizer(store)
        book = await store.books.insert(Book(title="T", author="Right", categories={"Kept"}, isbn="1"))
        stray = await store.authors.insert(Author(name="Wrong"))
        await store.authors.put_entry(stray.id, "books", book.id, projector.book_summary(book))

        await synchronizer.reconcile_book(book.id)

        assert (await author_named(store, "Wrong")).books == {}
        assert list((await author_named(store, "Right")).books) == [book.id]
        assert list((await category_named(store, "Kept")).books) == [book.id]

    @pytest.mark.asyncio
    async def test_reconcile_missing_book_purges_copies(self, catalog, store, make_book_request, make_user_request):
        book = await catalog.books.create_book(make_book_request(categories=["Novel"]))
        user = await catalog.users.create_user(make_user_request())
        await catalog.users.add_favorite(user.id, book.id)
        await store.books.delete(book.id)

        await catalog.synchronizer.reconcile_book(book.id)

        assert (await author_named(store, book.author)).books == {}
        assert (await category_named(store, "Novel")).books == {}
        assert (await store.users.require(user.id)).favorites == {}

    @pytest.mark.asyncio
    async def test_reconcile_user_mirrors_favorites(self, catalog, store, make_book_request, make_user_request):
        kept = await catalog.books.create_book(make_book_request())
        dropped = await catalog.books.create_book(make_book_request())
        user = await catalog.users.create_user(make_user_request())
        await catalog.users.add_favorite(user.id, kept.id)
        await catalog.users.add_favorite(user.id, dropped.id)
        # Simulate a half-applied removal: only the user's side was written.
        await store.users.remove_entry(user.id, "favorites", dropped.id)
        await store.books.remove_entry(kept.id, "favoredByUsers", user.id)

        await catalog.synchronizer.reconcile_user(user.id)

        assert user.id in (await store.books.require(kept.id)).favored_by_users
        assert user.id not in (await store.books.require(dropped.id)).favored_by_users


class TestFailures:

    @pytest.mark.asyncio
    async def test_failed_dependent_write_propagates(self, catalog, store, collections, make_book_request):
        """Test that a failing category write surfaces and earlier writes stay committed."""
        collections["categories"].fail_next("update_one")

        with pytest.raises(OperationFailure):
            await catalog.books.create_book(make_book_request(author="Kept Author", categories=["Broken"]))

        assert len(await store.books.find()) == 1
        assert len((await author_named(store, "Kept Author")).books) == 1
        assert await category_named(store, "Broken") is None
