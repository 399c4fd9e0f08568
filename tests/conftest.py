"""
Pytest configuration and shared fixtures.
"""

from datetime import date

import pytest

from catalog.app import LibraryCatalog
from catalog.schemas import BookRequest, ReviewRequest, UserRequest
from catalog.store import EntityStore
from fakes import FakeDatabase
from utilities.config import CatalogConfig


@pytest.fixture
def test_config():
    """Configuration that ignores any local .env file."""
    return CatalogConfig(_env_file=None, log_file=None, test_mode=True, intent_grace_seconds=0)


@pytest.fixture
def database(test_config):
    """In-memory database with the unique indexes the catalogue relies on."""
    db = FakeDatabase()
    names = test_config.get_collection_names()
    db[names["books"]].add_unique_index("isbn")
    db[names["authors"]].add_unique_index("name")
    db[names["categories"]].add_unique_index("name")
    db[names["users"]].add_unique_index("cardNum")
    return db


@pytest.fixture
def collections(database, test_config):
    """Fake collections by logical key (books, authors, ...)."""
    return {key: database[name] for key, name in test_config.get_collection_names().items()}


@pytest.fixture
def store(database, test_config):
    return EntityStore.from_database(database, test_config.get_collection_names())


@pytest.fixture
def catalog(store, test_config):
    return LibraryCatalog(store, test_config)


@pytest.fixture
def make_book_request():
    """Factory for book requests with sensible defaults."""
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        data = {
            "title": f"Book {counter['n']}",
            "author": "Gabriel Garcia Marquez",
            "categories": ["Novel"],
            "isbn": f"978-0-00-{counter['n']:06d}",
            "publisher": "Sudamericana",
            "publication_date": date(1967, 5, 30),
            "page_count": 417,
            "language": "es",
            "cover_image_url": f"https://covers.example.org/{counter['n']}.jpg",
        }
        data.update(overrides)
        return BookRequest(**data)

    return factory


@pytest.fixture
def make_user_request():
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        data = {
            "card_num": f"CARD-{counter['n']:04d}",
            "full_name": f"Reader Number {counter['n']}",
            "email": f"reader{counter['n']}@example.org",
            "address": "Calle Falsa 123",
            "number": "555-0100",
        }
        data.update(overrides)
        return UserRequest(**data)

    return factory


@pytest.fixture
def make_review_request():
    def factory(book_id, user_id, rating=4, comment="Worth reading"):
        return ReviewRequest(book_id=book_id, user_id=user_id, rating=rating, comment=comment)

    return factory
