"""
Pydantic models for catalogue documents and their embedded summaries.

Primary entities live in their own collection and carry an opaque string id
stored as ``_id``. Summaries are embedded copies of another entity's key
fields, kept in maps keyed by the foreign id so that each owner holds at most
one copy per related entity.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel


def new_id() -> str:
    """Generate an opaque document identity."""
    return str(ObjectId())


class EntityType(str, Enum):
    """Primary entity kinds, one collection each."""
    BOOK = "book"
    AUTHOR = "author"
    CATEGORY = "category"
    USER = "user"
    LOAN = "loan"
    REVIEW = "review"


class LoanStatus(str, Enum):
    """Loan states. Values are the stored wire strings."""
    CHECKED_OUT = "Prestado"
    OVERDUE = "Vencido"
    RETURNED = "Entregado"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_LOAN_STATUSES


ACTIVE_LOAN_STATUSES = frozenset({LoanStatus.CHECKED_OUT, LoanStatus.OVERDUE})


class CatalogModel(BaseModel):
    """Base model: snake_case attributes, camelCase stored field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a storable document (aliases, ISO dates, enum values)."""
        return self.model_dump(by_alias=True, mode="json")


class Document(CatalogModel):
    """A primary entity persisted in its own collection."""

    id: str = Field(default_factory=new_id, description="Opaque document identity")

    def to_document(self) -> Dict[str, Any]:
        document = super().to_document()
        document["_id"] = document.pop("id")
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        """Build a model from a stored document."""
        data = dict(document)
        data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Embedded summaries
# ---------------------------------------------------------------------------

class BookSummary(CatalogModel):
    """Book copy embedded in Author.books, Category.books, User.favorites, Loan.book."""
    book_id: str
    title: str
    cover_image_url: Optional[str] = None
    average_rating: float = 0.0


class UserSummary(CatalogModel):
    """User copy embedded in Book.favoredByUsers, Loan.user, Review.user."""
    user_id: str
    full_name: str
    card_num: str
    email: Optional[str] = None


class UserInfo(CatalogModel):
    """Reduced user copy carried by loan and review entries inside a Book."""
    id: str
    full_name: str
    card_num: str


class BookInfo(CatalogModel):
    """Reduced book copy carried by loan and review entries inside a User."""
    id: str
    title: str
    cover_image_url: Optional[str] = None


class LoanSummaryBase(CatalogModel):
    id: str
    loan_date: date
    expected_return_date: date
    return_date: Optional[date] = None
    status: LoanStatus

    @property
    def is_active(self) -> bool:
        return self.status.is_active


class BookLoanSummary(LoanSummaryBase):
    """Loan entry inside Book.loans (carries the borrower)."""
    user: Optional[UserInfo] = None


class UserLoanSummary(LoanSummaryBase):
    """Loan entry inside User.loans (carries the book)."""
    book: Optional[BookInfo] = None


class BookReviewSummary(CatalogModel):
    """Review entry inside Book.reviews."""
    id: str
    rating: int
    comment: Optional[str] = None
    review_date: Optional[datetime] = None
    user: Optional[UserInfo] = None


class UserReviewSummary(CatalogModel):
    """Review entry inside User.reviews."""
    id: str
    rating: int
    comment: Optional[str] = None
    review_date: Optional[datetime] = None
    book: Optional[BookInfo] = None


# ---------------------------------------------------------------------------
# Primary entities
# ---------------------------------------------------------------------------

class Book(Document):
    """Book document with its embedded favorites, reviews and loans."""
    title: str = Field(..., min_length=1, max_length=200)
    synopsis: Optional[str] = None
    author: str = Field(..., min_length=1, description="Author name, the join key to Author")
    categories: Set[str] = Field(default_factory=set, description="Category names, join keys to Category")
    isbn: str
    publisher: Optional[str] = None
    publication_date: Optional[date] = None
    page_count: Optional[int] = Field(default=None, ge=1)
    language: Optional[str] = None
    cover_image_url: Optional[str] = None
    average_rating: float = 0.0
    ratings_count: int = Field(default=0, ge=0)
    available: bool = True
    favored_by_users: Dict[str, UserSummary] = Field(default_factory=dict)
    reviews: Dict[str, BookReviewSummary] = Field(default_factory=dict)
    loans: Dict[str, BookLoanSummary] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_serializer('categories')
    def serialize_categories(self, categories: Set[str]) -> List[str]:
        """Store categories as a sorted list so serialization is stable."""
        return sorted(categories)

    def active_loan(self) -> Optional[BookLoanSummary]:
        """First embedded loan whose status is CheckedOut or Overdue."""
        for loan in self.loans.values():
            if loan.is_active:
                return loan
        return None


class Author(Document):
    """Author document keyed by its unique name."""
    name: str = Field(..., min_length=1)
    biography: Optional[str] = None
    nationality: Optional[str] = None
    books: Dict[str, BookSummary] = Field(default_factory=dict)


class Category(Document):
    """Category document keyed by its unique name."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    books: Dict[str, BookSummary] = Field(default_factory=dict)


class User(Document):
    """Library user with favorites, reviews and loans."""
    card_num: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1)
    address: Optional[str] = None
    email: Optional[str] = None
    number: Optional[str] = None
    favorites: Dict[str, BookSummary] = Field(default_factory=dict)
    reviews: Dict[str, UserReviewSummary] = Field(default_factory=dict)
    loans: Dict[str, UserLoanSummary] = Field(default_factory=dict)


class Loan(Document):
    """Checkout record linking one user to one book."""
    status: LoanStatus = LoanStatus.CHECKED_OUT
    loan_date: date
    expected_return_date: date
    return_date: Optional[date] = None
    book: BookSummary
    user: UserSummary

    @property
    def is_active(self) -> bool:
        return self.status.is_active


class Review(Document):
    """A user's rating of a book."""
    book: BookSummary
    user: UserSummary
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    version: int = 0
    helpful_count: int = 0

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, v):
        """Ratings are whole stars from 1 to 5."""
        if v < 1 or v > 5:
            raise ValueError('Rating must be between 1 and 5')
        return v
