"""
Request models accepted by the catalogue use cases.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class BookRequest(BaseModel):
    """Fields a caller supplies to create or replace a book."""
    title: str = Field(..., min_length=1, max_length=200, description="Book title")
    synopsis: Optional[str] = Field(None, description="Short synopsis")
    author: str = Field(..., min_length=1, description="Author name")
    categories: List[str] = Field(default_factory=list, description="Category names")
    isbn: str = Field(..., min_length=1, description="ISBN, unique across books")
    publisher: Optional[str] = None
    publication_date: Optional[date] = None
    page_count: Optional[int] = Field(None, ge=1)
    language: Optional[str] = None
    cover_image_url: Optional[str] = None

    @field_validator('author')
    @classmethod
    def validate_author(cls, v):
        """Author names are join keys; surrounding whitespace is not part of them."""
        v = v.strip()
        if not v:
            raise ValueError('author cannot be blank')
        return v

    @field_validator('categories')
    @classmethod
    def validate_categories(cls, v):
        names = [name.strip() for name in v]
        if any(not name for name in names):
            raise ValueError('category names cannot be blank')
        return names


class AuthorRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Author name, unique")
    biography: Optional[str] = None
    nationality: Optional[str] = None


class AuthorUpdateRequest(BaseModel):
    """Partial author update; omitted fields are left unchanged."""
    name: Optional[str] = Field(None, min_length=1)
    biography: Optional[str] = None
    nationality: Optional[str] = None


class CategoryRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Category name, unique")
    description: Optional[str] = None


class UserRequest(BaseModel):
    card_num: str = Field(..., min_length=1, description="Library card number, unique")
    full_name: str = Field(..., min_length=1)
    address: Optional[str] = None
    email: Optional[str] = None
    number: Optional[str] = None


class LoanRequest(BaseModel):
    book_id: str
    user_id: str
    loan_date: Optional[date] = None
    expected_return_date: Optional[date] = None

    @field_validator('expected_return_date')
    @classmethod
    def validate_return_date(cls, v, info):
        loan_date = info.data.get('loan_date')
        if v is not None and loan_date is not None and v < loan_date:
            raise ValueError('expected_return_date cannot precede loan_date')
        return v


class ReviewRequest(BaseModel):
    book_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5, description="Whole stars, 1 to 5")
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
