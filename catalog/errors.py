"""
Typed failures raised by catalogue use cases.

Storage failures from the driver (``pymongo.errors.PyMongoError``) are not
wrapped; they propagate to the caller as-is.
"""

from typing import Optional

from catalog.models import BookLoanSummary, EntityType


class CatalogError(Exception):
    """Base class for all catalogue failures."""


class NotFoundError(CatalogError):
    """A referenced document could not be resolved."""

    entity_type: Optional[EntityType] = None

    def __init__(self, entity_id: str, message: Optional[str] = None):
        self.entity_id = entity_id
        kind = self.entity_type.value.capitalize() if self.entity_type else "Document"
        super().__init__(message or f"{kind} not found with ID: {entity_id}")


class BookNotFoundError(NotFoundError):
    entity_type = EntityType.BOOK


class AuthorNotFoundError(NotFoundError):
    entity_type = EntityType.AUTHOR


class CategoryNotFoundError(NotFoundError):
    entity_type = EntityType.CATEGORY


class UserNotFoundError(NotFoundError):
    entity_type = EntityType.USER


class LoanNotFoundError(NotFoundError):
    entity_type = EntityType.LOAN


class ReviewNotFoundError(NotFoundError):
    entity_type = EntityType.REVIEW


class FavoriteNotFoundError(NotFoundError):
    """The book is not among the user's favorites."""

    entity_type = EntityType.BOOK

    def __init__(self, user_id: str, book_id: str):
        self.user_id = user_id
        super().__init__(book_id, f"Book {book_id} is not a favorite of user {user_id}")


NOT_FOUND_ERRORS = {
    EntityType.BOOK: BookNotFoundError,
    EntityType.AUTHOR: AuthorNotFoundError,
    EntityType.CATEGORY: CategoryNotFoundError,
    EntityType.USER: UserNotFoundError,
    EntityType.LOAN: LoanNotFoundError,
    EntityType.REVIEW: ReviewNotFoundError,
}


class ConflictError(CatalogError):
    """The write would violate a uniqueness or availability rule."""


class DuplicateIsbnError(ConflictError):
    def __init__(self, isbn: str):
        self.isbn = isbn
        super().__init__(f"A book with ISBN {isbn} already exists")


class DuplicateCardNumberError(ConflictError):
    def __init__(self, card_num: str):
        self.card_num = card_num
        super().__init__(f"A user with card number {card_num} already exists")


class DuplicateAuthorNameError(ConflictError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"An author named '{name}' already exists")


class DuplicateCategoryNameError(ConflictError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"A category named '{name}' already exists")


class FavoriteAlreadyExistsError(ConflictError):
    def __init__(self, user_id: str, book_id: str):
        self.user_id = user_id
        self.book_id = book_id
        super().__init__(f"Book {book_id} is already a favorite of user {user_id}")


class ActiveLoanExistsError(ConflictError):
    """The book is not available; carries the blocking loan entry."""

    def __init__(self, book_id: str, active_loan: Optional[BookLoanSummary]):
        self.book_id = book_id
        self.active_loan = active_loan
        super().__init__(f"Book {book_id} is not available for loan")


class InvalidStateTransitionError(CatalogError):
    """A status change is not allowed from the current state."""


class InvalidLoanStatusError(InvalidStateTransitionError):
    def __init__(self, loan_id: str, status: str):
        self.loan_id = loan_id
        self.status = status
        super().__init__(
            f"Loan {loan_id} is '{status}'; only 'Prestado' or 'Vencido' loans can be returned"
        )


class StateConflictError(CatalogError):
    """The document cannot be deleted in its current state."""
