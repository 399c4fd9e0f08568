"""
Summary Projector: pure mappings from a full entity to its embedded copies.

Every place that embeds a summary builds it here, so two projections of the
same entity state are equal and serialize to identical documents.
"""

from catalog.models import (
    Book, BookInfo, BookLoanSummary, BookReviewSummary, BookSummary, Loan,
    Review, User, UserInfo, UserLoanSummary, UserReviewSummary, UserSummary,
)


def book_summary(book: Book) -> BookSummary:
    return BookSummary(
        book_id=book.id,
        title=book.title,
        cover_image_url=book.cover_image_url,
        average_rating=book.average_rating,
    )


def book_info(book: Book) -> BookInfo:
    return BookInfo(id=book.id, title=book.title, cover_image_url=book.cover_image_url)


def book_info_from_summary(summary: BookSummary) -> BookInfo:
    return BookInfo(id=summary.book_id, title=summary.title, cover_image_url=summary.cover_image_url)


def user_summary(user: User) -> UserSummary:
    return UserSummary(
        user_id=user.id,
        full_name=user.full_name,
        card_num=user.card_num,
        email=user.email,
    )


def user_info(user: User) -> UserInfo:
    return UserInfo(id=user.id, full_name=user.full_name, card_num=user.card_num)


def user_info_from_summary(summary: UserSummary) -> UserInfo:
    return UserInfo(id=summary.user_id, full_name=summary.full_name, card_num=summary.card_num)


def book_loan_summary(loan: Loan) -> BookLoanSummary:
    """Loan entry for Book.loans; the borrower comes from the loan's own copy."""
    return BookLoanSummary(
        id=loan.id,
        loan_date=loan.loan_date,
        expected_return_date=loan.expected_return_date,
        return_date=loan.return_date,
        status=loan.status,
        user=user_info_from_summary(loan.user),
    )


def user_loan_summary(loan: Loan) -> UserLoanSummary:
    """Loan entry for User.loans; the book comes from the loan's own copy."""
    return UserLoanSummary(
        id=loan.id,
        loan_date=loan.loan_date,
        expected_return_date=loan.expected_return_date,
        return_date=loan.return_date,
        status=loan.status,
        book=book_info_from_summary(loan.book),
    )


def book_review_summary(review: Review) -> BookReviewSummary:
    return BookReviewSummary(
        id=review.id,
        rating=review.rating,
        comment=review.comment,
        review_date=review.created_at,
        user=user_info_from_summary(review.user),
    )


def user_review_summary(review: Review) -> UserReviewSummary:
    return UserReviewSummary(
        id=review.id,
        rating=review.rating,
        comment=review.comment,
        review_date=review.created_at,
        book=book_info_from_summary(review.book),
    )
