"""
Book reviews: one rating (1-5) and optional comment per reader and book.

Submitting again replaces the reader's earlier review instead of adding a
second one.
"""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from library_app.core.exceptions import (
    InternalError,
    LibraryError,
    NotFoundError,
    ValidationError,
)
from library_app.models.catalog import Book
from library_app.models.review import Review
from library_app.models.user import User

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def validate_rating(rating) -> None:
    # bool is an int subclass; True must not pass as a rating of 1
    is_whole = isinstance(rating, int) and not isinstance(rating, bool)
    if not is_whole or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating must be a whole number from {MIN_RATING} to {MAX_RATING}",
            field="rating"
        )


class ReviewService:
    @staticmethod
    def _require_book(db: Session, book_id: str) -> None:
        if db.get(Book, book_id) is None:
            raise NotFoundError("Book", book_id)

    @staticmethod
    def submit_review(
        db: Session,
        user: User,
        book_id: str,
        rating: int,
        comment: Optional[str] = None
    ) -> tuple[Review, bool]:
        """Add or replace the user's review of a book. Returns (review, created)."""
        validate_rating(rating)
        comment = comment.strip() if comment else None
        comment = comment or None

        try:
            ReviewService._require_book(db, book_id)
            review = db.query(Review).filter(
                Review.book_id == book_id,
                Review.user_id == user.id
            ).first()
            created = review is None
            if created:
                review = Review(book_id=book_id, user_id=user.id)
                db.add(review)
            review.rating = rating
            review.comment = comment
            db.commit()
        except LibraryError:
            db.rollback()
            raise
        except IntegrityError:
            # A parallel first submission won the unique constraint; edit that one
            db.rollback()
            review = db.query(Review).filter(
                Review.book_id == book_id,
                Review.user_id == user.id
            ).first()
            if review is None:
                raise InternalError("Failed to save review")
            review.rating = rating
            review.comment = comment
            created = False
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error saving review of book {book_id} by user {user.id}")
            raise InternalError("Failed to save review")

        db.refresh(review)
        logger.info(f"User {user.id} {'added' if created else 'updated'} review of book {book_id}")
        return review, created

    @staticmethod
    def list_reviews(db: Session, book_id: str) -> List[Review]:
        ReviewService._require_book(db, book_id)
        return db.query(Review).options(joinedload(Review.user)).filter(
            Review.book_id == book_id
        ).order_by(Review.created_at.desc(), Review.id).all()

    @staticmethod
    def rating_summary(db: Session, book_id: str) -> Dict[str, Any]:
        """Average rating (None without reviews) and number of reviews"""
        average, count = db.query(
            func.avg(Review.rating), func.count(Review.id)
        ).filter(Review.book_id == book_id).one()
        return {
            "average_rating": round(float(average), 2) if average is not None else None,
            "review_count": count,
        }


review_service = ReviewService()
