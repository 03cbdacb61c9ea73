from typing import List, Optional
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError
from pydantic import AliasChoices, BaseModel, Field
from library_app.core.database import get_db
from library_app.core.exceptions import InternalError, NotFoundError
from library_app.api.dependencies import get_current_user, require_staff
from library_app.api.schemas import BookResponse, ReviewResponse
from library_app.models.catalog import Author, Book
from library_app.models.user import User
from library_app.services.review_service import review_service
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])

BOOK_NOT_FOUND = "Book"


class BookCreate(BaseModel):
    title: str = Field(min_length=1)
    isbn: Optional[str] = None
    author_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("authorName", "author_name"))
    publication_year: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("publicationYear", "publication_year"))
    total_copies: int = Field(
        default=1, ge=1, validation_alias=AliasChoices("totalCopies", "total_copies"))


@router.get("", response_model=List[BookResponse])
def list_books(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the catalog with current availability"""
    return db.query(Book).options(joinedload(Book.author)).order_by(Book.title).all()


@router.get("/{book_id}", response_model=BookResponse)
def get_book(
    book_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    book = db.query(Book).options(joinedload(Book.author)).filter(Book.id == book_id).first()
    if not book:
        raise NotFoundError(BOOK_NOT_FOUND, book_id)
    return book


@router.post("", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
def create_book(
    book_in: BookCreate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Add a title to the catalog; every copy starts on the shelf"""
    try:
        author = None
        if book_in.author_name:
            author = db.query(Author).filter(Author.name == book_in.author_name).first()
            if author is None:
                author = Author(name=book_in.author_name)
                db.add(author)

        book = Book(
            title=book_in.title,
            isbn=book_in.isbn,
            author=author,
            publication_year=book_in.publication_year,
            total_copies=book_in.total_copies,
            available_copies=book_in.total_copies,
        )
        db.add(book)
        db.commit()
        db.refresh(book)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Error creating book {book_in.title!r}")
        raise InternalError("Failed to create book")

    logger.info(f"User {current_user.id} added book {book.id}")
    return book


class ReviewSubmit(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


@router.get("/{book_id}/reviews")
def list_book_reviews(
    book_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Reviews of a book, newest first, with the average rating"""
    reviews = review_service.list_reviews(db, book_id)
    return {
        "reviews": [ReviewResponse.model_validate(r).model_dump(mode="json") for r in reviews],
        **review_service.rating_summary(db, book_id),
    }


@router.post("/{book_id}/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def submit_book_review(
    book_id: str,
    body: ReviewSubmit,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Add the caller's review, or replace it if they already reviewed the book"""
    review, created = review_service.submit_review(
        db, current_user, book_id, body.rating, body.comment)
    if not created:
        response.status_code = status.HTTP_200_OK
    return review
