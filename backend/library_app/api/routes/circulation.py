from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import AliasChoices, BaseModel, Field
from library_app.core.database import get_db
from library_app.api.dependencies import get_current_user, require_staff
from library_app.api.schemas import LoanResponse, ReservationResponse
from library_app.core.security import utcnow
from library_app.models.user import User
from library_app.services.circulation_service import circulation_service

router = APIRouter(prefix="/circulation", tags=["circulation"])


class BookRequest(BaseModel):
    book_id: str = Field(validation_alias=AliasChoices("bookId", "book_id"))
    # Staff may act for any patron; students always act for themselves
    patron_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("patronId", "patron_id"))


@router.post("/borrow", response_model=LoanResponse, status_code=status.HTTP_201_CREATED)
def borrow_book(
    body: BookRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Check out a copy for 14 days"""
    patron_id = circulation_service.resolve_patron_id(db, current_user, body.patron_id)
    return circulation_service.borrow(db, body.book_id, patron_id, checked_out_by=current_user.id)


@router.post("/reservations", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def reserve_book(
    body: BookRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Join the reservation queue of a book"""
    patron_id = circulation_service.resolve_patron_id(db, current_user, body.patron_id)
    return circulation_service.reserve(db, body.book_id, patron_id)


@router.post("/{circulation_id}/return", response_model=LoanResponse)
def return_book(
    circulation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return circulation_service.return_loan(db, circulation_id, actor=current_user)


@router.post("/{circulation_id}/renew", response_model=LoanResponse)
def renew_book(
    circulation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return circulation_service.renew(db, circulation_id, actor=current_user)


@router.get("/mine")
def my_loans(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Current and past loans of the caller, newest first"""
    patron = circulation_service.find_patron_for_user(db, current_user)
    loans = circulation_service.list_patron_loans(db, patron.id) if patron else []
    return {"loans": [LoanResponse.model_validate(loan).model_dump(mode="json") for loan in loans]}


@router.get("/overdue")
def overdue_loans(
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    loans = circulation_service.list_overdue(db)
    return {"loans": [LoanResponse.model_validate(loan).model_dump(mode="json") for loan in loans]}


@router.get("/top-readers")
def top_readers(
    year: Optional[int] = Query(default=None, ge=1, le=9998),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Leaderboard of the most active readers; defaults to the current year"""
    year = year or utcnow().year
    readers = circulation_service.top_readers(db, year, month=month, limit=limit)
    return {"year": year, "month": month, "readers": readers}
