"""
Circulation engine: borrow, return, renew and the reservation queue.

Every mutation that touches both ``books.available_copies`` and a
circulation row runs as one transaction, and the copy count is only ever
changed by a conditional UPDATE (``... WHERE available_copies > n``), so
concurrent requests cannot push it out of ``[0, total_copies]``. The
invariant kept after each commit is

    available_copies == total_copies - count(checked_out loans of the book)
"""
import logging
import math
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from library_app.core.config import settings
from library_app.core.exceptions import (
    AlreadyReturnedError,
    BorrowLimitExceededError,
    ConflictError,
    ForbiddenError,
    InternalError,
    LibraryError,
    NoCopiesAvailableError,
    NotFoundError,
    OverdueError,
    RenewalLimitExceededError,
    ValidationError,
)
from library_app.core.security import utcnow
from library_app.models.catalog import Book
from library_app.models.circulation import Circulation, CHECKED_OUT, RETURNED
from library_app.models.patron import Patron
from library_app.models.reservation import (
    Reservation,
    AVAILABLE_FOR_PICKUP,
    EXPIRED,
    FULFILLED,
    PENDING_STATUSES,
    WAITING,
)
from library_app.models.user import User, UserRole
from library_app.services.auth_service import profile_email_for

logger = logging.getLogger(__name__)

STAFF_ROLES = (UserRole.STAFF, UserRole.SUPERVISOR)


def calculate_fine(due_date: datetime, returned_at: datetime) -> Decimal:
    """Fine for a late return: every started day past the due date"""
    if returned_at <= due_date:
        return Decimal("0.00")
    days_late = math.ceil((returned_at - due_date).total_seconds() / 86400)
    return (Decimal(days_late) * Decimal(str(settings.FINE_PER_DAY))).quantize(Decimal("0.01"))


class CirculationService:

    # ------------------------------------------------------------------
    # Patrons
    # ------------------------------------------------------------------

    @staticmethod
    def find_patron_for_user(db: Session, user: User) -> Optional[Patron]:
        return db.query(Patron).filter(
            Patron.email == profile_email_for(user.username)
        ).first()

    @staticmethod
    def get_or_create_patron(db: Session, user: User) -> Patron:
        """Patron record of an authenticated user, created on first use"""
        patron = CirculationService.find_patron_for_user(db, user)
        if patron is not None:
            return patron

        patron = Patron(
            patron_code=f"P{uuid.uuid4().hex[:12].upper()}",
            full_name=user.full_name,
            email=profile_email_for(user.username),
            patron_type="Staff" if user.role in STAFF_ROLES else "Student",
            status="Active",
            max_books=settings.DEFAULT_MAX_BOOKS,
        )
        try:
            db.add(patron)
            db.commit()
            db.refresh(patron)
        except IntegrityError:
            # Another request created it first
            db.rollback()
            patron = CirculationService.find_patron_for_user(db, user)
            if patron is None:
                raise InternalError("Failed to create patron record")
            return patron
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error creating patron for user {user.id}")
            raise InternalError("Failed to create patron record")

        logger.info(f"Created patron {patron.id} for user {user.id}")
        return patron

    @staticmethod
    def resolve_patron_id(db: Session, actor: User, patron_id: Optional[str] = None) -> str:
        """
        Patron an actor may borrow or reserve for.

        Students always act for themselves; staff and supervisors may name
        any patron and default to their own record.
        """
        if actor.role in STAFF_ROLES and patron_id:
            return patron_id

        own = CirculationService.get_or_create_patron(db, actor)
        if patron_id and patron_id != own.id:
            raise ForbiddenError("Students can only borrow for themselves")
        return own.id

    @staticmethod
    def _ensure_can_manage(db: Session, actor: Optional[User], loan: Circulation) -> None:
        if actor is None or actor.role in STAFF_ROLES:
            return
        own = CirculationService.find_patron_for_user(db, actor)
        if own is None or own.id != loan.patron_id:
            raise ForbiddenError("You can only manage your own loans")

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    @staticmethod
    def borrow(
        db: Session,
        book_id: str,
        patron_id: str,
        checked_out_by: Optional[str] = None
    ) -> Circulation:
        """
        Check a copy out to a patron.

        The limit check and the copy claim happen in one transaction. The
        claim is a single conditional UPDATE that only succeeds while more
        copies are on the shelf than are set aside for other patrons'
        pickups; if it touches no row, nothing else is written.
        """
        try:
            book = db.get(Book, book_id)
            if book is None:
                raise NotFoundError("Book", book_id)

            # Write-lock the patron before counting loans: a row lock on
            # PostgreSQL, the database write lock on SQLite. Borrows by the
            # same patron queue here, so each count sees the others' loans.
            locked = db.execute(
                update(Patron)
                .where(Patron.id == patron_id)
                .values(updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if locked.rowcount != 1:
                raise NotFoundError("Patron", patron_id)
            patron = db.query(Patron).filter(Patron.id == patron_id).populate_existing().one()
            if patron.status != "Active":
                raise ValidationError("Patron account is not active", field="patron_id")

            outstanding = db.query(func.count(Circulation.id)).filter(
                Circulation.patron_id == patron_id,
                Circulation.status == CHECKED_OUT
            ).scalar()
            if outstanding >= patron.max_books:
                raise BorrowLimitExceededError()

            held_for_others = select(func.count(Reservation.id)).where(
                Reservation.book_id == book_id,
                Reservation.status == AVAILABLE_FOR_PICKUP,
                Reservation.patron_id != patron_id
            ).scalar_subquery()
            claimed = db.execute(
                update(Book)
                .where(Book.id == book_id, Book.available_copies > held_for_others)
                .values(available_copies=Book.available_copies - 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise NoCopiesAvailableError()

            now = utcnow()
            loan = Circulation(
                book_id=book_id,
                patron_id=patron_id,
                checked_out_by=checked_out_by,
                checkout_date=now,
                due_date=now + timedelta(days=settings.LOAN_PERIOD_DAYS),
                status=CHECKED_OUT,
                renewed_count=0,
                fine_amount=Decimal("0.00"),
            )
            db.add(loan)

            # A patron collecting their own reservation closes it
            db.query(Reservation).filter(
                Reservation.book_id == book_id,
                Reservation.patron_id == patron_id,
                Reservation.status.in_(PENDING_STATUSES)
            ).update({Reservation.status: FULFILLED}, synchronize_session=False)

            db.commit()
        except LibraryError as e:
            db.rollback()
            logger.info(f"Borrow rejected for book {book_id} patron {patron_id}: {e.code}")
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error borrowing book {book_id} for patron {patron_id}")
            raise InternalError("Failed to borrow book")

        db.refresh(loan)
        logger.info(f"Loan {loan.id}: book {book_id} checked out to patron {patron_id}")
        return loan

    @staticmethod
    def return_loan(db: Session, circulation_id: str, actor: Optional[User] = None) -> Circulation:
        """
        Close a loan and put the copy back.

        The status flip is conditional on the loan still being checked out,
        so a second (or concurrent) return is rejected instead of counting
        the copy twice.
        """
        try:
            loan = db.get(Circulation, circulation_id)
            if loan is None:
                raise NotFoundError("Loan", circulation_id)
            CirculationService._ensure_can_manage(db, actor, loan)
            if loan.status != CHECKED_OUT:
                raise AlreadyReturnedError()

            now = utcnow()
            closed = db.execute(
                update(Circulation)
                .where(Circulation.id == circulation_id, Circulation.status == CHECKED_OUT)
                .values(
                    status=RETURNED,
                    return_date=now,
                    fine_amount=calculate_fine(loan.due_date, now),
                )
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount != 1:
                raise AlreadyReturnedError()

            restored = db.execute(
                update(Book)
                .where(Book.id == loan.book_id, Book.available_copies < Book.total_copies)
                .values(available_copies=Book.available_copies + 1)
                .execution_options(synchronize_session=False)
            )
            if restored.rowcount != 1:
                logger.error(
                    f"Book {loan.book_id} already at total_copies while returning loan {circulation_id}")
            else:
                CirculationService._offer_next_reservation(db, loan.book_id, now)

            db.commit()
        except LibraryError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error returning loan {circulation_id}")
            raise InternalError("Failed to return book")

        db.refresh(loan)
        logger.info(f"Loan {circulation_id} returned")
        return loan

    @staticmethod
    def renew(db: Session, circulation_id: str, actor: Optional[User] = None) -> Circulation:
        """Extend the due date by one loan period, up to RENEWAL_LIMIT times"""
        try:
            loan = db.get(Circulation, circulation_id)
            if loan is None:
                raise NotFoundError("Loan", circulation_id)
            CirculationService._ensure_can_manage(db, actor, loan)
            if loan.status != CHECKED_OUT:
                raise AlreadyReturnedError()
            if loan.renewed_count >= settings.RENEWAL_LIMIT:
                raise RenewalLimitExceededError()
            if loan.is_overdue(utcnow()):
                raise OverdueError()

            # Optimistic: only applies if nobody renewed in between
            renewed = db.execute(
                update(Circulation)
                .where(
                    Circulation.id == circulation_id,
                    Circulation.status == CHECKED_OUT,
                    Circulation.renewed_count == loan.renewed_count
                )
                .values(
                    due_date=loan.due_date + timedelta(days=settings.LOAN_PERIOD_DAYS),
                    renewed_count=loan.renewed_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if renewed.rowcount != 1:
                raise RenewalLimitExceededError()
            db.commit()
        except LibraryError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error renewing loan {circulation_id}")
            raise InternalError("Failed to renew book")

        db.refresh(loan)
        logger.info(f"Loan {circulation_id} renewed, due {loan.due_date.isoformat()}")
        return loan

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    @staticmethod
    def reserve(db: Session, book_id: str, patron_id: str) -> Reservation:
        """Join the back of a book's reservation queue"""
        try:
            if db.get(Book, book_id) is None:
                raise NotFoundError("Book", book_id)
            if db.get(Patron, patron_id) is None:
                raise NotFoundError("Patron", patron_id)

            existing = db.query(Reservation.id).filter(
                Reservation.book_id == book_id,
                Reservation.patron_id == patron_id,
                Reservation.status.in_(PENDING_STATUSES)
            ).first()
            if existing:
                raise ConflictError("You already have an active reservation for this book")

            last_priority = db.query(func.max(Reservation.priority)).filter(
                Reservation.book_id == book_id,
                Reservation.status.in_(PENDING_STATUSES)
            ).scalar()
            reservation = Reservation(
                book_id=book_id,
                patron_id=patron_id,
                priority=(last_priority or 0) + 1,
                status=WAITING,
                reserved_date=utcnow(),
            )
            db.add(reservation)
            db.commit()
        except LibraryError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error reserving book {book_id} for patron {patron_id}")
            raise InternalError("Failed to reserve book")

        db.refresh(reservation)
        logger.info(f"Reservation {reservation.id}: book {book_id} queued at {reservation.priority}")
        return reservation

    @staticmethod
    def _offer_next_reservation(db: Session, book_id: str, now: datetime) -> Optional[Reservation]:
        """Set the freed copy aside for the front of the queue (caller commits)"""
        candidate = db.query(Reservation).filter(
            Reservation.book_id == book_id,
            Reservation.status == WAITING
        ).order_by(
            Reservation.priority, Reservation.reserved_date
        ).with_for_update().first()
        if candidate is None:
            return None

        candidate.status = AVAILABLE_FOR_PICKUP
        candidate.expiry_date = now + timedelta(days=settings.RESERVATION_PICKUP_DAYS)
        logger.info(f"Reservation {candidate.id} is available for pickup until {candidate.expiry_date}")
        return candidate

    @staticmethod
    def expire_pickups(db: Session) -> int:
        """Release copies whose pickup window has passed to the next in line"""
        now = utcnow()
        try:
            stale = db.query(Reservation).filter(
                Reservation.status == AVAILABLE_FOR_PICKUP,
                Reservation.expiry_date < now
            ).all()
            for reservation in stale:
                reservation.status = EXPIRED
                db.flush()
                CirculationService._offer_next_reservation(db, reservation.book_id, now)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error expiring pickup reservations")
            raise InternalError("Failed to expire reservations")
        return len(stale)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def list_patron_loans(db: Session, patron_id: str) -> List[Circulation]:
        return db.query(Circulation).options(
            joinedload(Circulation.book).joinedload(Book.author)
        ).filter(
            Circulation.patron_id == patron_id
        ).order_by(Circulation.checkout_date.desc()).all()

    @staticmethod
    def list_overdue(db: Session) -> List[Circulation]:
        return db.query(Circulation).options(
            joinedload(Circulation.book).joinedload(Book.author),
            joinedload(Circulation.patron)
        ).filter(
            Circulation.status == CHECKED_OUT,
            Circulation.due_date < utcnow()
        ).order_by(Circulation.due_date).all()

    @staticmethod
    def top_readers(
        db: Session,
        year: int,
        month: Optional[int] = None,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Patrons ranked by books checked out in a calendar year, or in one
        month of it. Returns are counted for the loans of that period.
        """
        if month is not None and not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12", field="month")
        if not 1 <= year <= 9998:
            raise ValidationError("Invalid year", field="year")
        if limit < 1:
            raise ValidationError("Limit must be positive", field="limit")

        if month is None:
            start, end = datetime(year, 1, 1), datetime(year + 1, 1, 1)
        elif month == 12:
            start, end = datetime(year, 12, 1), datetime(year + 1, 1, 1)
        else:
            start, end = datetime(year, month, 1), datetime(year, month + 1, 1)

        borrowed = func.count(Circulation.id).label("books_borrowed")
        returned = func.count(Circulation.return_date).label("books_returned")
        rows = db.query(
            Patron.id, Patron.full_name, Patron.email, borrowed, returned
        ).join(
            Circulation, Circulation.patron_id == Patron.id
        ).filter(
            Circulation.checkout_date >= start,
            Circulation.checkout_date < end
        ).group_by(
            Patron.id, Patron.full_name, Patron.email
        ).order_by(
            borrowed.desc(), Patron.full_name
        ).limit(limit).all()

        return [
            {
                "rank": rank,
                "patron_id": row.id,
                "full_name": row.full_name,
                "email": row.email,
                "books_borrowed": row.books_borrowed,
                "books_returned": row.books_returned,
            }
            for rank, row in enumerate(rows, start=1)
        ]

    @staticmethod
    def reading_stats(loans: List[Circulation]) -> List[Dict[str, Any]]:
        """Books borrowed and returned per calendar month, newest first"""
        buckets: Dict[tuple, Dict[str, int]] = {}
        for loan in loans:
            key = (loan.checkout_date.year, loan.checkout_date.month)
            buckets.setdefault(key, {"books_borrowed": 0, "books_returned": 0})
            buckets[key]["books_borrowed"] += 1
            if loan.return_date is not None:
                key = (loan.return_date.year, loan.return_date.month)
                buckets.setdefault(key, {"books_borrowed": 0, "books_returned": 0})
                buckets[key]["books_returned"] += 1

        return [
            {"year": year, "month": month, **counts}
            for (year, month), counts in sorted(buckets.items(), reverse=True)
        ]


circulation_service = CirculationService()
