from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from library_app.core.database import Base
from library_app.core.security import utcnow
from library_app.models._ids import new_id

WAITING = "waiting"
AVAILABLE_FOR_PICKUP = "available_for_pickup"
EXPIRED = "expired"
FULFILLED = "fulfilled"

# Reservations still holding a place in the queue
PENDING_STATUSES = (WAITING, AVAILABLE_FOR_PICKUP)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=new_id)
    book_id = Column(String(36), ForeignKey("books.id"), nullable=False, index=True)
    patron_id = Column(String(36), ForeignKey("patrons.id"), nullable=False, index=True)
    # Queue position for the book, 1 is served first
    priority = Column(Integer, nullable=False)
    status = Column(String(30), nullable=False, default=WAITING, index=True)
    reserved_date = Column(DateTime, nullable=False, default=utcnow)
    # Pickup deadline once a copy has been set aside
    expiry_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    book = relationship("Book", backref="reservations")
    patron = relationship("Patron", backref="reservations")
