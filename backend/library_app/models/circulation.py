from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from library_app.core.database import Base
from library_app.core.security import utcnow
from library_app.models._ids import new_id

CHECKED_OUT = "checked_out"
RETURNED = "returned"


class Circulation(Base):
    """
    One loan, from checkout through return.

    "overdue" is never stored: it is a checked_out loan past its due date.
    """
    __tablename__ = "circulation"

    id = Column(String(36), primary_key=True, default=new_id)
    book_id = Column(String(36), ForeignKey("books.id"), nullable=False, index=True)
    patron_id = Column(String(36), ForeignKey("patrons.id"), nullable=False, index=True)
    # User that performed the checkout (the patron themself or a staff member)
    checked_out_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    checkout_date = Column(DateTime, nullable=False, default=utcnow)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default=CHECKED_OUT, index=True)
    renewed_count = Column(Integer, nullable=False, default=0)
    fine_amount = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    book = relationship("Book", backref="circulations")
    patron = relationship("Patron", backref="circulations")

    def is_overdue(self, now=None) -> bool:
        if self.status != CHECKED_OUT:
            return False
        return (now or utcnow()) > self.due_date

    @property
    def display_status(self) -> str:
        return "overdue" if self.is_overdue() else self.status
