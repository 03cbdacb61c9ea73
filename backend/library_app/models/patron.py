from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.sql import func
from library_app.core.database import Base
from library_app.models._ids import new_id


class Patron(Base):
    """
    Borrowing identity. Linked to a User only by the email convention
    <username>@<PATRON_EMAIL_DOMAIN>, so staff can register walk-in patrons
    that have no login at all.
    """
    __tablename__ = "patrons"

    id = Column(String(36), primary_key=True, default=new_id)
    # Human-facing library card number, e.g. P1718000000000
    patron_code = Column(String, unique=True, nullable=False)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=True)
    patron_type = Column(String, nullable=False, default="Student")
    status = Column(String, nullable=False, default="Active")
    max_books = Column(Integer, nullable=False, default=5)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
