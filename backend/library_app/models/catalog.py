from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from library_app.core.database import Base
from library_app.models._ids import new_id


class Author(Base):
    __tablename__ = "authors"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Book(Base):
    """
    Catalog entry with its copy counts.

    available_copies is only ever changed by the circulation service with
    conditional UPDATEs; the check constraint is the last line against a
    count going out of range.
    """
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("available_copies >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="ck_books_available_le_total"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    isbn = Column(String, nullable=True)
    # Optional relation - books without a known author keep author_id NULL
    author_id = Column(String(36), ForeignKey("authors.id", ondelete="SET NULL"), nullable=True)
    publication_year = Column(Integer, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    author = relationship("Author", backref="books")
