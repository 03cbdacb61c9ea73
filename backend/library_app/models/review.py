from sqlalchemy import (
    Column, String, Integer, Text, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, backref
from library_app.core.database import Base
from library_app.models._ids import new_id


class Review(Base):
    """A reader's rating of a book. One per user and book, edited in place."""
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("book_id", "user_id", name="uq_reviews_book_user"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    book_id = Column(String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    book = relationship("Book", backref=backref("reviews", passive_deletes=True))
    user = relationship("User", backref=backref("reviews", passive_deletes=True))

    @property
    def reviewer_name(self):
        return self.user.full_name if self.user is not None else None
