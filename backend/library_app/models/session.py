from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, backref
from library_app.core.database import Base
from library_app.models._ids import new_id


class UserSession(Base):
    """
    One issued session token.

    A token is only honoured while its row exists and expires_at is in the
    future, which is what lets logout and password resets end a session
    that still carries a valid signature.
    """
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"),
                     nullable=False, index=True)
    token = Column(Text, unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # The database cascade removes sessions with their user
    user = relationship("User", backref=backref("sessions", passive_deletes=True))
