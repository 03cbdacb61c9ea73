from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from library_app.core.database import Base
from library_app.models.user import user_role_type


class Profile(Base):
    """
    Denormalised projection of a user for the catalog and patron screens.

    Written best-effort on signup; the users table stays authoritative.
    """
    __tablename__ = "profiles"

    id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    role = Column(user_role_type, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
