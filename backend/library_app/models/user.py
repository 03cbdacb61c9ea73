import enum
from sqlalchemy import Column, String, DateTime, Enum
from sqlalchemy.sql import func
from library_app.core.database import Base
from library_app.models._ids import new_id


class UserRole(str, enum.Enum):
    STUDENT = "student"
    STAFF = "staff"
    SUPERVISOR = "supervisor"


# Stored by value ("student") so the column reads the same from SQL
user_role_type = Enum(
    UserRole, name="user_role",
    values_callable=lambda roles: [r.value for r in roles],
)


class User(Base):
    """
    User model representing application users.

    Stores authentication credentials and the role that drives authorization.
    Passwords are stored as bcrypt hashes (never plaintext).
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    # Username is unique and indexed for fast lookups during login
    username = Column(String(20), unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    role = Column(
        user_role_type,
        nullable=False,
        default=UserRole.STUDENT,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
