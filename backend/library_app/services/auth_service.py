"""
Username/password authentication with revocable sessions.

A session moves Anonymous -> Authenticated (login) -> Revoked/Expired
(logout, password reset, TTL). ``verify`` is two-phase: the token's
signature and expiry are checked first, then the session registry, so a
revoked token is refused even while its signature is still good.
"""
import logging
import re
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from library_app.core.config import settings
from library_app.core.exceptions import (
    ConflictError,
    InternalError,
    UnauthorizedError,
    ValidationError,
)
from library_app.core.security import (
    decode_access_token,
    dummy_verify,
    get_password_hash,
    issue_session_token,
    verify_password,
)
from library_app.models.profile import Profile
from library_app.models.user import User, UserRole
from library_app.services.session_registry import session_registry

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"[A-Za-z0-9_]{3,20}")
MIN_PASSWORD_LENGTH = 6

INVALID_CREDENTIALS_MESSAGE = "Invalid username or password"
INVALID_SESSION_MESSAGE = "Invalid or expired session"


def validate_username(username: str) -> None:
    if not isinstance(username, str) or not USERNAME_PATTERN.fullmatch(username):
        raise ValidationError(
            "Username must be 3-20 characters (letters, numbers, underscore only)",
            field="username"
        )


def validate_password(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            field="password"
        )


def profile_email_for(username: str) -> str:
    return f"{username}@{settings.PATRON_EMAIL_DOMAIN}"


class AuthService:
    @staticmethod
    def signup(
        db: Session,
        username: str,
        password: str,
        full_name: str,
        role: Optional[str] = None
    ) -> User:
        """Create a user account. The returned user never leaves with its hash."""
        if not username or not password or not full_name:
            raise ValidationError("Username, password, and full name are required")
        validate_username(username)
        validate_password(password)
        try:
            user_role = UserRole(role or UserRole.STUDENT.value)
        except ValueError:
            raise ValidationError("Role must be one of student, staff, supervisor", field="role")

        logger.info(f"Signup request for username: {username}")
        try:
            # Explicit check gives a clear message; the unique constraint
            # below still catches two signups racing for the same name
            existing = db.query(User.id).filter(User.username == username).first()
            if existing:
                raise ConflictError("Username already exists")

            user = User(
                username=username,
                password_hash=get_password_hash(password),
                full_name=full_name,
                role=user_role,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
        except IntegrityError:
            db.rollback()
            raise ConflictError("Username already exists")
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error creating user {username}")
            raise InternalError("Failed to create user")

        AuthService._create_profile(db, user)
        logger.info(f"User created successfully: {user.id}")
        return user

    @staticmethod
    def _create_profile(db: Session, user: User) -> None:
        """Best-effort profile row; signup has already succeeded"""
        try:
            db.add(Profile(
                id=user.id,
                email=profile_email_for(user.username),
                full_name=user.full_name,
                role=user.role,
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Profile creation failed but user was created: {user.id}")

    @staticmethod
    def login(db: Session, username: str, password: str) -> tuple[str, User]:
        """
        Check credentials and open a session.

        Unknown usernames and wrong passwords fail the same way, with the
        same message and comparable latency.
        """
        if not username or not password:
            raise ValidationError("Username and password are required")

        try:
            user = db.query(User).filter(User.username == username).first()
        except SQLAlchemyError:
            logger.exception(f"Error loading user during login: {username}")
            raise InternalError("Internal server error during login")

        if user is None:
            dummy_verify()
            logger.info(f"Failed login attempt for username: {username}")
            raise UnauthorizedError(INVALID_CREDENTIALS_MESSAGE)
        if not verify_password(password, user.password_hash):
            logger.info(f"Failed login attempt for username: {username}")
            raise UnauthorizedError(INVALID_CREDENTIALS_MESSAGE)

        token, expires_at = issue_session_token(user)
        try:
            session_registry.create(db, user.id, token, expires_at)
            db.commit()
            db.refresh(user)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error storing session for user {user.id}")
            raise InternalError("Internal server error during login")

        logger.info(f"User logged in successfully: {user.id}")
        return token, user

    @staticmethod
    def verify(db: Session, token: Optional[str]) -> User:
        """
        Resolve a bearer token to the current user.

        The user is read fresh from the store rather than from the token's
        claims, so a role change applies on the very next request.
        """
        if not token:
            raise UnauthorizedError(INVALID_SESSION_MESSAGE)

        payload = decode_access_token(token)
        user_id = payload.get("sub") if payload else None
        if not isinstance(user_id, str) or not user_id:
            raise UnauthorizedError(INVALID_SESSION_MESSAGE)

        try:
            if not session_registry.is_active(db, token, user_id):
                raise UnauthorizedError(INVALID_SESSION_MESSAGE)
            user = db.get(User, user_id)
        except SQLAlchemyError:
            logger.exception(f"Error verifying session for user {user_id}")
            raise InternalError()

        if user is None:
            raise UnauthorizedError(INVALID_SESSION_MESSAGE)
        return user

    @staticmethod
    def logout(db: Session, token: Optional[str]) -> None:
        """End a session. Idempotent, and never fails towards the client."""
        if not token:
            return

        # Expired or forged tokens still get their row removed, if any
        payload = decode_access_token(token)
        user_id = payload.get("sub") if payload else None
        try:
            revoked = session_registry.revoke(db, token, user_id)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error revoking session during logout for user {user_id}")
            return

        if revoked:
            logger.info(f"User logged out successfully: {user_id}")


auth_service = AuthService()
