import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from library_app.core.security import utcnow
from library_app.models.session import UserSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Server-side record of issued session tokens.

    Signature checks alone cannot end a session early; a token is only
    accepted while its row is here. Methods flush but never commit: the
    calling operation owns the transaction, so e.g. a password change and
    the revocation of that user's sessions commit together.
    """

    @staticmethod
    def create(db: Session, user_id: str, token: str, expires_at: datetime) -> UserSession:
        session_row = UserSession(user_id=user_id, token=token, expires_at=expires_at)
        db.add(session_row)
        db.flush()
        return session_row

    @staticmethod
    def is_active(db: Session, token: str, user_id: str) -> bool:
        """True only if a non-expired row exists for this token and user"""
        row = db.query(UserSession.id).filter(
            UserSession.token == token,
            UserSession.user_id == user_id,
            UserSession.expires_at > utcnow()
        ).first()
        return row is not None

    @staticmethod
    def revoke(db: Session, token: str, user_id: Optional[str] = None) -> int:
        query = db.query(UserSession).filter(UserSession.token == token)
        if user_id is not None:
            query = query.filter(UserSession.user_id == user_id)
        return query.delete(synchronize_session=False)

    @staticmethod
    def revoke_all(db: Session, user_id: str) -> int:
        """End every session of a user (password reset, account deletion)"""
        revoked = db.query(UserSession).filter(
            UserSession.user_id == user_id
        ).delete(synchronize_session=False)
        logger.info(f"Revoked {revoked} session(s) for user {user_id}")
        return revoked

    @staticmethod
    def purge_expired(db: Session) -> int:
        return db.query(UserSession).filter(
            UserSession.expires_at <= utcnow()
        ).delete(synchronize_session=False)


session_registry = SessionRegistry()
