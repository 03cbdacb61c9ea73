from typing import Optional
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from library_app.core.database import get_db
from library_app.core.exceptions import ForbiddenError
from library_app.models.user import User, UserRole
from library_app.services.auth_service import auth_service

# Bearer scheme - extracts the token from "Authorization: Bearer <token>"
# auto_error=False so a missing or malformed header reaches verify and gets
# the same generic 401 as a bad token
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the session token.

    Runs the full verify (signature, expiry, session registry) on every
    protected request; nothing about a previous request is trusted.
    """
    return auth_service.verify(db, token)


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    """Staff and supervisors only"""
    if current_user.role not in (UserRole.STAFF, UserRole.SUPERVISOR):
        raise ForbiddenError("Access denied. Staff role required.")
    return current_user
