"""
Domain exceptions for the library backend.

Services raise these instead of HTTPException so the same rules apply
whether an operation is called from a route, the scheduler or a test.
The API layer turns them into JSON responses (see ``library_app.main``).

Usage:
    from library_app.core.exceptions import NotFoundError

    if book is None:
        raise NotFoundError("Book", book_id)
"""

from typing import Any, Dict, Optional


class LibraryError(Exception):
    """Base exception for all library errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


# ============================================
# Client errors
# ============================================

class ValidationError(LibraryError):
    """Malformed or missing input"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class UnauthorizedError(LibraryError):
    """Bad credentials or invalid session. Message stays generic."""

    status_code = 401

    def __init__(self, message: str = "Invalid or expired session"):
        super().__init__(message, code="UNAUTHORIZED")


class ForbiddenError(LibraryError):
    """Authenticated, but the role does not allow the action"""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, code="FORBIDDEN")


class NotFoundError(LibraryError):
    status_code = 404

    def __init__(self, resource_type: str, resource_id: Any):
        super().__init__(
            f"{resource_type} not found",
            code=f"{resource_type.upper()}_NOT_FOUND",
            details={"resource_id": str(resource_id)}
        )


class ConflictError(LibraryError):
    """Duplicate username, duplicate reservation"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, code="CONFLICT")


class InternalError(LibraryError):
    """Store unreachable or unexpected fault. Never carries internals."""

    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, code="INTERNAL_ERROR")


# ============================================
# Circulation errors (409-type)
# ============================================

class CirculationError(LibraryError):
    status_code = 409


class CannotBorrowError(CirculationError):
    """
    Borrow rejected. Subclasses keep the reason in ``code`` while the
    message stays the single generic one patrons see.
    """

    message_text = "Cannot borrow this book. Check availability or your borrowing limit."

    def __init__(self, code: str = "CANNOT_BORROW"):
        super().__init__(self.message_text, code=code)


class BorrowLimitExceededError(CannotBorrowError):
    def __init__(self):
        super().__init__(code="BORROW_LIMIT_EXCEEDED")


class NoCopiesAvailableError(CannotBorrowError):
    def __init__(self):
        super().__init__(code="NO_COPIES_AVAILABLE")


class AlreadyReturnedError(CirculationError):
    def __init__(self):
        super().__init__("This loan has already been returned", code="ALREADY_RETURNED")


class RenewalLimitExceededError(CirculationError):
    def __init__(self):
        super().__init__("Renewal limit reached for this loan", code="RENEWAL_LIMIT_EXCEEDED")


class OverdueError(CirculationError):
    def __init__(self):
        super().__init__("Overdue loans cannot be renewed", code="OVERDUE")
