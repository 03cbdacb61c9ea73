"""
Supervisor-only management of student accounts.

Each operation receives the already-verified acting user and checks the
role itself, so the rule holds no matter which endpoint calls it.
"""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from library_app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InternalError,
    LibraryError,
    NotFoundError,
    ValidationError,
)
from library_app.core.security import get_password_hash
from library_app.models.patron import Patron
from library_app.models.profile import Profile
from library_app.models.user import User, UserRole
from library_app.services.auth_service import (
    profile_email_for,
    validate_password,
    validate_username,
)
from library_app.services.circulation_service import circulation_service
from library_app.services.session_registry import session_registry

logger = logging.getLogger(__name__)


class StudentAdminService:
    @staticmethod
    def require_supervisor(actor: Optional[User]) -> None:
        if actor is None or actor.role != UserRole.SUPERVISOR:
            raise ForbiddenError("Access denied. Supervisor role required.")

    @staticmethod
    def _get_student(db: Session, student_id: Optional[str]) -> User:
        if not student_id:
            raise ValidationError("studentId is required", field="studentId")
        student = db.query(User).filter(
            User.id == student_id,
            User.role == UserRole.STUDENT
        ).first()
        if student is None:
            raise NotFoundError("Student", student_id)
        return student

    @staticmethod
    def list_students(db: Session, actor: User) -> List[User]:
        StudentAdminService.require_supervisor(actor)
        return db.query(User).filter(
            User.role == UserRole.STUDENT
        ).order_by(User.created_at.desc()).all()

    @staticmethod
    def get_student_details(db: Session, actor: User, student_id: str) -> Dict[str, Any]:
        """
        Student record with circulation history and monthly reading stats.

        The password hash is included on purpose: this is the one endpoint
        where a supervisor may audit it. Plaintext is never available.
        """
        StudentAdminService.require_supervisor(actor)
        student = StudentAdminService._get_student(db, student_id)

        patron = circulation_service.find_patron_for_user(db, student)
        loans = circulation_service.list_patron_loans(db, patron.id) if patron else []
        return {
            "student": student,
            "circulation": loans,
            "stats": circulation_service.reading_stats(loans),
        }

    @staticmethod
    def update_student(
        db: Session,
        actor: User,
        student_id: str,
        username: Optional[str] = None,
        full_name: Optional[str] = None,
        password: Optional[str] = None
    ) -> User:
        """Partial update; only the provided fields change"""
        StudentAdminService.require_supervisor(actor)
        if not username and not full_name and not password:
            raise ValidationError("Nothing to update")

        try:
            student = StudentAdminService._get_student(db, student_id)
            old_email = profile_email_for(student.username)

            if username:
                validate_username(username)
                taken = db.query(User.id).filter(
                    User.username == username,
                    User.id != student_id
                ).first()
                if taken:
                    raise ConflictError("Username already exists")
                student.username = username
            if full_name:
                student.full_name = full_name
            if password:
                validate_password(password)
                student.password_hash = get_password_hash(password)

            if username or full_name:
                profile_changes = {}
                if username:
                    profile_changes[Profile.email] = profile_email_for(username)
                if full_name:
                    profile_changes[Profile.full_name] = full_name
                db.query(Profile).filter(Profile.id == student_id).update(
                    profile_changes, synchronize_session=False)

                # Keep the patron linked through the email convention
                patron = db.query(Patron).filter(Patron.email == old_email).first()
                if patron is not None:
                    if username:
                        patron.email = profile_email_for(username)
                    if full_name:
                        patron.full_name = full_name

            db.commit()
        except LibraryError:
            db.rollback()
            raise
        except IntegrityError:
            db.rollback()
            raise ConflictError("Username already exists")
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error updating student {student_id}")
            raise InternalError("Failed to update student")

        db.refresh(student)
        logger.info(f"Supervisor {actor.id} updated student {student_id}")
        return student

    @staticmethod
    def reset_password(db: Session, actor: User, student_id: str, new_password: Optional[str]) -> None:
        """
        Set a new password and end every session of the student.

        Both changes commit together; a stolen session must not outlive
        the reset.
        """
        StudentAdminService.require_supervisor(actor)
        if not new_password:
            raise ValidationError("New password is required", field="newPassword")
        validate_password(new_password)

        try:
            student = StudentAdminService._get_student(db, student_id)
            student.password_hash = get_password_hash(new_password)
            db.flush()
            session_registry.revoke_all(db, student.id)
            db.commit()
        except LibraryError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error resetting password for student {student_id}")
            raise InternalError("Failed to reset password")

        logger.info(f"Supervisor {actor.id} reset password for student {student_id}")

    @staticmethod
    def delete_student(db: Session, actor: User, student_id: str) -> None:
        """Revoke all sessions and delete the account, as one transaction"""
        StudentAdminService.require_supervisor(actor)
        try:
            student = StudentAdminService._get_student(db, student_id)
            session_registry.revoke_all(db, student.id)
            db.delete(student)
            db.commit()
        except LibraryError:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error deleting student {student_id}")
            raise InternalError("Failed to delete student")

        logger.info(f"Supervisor {actor.id} deleted student {student_id}")


student_admin_service = StudentAdminService()
