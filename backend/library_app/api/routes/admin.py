from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import AliasChoices, BaseModel, Field
from library_app.core.database import get_db
from library_app.core.exceptions import ValidationError
from library_app.api.dependencies import get_current_user
from library_app.api.schemas import LoanResponse, StudentDetail, StudentSummary, UserResponse
from library_app.models.user import User
from library_app.services.student_admin_service import student_admin_service

router = APIRouter(prefix="/admin", tags=["admin"])


class StudentActionRequest(BaseModel):
    action: Optional[str] = None
    student_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("studentId", "student_id"))
    data: Optional[Dict[str, Any]] = None


def _dump(model_cls, obj) -> Dict[str, Any]:
    return model_cls.model_validate(obj).model_dump(mode="json", by_alias=True)


@router.post("/students")
def manage_students(
    body: StudentActionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Supervisor account administration, dispatched on ``action``:
    getAllStudents (alias listStudents), getStudentDetails, updateStudent,
    resetPassword, deleteStudent.
    """
    # Role first, so non-supervisors get 403 whatever the action
    student_admin_service.require_supervisor(current_user)
    data = body.data or {}

    if body.action in ("getAllStudents", "listStudents"):
        students = student_admin_service.list_students(db, current_user)
        return {"students": [_dump(StudentSummary, s) for s in students]}

    if body.action == "getStudentDetails":
        details = student_admin_service.get_student_details(db, current_user, body.student_id)
        return {
            "student": _dump(StudentDetail, details["student"]),
            "circulation": [_dump(LoanResponse, loan) for loan in details["circulation"]],
            "stats": details["stats"],
        }

    if body.action == "updateStudent":
        student = student_admin_service.update_student(
            db,
            current_user,
            body.student_id,
            username=data.get("username"),
            full_name=data.get("fullName") or data.get("full_name"),
            password=data.get("password"),
        )
        return {"student": _dump(UserResponse, student)}

    if body.action == "resetPassword":
        student_admin_service.reset_password(
            db, current_user, body.student_id, data.get("newPassword"))
        return {"message": "Password reset successfully"}

    if body.action == "deleteStudent":
        student_admin_service.delete_student(db, current_user, body.student_id)
        return {"message": "Student deleted successfully"}

    raise ValidationError("Invalid action", field="action")
