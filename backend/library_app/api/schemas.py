"""
Response models shared by several routers.

Users are exposed in the camelCase shape the dashboard expects
(``fullName``); catalog and circulation rows keep their column names.
Fields read from ORM objects accept both spellings so FastAPI can
re-validate an already serialized payload.
"""
from datetime import datetime
from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from library_app.models.user import UserRole


class UserResponse(BaseModel):
    id: str
    username: str
    full_name: str = Field(
        validation_alias=AliasChoices("fullName", "full_name"),
        serialization_alias="fullName",
    )
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


class StudentSummary(UserResponse):
    created_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )


class StudentDetail(StudentSummary):
    # Supervisor audit view only - the digest, never a plaintext
    password_hash: str = Field(
        validation_alias=AliasChoices("passwordHash", "password_hash"),
        serialization_alias="passwordHash",
    )


class AuthorResponse(BaseModel):
    id: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class BookResponse(BaseModel):
    id: str
    title: str
    isbn: Optional[str] = None
    author: Optional[AuthorResponse] = None
    publication_year: Optional[int] = None
    total_copies: int
    available_copies: int

    model_config = ConfigDict(from_attributes=True)


class LoanResponse(BaseModel):
    id: str
    book_id: str
    patron_id: str
    checked_out_by: Optional[str] = None
    checkout_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: str
    # checked_out, returned or the derived "overdue"
    display_status: str
    renewed_count: int
    fine_amount: float
    book: Optional[BookResponse] = None

    model_config = ConfigDict(from_attributes=True)


class ReservationResponse(BaseModel):
    id: str
    book_id: str
    patron_id: str
    priority: int
    status: str
    reserved_date: datetime
    expiry_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewResponse(BaseModel):
    id: str
    book_id: str
    user_id: str
    # Display name of the author of the review
    reviewer_name: Optional[str] = None
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
