from typing import Optional
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from pydantic import AliasChoices, BaseModel, Field
from library_app.core.database import get_db
from library_app.core.exceptions import UnauthorizedError
from library_app.api.dependencies import oauth2_scheme
from library_app.api.schemas import UserResponse
from library_app.services.auth_service import auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


class SignupRequest(BaseModel):
    # Optional so missing fields get the service's 400 message, not a 422
    username: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("fullName", "full_name"))
    role: Optional[str] = None


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class SignupResponse(BaseModel):
    message: str
    user: UserResponse


class LoginResponse(BaseModel):
    message: str
    token: str
    user: UserResponse


class VerifyResponse(BaseModel):
    valid: bool
    user: UserResponse


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
def signup(body: SignupRequest, db: Session = Depends(get_db)):
    """Register a new account; role defaults to student"""
    user = auth_service.signup(
        db,
        username=body.username,
        password=body.password,
        full_name=body.full_name,
        role=body.role,
    )
    return {"message": "User created successfully", "user": user}


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, db: Session = Depends(get_db)):
    """Exchange username and password for a session token"""
    token, user = auth_service.login(db, body.username, body.password)
    return {"message": "Login successful", "token": token, "user": user}


@router.get("/verify", response_model=VerifyResponse)
def verify(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    """Check a bearer token and return the current user"""
    try:
        user = auth_service.verify(db, token)
    except UnauthorizedError as e:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"valid": False, "error": e.message},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"valid": True, "user": user}


@router.post("/logout")
def logout(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)):
    """End the session. Always succeeds, even for unknown or expired tokens."""
    auth_service.logout(db, token)
    return {"message": "Logout successful"}
