from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import datetime

from app.models.user import UserRole


class UserRegister(BaseModel):
    email: EmailStr
    # Strength rules live in the password policy so every failure uses its wording
    password: str = Field(..., max_length=1024)
    full_name: str = Field(..., min_length=1, max_length=255)
    specialty: Optional[str] = Field(None, max_length=255)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=1024)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., max_length=1024)
    new_password: str = Field(..., max_length=1024)


class UserResponse(BaseModel):
    """Public view of an account. Has no password field by construction"""
    id: str
    email: str
    full_name: str
    specialty: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True


class ErrorDetail(BaseModel):
    field: Optional[str] = None
    message: str


class ApiResponse(BaseModel):
    """Envelope for every auth endpoint"""
    success: bool
    message: Optional[str] = None
    token: Optional[str] = None
    user: Optional[UserResponse] = None
    errors: Optional[List[ErrorDetail]] = None


class AuthStatusResponse(ApiResponse):
    authenticated: bool = False


class PasswordChangeResponse(ApiResponse):
    password_strength: Optional[int] = None
    suggestions: Optional[List[str]] = None


class CsrfTokenResponse(ApiResponse):
    csrf_token: Optional[str] = None
