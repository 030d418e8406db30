# Pydantic schemas
from app.schemas.auth import (
    UserRegister,
    UserLogin,
    ChangePasswordRequest,
    UserResponse,
    ErrorDetail,
    ApiResponse,
    AuthStatusResponse,
    PasswordChangeResponse,
)
from app.schemas.files import (
    MaterialResponse,
    AssignmentResponse,
    FileUploadResponse,
)
