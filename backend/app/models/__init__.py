# Re-export all models for convenient imports
from app.models.user import User, UserRole
from app.models.material import Material
from app.models.assignment import Assignment

__all__ = [
    "User",
    "UserRole",
    "Material",
    "Assignment",
]
