# API endpoints
from . import auth, materials, assignments, health

__all__ = ["auth", "materials", "assignments", "health"]
