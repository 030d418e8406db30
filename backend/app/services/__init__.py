from app.services.user_repository import CredentialRecord, UserRepository, normalize_email

__all__ = [
    "CredentialRecord",
    "UserRepository",
    "normalize_email",
]
