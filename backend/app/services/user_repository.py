"""
User Repository - credential lookups and writes for the auth flows.

The rest of the security core only sees CredentialRecord values; the ORM
model stays behind this module.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.types import utc_now
from app.models.user import User, UserRole


@dataclass(frozen=True)
class CredentialRecord:
    user_id: str
    email: str
    role: UserRole
    is_active: bool
    password_hash: str = field(repr=False)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """Lookups by email/id and the few writes the auth flows need"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _to_record(user: User) -> CredentialRecord:
        return CredentialRecord(
            user_id=str(user.id),
            email=user.email,
            role=user.role,
            is_active=bool(user.is_active),
            password_hash=user.hashed_password,
        )

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == str(user_id)))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def get_credentials(self, email: str) -> Optional[CredentialRecord]:
        user = await self.get_user_by_email(email)
        return self._to_record(user) if user else None

    async def get_credentials_by_id(self, user_id: str) -> Optional[CredentialRecord]:
        user = await self.get_user(user_id)
        return self._to_record(user) if user else None

    async def email_exists(self, email: str) -> bool:
        return await self.get_user_by_email(email) is not None

    async def create_user(
        self,
        email: str,
        password_hash: str,
        full_name: str,
        specialty: Optional[str] = None,
        role: UserRole = UserRole.STUDENT,
    ) -> User:
        user = User(
            email=normalize_email(email),
            hashed_password=password_hash,
            full_name=full_name.strip(),
            specialty=specialty.strip() if specialty else None,
            role=role,
            is_active=True,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def record_login(self, user_id: str) -> None:
        user = await self.get_user(user_id)
        if user:
            user.last_login = utc_now()
            await self.db.commit()

    async def update_password(self, user_id: str, password_hash: str) -> None:
        user = await self.get_user(user_id)
        if user:
            user.hashed_password = password_hash
            user.password_changed_at = utc_now()
            await self.db.commit()
