from typing import Iterable, Optional

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.logging_config import logger
from app.core.types import Result
from app.models.user import UserRole
from app.modules.auth.principal import Principal


class RoleAuthorizer:
    """Allow a principal whose role is any of the required roles"""

    def authorize(
        self,
        principal: Optional[Principal],
        required_roles: Iterable[UserRole],
        path: Optional[str] = None,
    ) -> Result[Principal]:
        if principal is None:
            return Result.fail(AuthenticationError())

        allowed = set(required_roles)
        if principal.role in allowed:
            return Result.ok(principal)

        logger.log_security_event(
            "role_mismatch",
            path=path,
            principal_id=principal.id,
            principal_role=principal.role.value,
            required_roles=sorted(role.value for role in allowed),
        )
        return Result.fail(AuthorizationError())
