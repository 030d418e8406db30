"""
Unit Tests for the Role Authorizer
"""
import pytest

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.models.user import UserRole
from app.modules.auth.authorization import RoleAuthorizer
from app.modules.auth.principal import Principal


def principal(role: UserRole) -> Principal:
    return Principal(id="user-1", email="someone@college.edu", role=role)


class TestRoleAuthorizer:
    """Test role checks"""

    def test_no_principal_is_unauthenticated(self):
        result = RoleAuthorizer().authorize(None, [UserRole.STUDENT])

        assert isinstance(result.error, AuthenticationError)
        assert result.error.status_code == 401

    @pytest.mark.parametrize("role", list(UserRole))
    def test_role_in_set_allowed(self, role):
        result = RoleAuthorizer().authorize(principal(role), [UserRole.STUDENT, UserRole.TEACHER, UserRole.ADMIN])

        assert result.is_ok
        assert result.value.role is role

    def test_role_outside_set_forbidden(self):
        result = RoleAuthorizer().authorize(principal(UserRole.STUDENT), [UserRole.TEACHER, UserRole.ADMIN])

        assert isinstance(result.error, AuthorizationError)
        assert result.error.status_code == 403

    def test_empty_role_set_denies_everyone(self):
        result = RoleAuthorizer().authorize(principal(UserRole.ADMIN), [])

        assert isinstance(result.error, AuthorizationError)

    def test_admin_is_not_implicitly_allowed(self):
        result = RoleAuthorizer().authorize(principal(UserRole.ADMIN), [UserRole.TEACHER])

        assert not result.is_ok
