"""
Unit Tests for Settings
Tests for: secret handling, list parsing, validation
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings, parse_extensions, parse_list

STRONG_SECRET = "x" * 48


class TestSecrets:
    """Test JWT and session secret handling per environment"""

    def test_missing_secrets_generated_outside_production(self):
        app_settings = Settings(ENVIRONMENT="development", JWT_SECRET_KEY="", SESSION_SECRET="")

        assert len(app_settings.JWT_SECRET_KEY) == 128
        assert len(app_settings.SESSION_SECRET) == 128
        assert app_settings.JWT_SECRET_KEY != app_settings.SESSION_SECRET
        assert app_settings.generated_secrets == ["JWT_SECRET_KEY", "SESSION_SECRET"]

    def test_configured_secrets_kept(self):
        app_settings = Settings(JWT_SECRET_KEY=STRONG_SECRET, SESSION_SECRET=STRONG_SECRET)

        assert app_settings.JWT_SECRET_KEY == STRONG_SECRET
        assert app_settings.generated_secrets == []

    def test_production_requires_secrets(self):
        with pytest.raises(ValueError, match="JWT_SECRET_KEY must be set"):
            Settings(ENVIRONMENT="production", JWT_SECRET_KEY="", SESSION_SECRET=STRONG_SECRET)

    def test_production_rejects_short_secret(self):
        with pytest.raises(ValueError, match="SESSION_SECRET must be at least 32"):
            Settings(ENVIRONMENT="production", JWT_SECRET_KEY=STRONG_SECRET, SESSION_SECRET="short")

    def test_production_with_strong_secrets(self):
        app_settings = Settings(ENVIRONMENT="Production", JWT_SECRET_KEY=STRONG_SECRET, SESSION_SECRET=STRONG_SECRET)

        assert app_settings.is_production()
        assert not app_settings.is_dev_mode()


class TestValidation:
    """Test field validators"""

    def test_state_backend_normalized(self):
        assert Settings(STATE_BACKEND=" Redis ").STATE_BACKEND == "redis"

    def test_unknown_state_backend_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(STATE_BACKEND="memcached")

    def test_login_delay_bounds(self):
        with pytest.raises(PydanticValidationError):
            Settings(FAILED_LOGIN_DELAY_MIN_MS=300, FAILED_LOGIN_DELAY_MAX_MS=100)


class TestListSettings:
    """Test comma-separated list parsing"""

    def test_parse_list_comma_separated(self):
        assert parse_list("a, b,,c ") == ["a", "b", "c"]

    def test_parse_list_json(self):
        assert parse_list('["a", "b"]') == ["a", "b"]

    def test_parse_extensions_normalized(self):
        assert parse_extensions("PDF,.Docx, zip") == [".pdf", ".docx", ".zip"]

    def test_allowed_extensions_default(self):
        extensions = Settings().ALLOWED_EXTENSIONS

        assert ".pdf" in extensions
        assert ".exe" not in extensions

    def test_trusted_proxies_default_empty(self):
        assert Settings().TRUSTED_PROXIES == []

    def test_upload_dir_is_absolute(self, tmp_path):
        assert Settings(UPLOAD_PATH=str(tmp_path / "up")).UPLOAD_DIR.is_absolute()
