from pydantic_settings import BaseSettings
from pydantic import PrivateAttr, field_validator, model_validator
from typing import List, Any
import json
import secrets
from pathlib import Path


MIN_SECRET_LENGTH = 32


def parse_list(v: Any) -> List[str]:
    """Parse a list setting from a JSON array or comma-separated string"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [item.strip() for item in v.split(',') if item.strip()]
    return []


def parse_extensions(v: Any) -> List[str]:
    """Parse allowed extensions, normalised to lowercase with a leading dot"""
    extensions = []
    for ext in parse_list(v):
        ext = ext.lower()
        extensions.append(ext if ext.startswith('.') else f".{ext}")
    return extensions


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "College Portal"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_VERSION: str = "v1"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./college_portal.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 0
    DB_ECHO: bool = False

    # ==========================================
    # Security state store (rate limits, lockouts, sessions)
    # ==========================================
    STATE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # ==========================================
    # Authentication
    # ==========================================
    JWT_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours
    BCRYPT_ROUNDS: int = 12  # 4 for tests (fast), 12 for prod

    # Failed logins are answered after a random delay (milliseconds)
    FAILED_LOGIN_DELAY_MIN_MS: int = 100
    FAILED_LOGIN_DELAY_MAX_MS: int = 300

    # ==========================================
    # Sessions
    # ==========================================
    SESSION_SECRET: str = ""
    SESSION_COOKIE_NAME: str = "college_sid"
    SESSION_MAX_AGE_SECONDS: int = 86400  # 24 hours, absolute
    SESSION_EVICTION_GRACE_SECONDS: int = 300

    # ==========================================
    # Rate Limiting (per client, per category)
    # ==========================================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_AUTH_WINDOW_SECONDS: int = 900
    RATE_LIMIT_AUTH_MAX: int = 5
    RATE_LIMIT_API_WINDOW_SECONDS: int = 900
    RATE_LIMIT_API_MAX: int = 100
    RATE_LIMIT_STRICT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_STRICT_MAX: int = 20
    RATE_LIMIT_PASSWORD_CHANGE_WINDOW_SECONDS: int = 3600
    RATE_LIMIT_PASSWORD_CHANGE_MAX: int = 3

    # Proxies allowed to set X-Forwarded-For (IPs or CIDRs). Empty = ignore header.
    TRUSTED_PROXIES_STR: str = ""

    @property
    def TRUSTED_PROXIES(self) -> List[str]:
        return parse_list(self.TRUSTED_PROXIES_STR)

    # ==========================================
    # Account Lockout
    # ==========================================
    LOCKOUT_THRESHOLD: int = 5
    LOCKOUT_WINDOW_SECONDS: int = 1800
    LOCKOUT_DURATION_SECONDS: int = 1800

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_list(self.CORS_ORIGINS_STR)

    # ==========================================
    # File Upload
    # ==========================================
    UPLOAD_PATH: str = "uploads"
    MAX_UPLOAD_SIZE: int = 52428800  # 50MB
    MAX_REQUEST_SIZE: int = 53477376  # upload limit + 1MB for form fields
    ALLOWED_EXTENSIONS_STR: str = ".pdf,.doc,.docx,.ppt,.pptx,.zip,.rar,.mp4,.avi,.jpg,.jpeg,.png"
    ALLOWED_MIME_TYPES_STR: str = (
        "application/pdf,"
        "application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
        "application/vnd.ms-powerpoint,"
        "application/vnd.openxmlformats-officedocument.presentationml.presentation,"
        "application/zip,"
        "application/x-zip-compressed,"
        "application/x-rar-compressed,"
        "application/vnd.rar,"
        "video/mp4,"
        "video/x-msvideo,"
        "image/jpeg,"
        "image/png"
    )

    @property
    def ALLOWED_EXTENSIONS(self) -> List[str]:
        """Parse allowed extensions from comma-separated string"""
        return parse_extensions(self.ALLOWED_EXTENSIONS_STR)

    @property
    def ALLOWED_MIME_TYPES(self) -> List[str]:
        return [mime.lower() for mime in parse_list(self.ALLOWED_MIME_TYPES_STR)]

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    _generated_secrets: List[str] = PrivateAttr(default_factory=list)

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("STATE_BACKEND")
    @classmethod
    def validate_state_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "redis"):
            raise ValueError("STATE_BACKEND must be 'memory' or 'redis'")
        return v

    @model_validator(mode="after")
    def validate_login_delay(self) -> "Settings":
        if self.FAILED_LOGIN_DELAY_MAX_MS < self.FAILED_LOGIN_DELAY_MIN_MS:
            raise ValueError("FAILED_LOGIN_DELAY_MAX_MS must not be lower than FAILED_LOGIN_DELAY_MIN_MS")
        return self

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Production refuses to start without strong secrets. Elsewhere a
        # missing secret is replaced by a random one, so tokens and sessions
        # do not survive a restart.
        generated = []
        for name in ("JWT_SECRET_KEY", "SESSION_SECRET"):
            value = getattr(self, name)
            if self.is_production():
                if not value:
                    raise ValueError(f"{name} must be set in production")
                if len(value) < MIN_SECRET_LENGTH:
                    raise ValueError(
                        f"{name} must be at least {MIN_SECRET_LENGTH} characters in production"
                    )
            elif not value:
                setattr(self, name, secrets.token_hex(64))
                generated.append(name)
        self._generated_secrets = generated

    # ==========================================
    # Paths (computed, not from env)
    # ==========================================

    @property
    def UPLOAD_DIR(self) -> Path:
        return Path(self.UPLOAD_PATH).resolve()

    @property
    def generated_secrets(self) -> List[str]:
        """Names of secrets generated at startup because none was configured"""
        return list(self._generated_secrets)

    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def is_dev_mode(self) -> bool:
        """Check if running in development mode"""
        return self.ENVIRONMENT == "development" or self.DEBUG


# Create settings instance
settings = Settings()
