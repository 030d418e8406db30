from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional

from app.core.config import Settings, settings
from app.core.database import init_db, close_db
from app.core.exceptions import (
    ErrorKind,
    GENERIC_INTERNAL_MESSAGE,
    PortalError,
    error_response,
)
from app.core.logging_config import logger
from app.core.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    RequestSizeLimitMiddleware,
)
from app.api.v1.router import api_router
from app.modules.auth.container import build_security_services


def validate_critical_config(app_settings: Settings) -> bool:
    """Validate critical configuration at startup - fail fast if missing"""
    errors = []
    warnings = []

    if not app_settings.DATABASE_URL:
        errors.append("DATABASE_URL is not set")

    for name in app_settings.generated_secrets:
        warnings.append(f"{name} not set - using a random value, sessions and tokens reset on restart")

    if not app_settings.TRUSTED_PROXIES:
        warnings.append("TRUSTED_PROXIES_STR empty - X-Forwarded-For is ignored, limits apply per socket peer")

    try:
        app_settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        errors.append(f"Upload directory {app_settings.UPLOAD_DIR} is not usable: {e}")

    if errors:
        for err in errors:
            logger.critical(f"[Startup] CRITICAL: {err}")
        raise RuntimeError(f"Missing critical configuration: {', '.join(errors)}")

    for warn in warnings:
        logger.warning(f"[Startup] WARNING: {warn}")

    logger.info("[Startup] Critical configuration validated")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    security = app.state.security
    app_settings = security.settings

    logger.info("=" * 60)
    logger.info(f"Starting {app_settings.APP_NAME}...")
    logger.info(f"Environment: {app_settings.ENVIRONMENT}")
    logger.info(f"State backend: {app_settings.STATE_BACKEND}")
    logger.info("=" * 60)

    validate_critical_config(app_settings)
    await init_db()
    logger.info("[Startup] Database ready")

    yield

    logger.info(f"Shutting down {app_settings.APP_NAME}...")
    await security.close()
    await close_db()


# ==========================================
# Exception handlers - the only place errors become HTTP responses
# ==========================================

async def portal_error_handler(request: Request, exc: PortalError):
    if exc.kind is ErrorKind.INTERNAL:
        logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}")
    headers = dict(exc.headers)
    if exc.kind is ErrorKind.AUTHENTICATION:
        headers.setdefault("WWW-Authenticate", "Bearer")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc),
        headers=headers or None,
    )


def _field_name(loc) -> Optional[str]:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "form", "header", "cookie")]
    return ".".join(parts) or None


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _field_name(err.get("loc", ())), "message": err.get("msg", "Invalid value")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception):
    logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": GENERIC_INTERNAL_MESSAGE},
    )


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the application with its own security state"""
    app_settings = app_settings or settings
    is_production = app_settings.is_production()

    app = FastAPI(
        title=app_settings.APP_NAME,
        description="College portal: authentication, sessions and secure file access",
        version="1.0.0",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
        lifespan=lifespan,
        redirect_slashes=False
    )

    app.state.security = build_security_services(app_settings)

    # Add middleware (order matters - last added runs first)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=is_production)
    app.add_middleware(RequestSizeLimitMiddleware, max_size=app_settings.MAX_REQUEST_SIZE)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-CSRF-Token"],
        expose_headers=["X-Request-ID", "X-Response-Time", "Retry-After", "Content-Disposition"],
    )

    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint"""
        return {
            "message": f"Welcome to {app_settings.APP_NAME}",
            "version": "1.0.0",
            "health": f"/api/{app_settings.API_VERSION}/health",
        }

    app.include_router(api_router, prefix=f"/api/{app_settings.API_VERSION}")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.is_dev_mode()
    )
