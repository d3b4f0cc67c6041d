"""
Session Core service - FastAPI application factory.

Wires the components together, registers the exception handlers, the health
and metrics endpoints and the session router, and ties the background
sweeper and the event publisher to the application lifecycle.
"""
import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from session_core import __version__
from session_core.api import router as auth_router
from session_core.api import validation_details
from session_core.auth import AuthenticationManager
from session_core.cache import VerificationCache
from session_core.cleanup import CleanupSweeper
from session_core.config import Settings, get_settings
from session_core.database import Database
from session_core.errors import AuthServiceError, RateLimitedError
from session_core.events import Event, EventPublisher, HttpTransport, LoggingTransport
from session_core.identity import SqlIdentitySource
from session_core.metrics import VERIFICATION_CACHE_SIZE, record_cache_event, record_rate_limit_rejection
from session_core.security import PasswordManager, PasswordValidator
from session_core.throttling import LockoutTracker, RateLimiter
from session_core.token import TokenIssuer
from session_core.token_store import TokenStore
from session_core.user_service import UserServiceClient

logger = logging.getLogger("session_core")


# PUBLIC_INTERFACE
def create_app(
    app_settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    identity_source=None,
    event_transport: Optional[Callable[[Event], None]] = None,
    user_service: Optional[UserServiceClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Settings to use. Defaults to the global settings.
        database: Database handle. Defaults to one built from the settings.
        identity_source: Identity source. Defaults to the ``users`` table.
        event_transport: Event delivery callable. Defaults to the webhook
            transport when ``EVENT_WEBHOOK_URL`` is set, logging otherwise.
        user_service: Downstream profile service client. Defaults to one built
            from ``USER_SERVICE_URL`` when set.

    Returns:
        The configured application. Components are exposed on ``app.state``.
    """
    s = app_settings or get_settings()
    db = database or Database(s.DATABASE_URL, echo=s.DATABASE_ECHO, timeout_seconds=s.DATABASE_TIMEOUT_SECONDS)
    identity_source = identity_source or SqlIdentitySource(db)

    password_manager = PasswordManager(rounds=s.BCRYPT_ROUNDS, validator=PasswordValidator.from_settings(s))
    issuer = TokenIssuer(s)
    token_store = TokenStore(db)
    cache = VerificationCache(
        identity_source.find_by_id,
        max_size=s.USER_CACHE_MAX_SIZE,
        ttl_seconds=issuer.access_ttl_seconds,
        on_event=record_cache_event,
    )
    VERIFICATION_CACHE_SIZE.set_function(lambda: cache.size)
    lockout_tracker = LockoutTracker.from_settings(s)
    rate_limiter = RateLimiter.from_settings(s, on_reject=record_rate_limit_rejection)

    if event_transport is None:
        if s.EVENT_WEBHOOK_URL:
            event_transport = HttpTransport(s.EVENT_WEBHOOK_URL, timeout=s.EVENT_TIMEOUT_SECONDS)
        else:
            event_transport = LoggingTransport()
    publisher = EventPublisher(
        event_transport,
        max_queue_size=s.EVENT_QUEUE_SIZE,
        max_attempts=s.EVENT_MAX_ATTEMPTS,
        backoff_seconds=s.EVENT_RETRY_BACKOFF_SECONDS,
        enabled=s.EVENTS_ENABLED,
    )

    if user_service is None and s.USER_SERVICE_URL:
        user_service = UserServiceClient(
            s.USER_SERVICE_URL,
            service_token_factory=issuer.create_service_token,
            timeout=s.USER_SERVICE_TIMEOUT_SECONDS,
        )

    auth_manager = AuthenticationManager(
        identity_source=identity_source,
        password_manager=password_manager,
        issuer=issuer,
        token_store=token_store,
        cache=cache,
        lockout_tracker=lockout_tracker,
        publisher=publisher,
        user_service=user_service,
    )
    sweeper = CleanupSweeper(
        token_store,
        interval_seconds=s.CLEANUP_INTERVAL_SECONDS,
        retention_days=s.CLEANUP_RETENTION_DAYS,
        housekeeping=[rate_limiter.purge_expired, lockout_tracker.purge_expired],
    )

    # Create FastAPI application
    app = FastAPI(
        title=s.APP_NAME,
        description=s.APP_DESCRIPTION,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        debug=s.DEBUG,
    )
    app.state.settings = s
    app.state.database = db
    app.state.auth_manager = auth_manager
    app.state.rate_limiter = rate_limiter
    app.state.lockout_tracker = lockout_tracker
    app.state.cache = cache
    app.state.sweeper = sweeper
    app.state.publisher = publisher

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # Auth responses carry tokens and must not be cached
    @app.middleware("http")
    async def no_store_auth_responses(request: Request, call_next: Callable):
        response = await call_next(request)
        if request.url.path.startswith("/auth"):
            response.headers["Cache-Control"] = "no-store"
            response.headers["Pragma"] = "no-cache"
        return response

    # Exception handlers
    @app.exception_handler(AuthServiceError)
    async def auth_service_error_handler(request: Request, exc: AuthServiceError):
        """Translate core errors into their HTTP status and body."""
        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {"Retry-After": str(exc.retry_after)}
        elif exc.status_code == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        if exc.status_code >= 500:
            logger.error(f"Server error on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        """Malformed or missing input is a 400, not a 422."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Validation failed",
                "code": "VALIDATION_ERROR",
                "details": validation_details(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
        )

    # Health check endpoints
    @app.get("/health", tags=["health"], summary="Health check")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "auth-service", "version": __version__}

    @app.get("/health/detailed", tags=["health"], summary="Detailed health check")
    def detailed_health_check():
        """Health check with cache, sweeper and event queue state."""
        cache_stats = cache.get_stats()
        sweeper_status = sweeper.get_status()
        warnings = []
        if cache_stats["hit_rate"] < 0.5 and cache_stats["hits"] + cache_stats["misses"] > 100:
            warnings.append("Low cache hit rate")
        if s.CLEANUP_ENABLED and sweeper_status["last_error"]:
            warnings.append("Last token cleanup failed")
        return {
            "status": "warning" if warnings else "healthy",
            "warnings": warnings,
            "version": __version__,
            "cache": cache_stats,
            "cleanup": sweeper_status,
            "events": {"running": publisher.running, "pending": publisher.pending},
        }

    @app.get("/metrics", tags=["health"], summary="Prometheus metrics")
    def metrics():
        """Expose metrics in the Prometheus text format."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Include authentication router
    app.include_router(auth_router, prefix="/auth")

    # Startup event
    @app.on_event("startup")
    def startup_event():
        """Initialize the application on startup."""
        logger.info("Initializing Session Core API")
        db.create_all()
        if s.EVENTS_ENABLED:
            publisher.start()
        if s.CLEANUP_ENABLED:
            sweeper.start()
        logger.info("Session Core API initialized")

    # Shutdown event
    @app.on_event("shutdown")
    def shutdown_event():
        """Clean up resources on shutdown."""
        logger.info("Shutting down Session Core API")
        sweeper.stop()
        publisher.stop()
        if user_service is not None:
            user_service.close()

    return app
