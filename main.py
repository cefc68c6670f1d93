import logfire

from typing import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from contextlib import asynccontextmanager

from middleware.csrf import CSRFMiddleware
from middleware.rate_limiting import RateLimiter, RateLimitMiddleware

from security.refresh_token import RefreshTokenRevocationList
from security.tokens import TokenService
from security.transport import SessionTransport

from services.auth import AuthService
from services.bridge import BlockingBridge
from services.credentials import CredentialStore, InMemoryCredentialStore, MongoCredentialStore

from utils.exceptions import (
    GatewayError,
    InvalidCredentials,
    StorageError,
    TokenMalformed,
    TokenRevoked,
    TokenTypeMismatch,
)
from utils.logger import configure_logging, instrument_libraries
from utils.settings import Settings, get_settings

from routers import auth, csrf, health, users


async def gateway_error_handler(request: Request, exc: GatewayError):
    """Render any GatewayError with its client-safe message.

    Expired and missing tokens are routine and recovered client side, so they are not logged.
    """
    if isinstance(exc, StorageError):
        logfire.warning("Storage error on {path}: {code}", path=request.url.path, code=exc.code)
    elif isinstance(exc, InvalidCredentials):
        logfire.info("Rejected credentials on {path}", path=request.url.path)
    elif isinstance(exc, (TokenMalformed, TokenTypeMismatch, TokenRevoked)):
        logfire.warning("Rejected token on {path}: {code}", path=request.url.path, code=exc.code)
    return exc.to_response()


def _build_store(settings: Settings) -> CredentialStore:
    if settings.database_connection_string:
        return MongoCredentialStore.from_url(
            settings.database_connection_string, settings.database_name
        )
    logfire.info("DATABASE_CONNECTION_STRING not set, using in-memory credential store")
    return InMemoryCredentialStore()


def _build_revocations(settings: Settings) -> RefreshTokenRevocationList | None:
    if not settings.refresh_token_revocation:
        return None
    if not settings.redis_url:
        raise RuntimeError("REFRESH_TOKEN_REVOCATION=true but REDIS_URL is missing")
    return RefreshTokenRevocationList.from_url(settings.redis_url)


def create_app(
    settings: Settings | None = None,
    store: CredentialStore | None = None,
    revocations: RefreshTokenRevocationList | None = None,
    token_clock: Callable[[], float] | None = None,
    rate_limit_clock: Callable[[], float] | None = None,
) -> FastAPI:
    """Build the gateway application.

    Every collaborator can be injected; anything omitted is built from settings.

    Raises:
        SigningKeyUnavailable: No signing secret is configured.
    """
    settings = settings or get_settings()

    token_kwargs = {"clock": token_clock} if token_clock else {}
    tokens = TokenService(
        settings.secret_key,
        access_ttl_seconds=settings.access_token_ttl_seconds,
        refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
        algorithm=settings.jwt_algorithm,
        **token_kwargs,
    )
    bridge = BlockingBridge(max_workers=settings.storage_workers)
    auth_service = AuthService(
        tokens=tokens,
        store=store or _build_store(settings),
        bridge=bridge,
        transport=SessionTransport(
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            secure_cookies=settings.is_production,
        ),
        revocations=revocations or _build_revocations(settings),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logfire.info("Starting session gateway...")
        await bridge.run(auth_service.store.ensure_indexes)
        yield
        logfire.info("Shutting down session gateway...")
        bridge.shutdown()
        logfire.info("Application shutdown complete")

    app = FastAPI(
        title="Session Gateway",
        description="Issues and rotates session credentials, guards against CSRF and throttles abusive traffic.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.auth_service = auth_service

    app.add_exception_handler(GatewayError, gateway_error_handler)

    limiter_kwargs = {"clock": rate_limit_clock} if rate_limit_clock else {}
    general_limiter = RateLimiter(
        settings.general_rate_limit_per_second,
        settings.general_rate_limit_burst,
        shards=settings.rate_limit_shards,
        idle_seconds=settings.rate_limit_idle_seconds,
        **limiter_kwargs,
    )
    auth_limiter = RateLimiter(
        settings.auth_rate_limit_per_second,
        settings.auth_rate_limit_burst,
        shards=settings.rate_limit_shards,
        idle_seconds=settings.rate_limit_idle_seconds,
        **limiter_kwargs,
    )
    app.state.general_limiter = general_limiter
    app.state.auth_limiter = auth_limiter

    # Last added runs first: proxy headers -> CORS -> rate limit -> CSRF -> routes
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        general_limiter=general_limiter,
        auth_limiter=auth_limiter,
        auth_prefixes=("/auth",),
        exclude_paths={"/health/live", "/health/ready"},
        sweep_interval=settings.rate_limit_sweep_interval,
    )
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["Authorization", "Content-Type", "X-CSRF-Token", "X-Client-Type"],
        )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.trusted_proxies)

    app.include_router(csrf.router)
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(health.router)

    return app


def build_default_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)
    app = create_app(settings)
    instrument_libraries(app)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:build_default_app", factory=True, host="0.0.0.0", port=8000)
