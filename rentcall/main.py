from contextlib import asynccontextmanager
from dataclasses import asdict

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rentcall import __version__
from rentcall.auth.accounts import AccountRepository
from rentcall.auth.tokens import TokenService, TokenSettings
from rentcall.core.config import mask_config, settings
from rentcall.core.database import AsyncDatabaseManager
from rentcall.core.limiter import limiter
from rentcall.core.logging import configure_logging
from rentcall.core.MongoORJSONResponse import MongoORJSONResponse
from rentcall.metrics.metrics import get_metrics
from rentcall.routes import auth, rents, whatsapp
from rentcall.settlement.repository import RentRepository
from rentcall.utils.exceptions import RentcallError
from rentcall.utils.redis_client import AsyncRedisClient, RedisConfig
from rentcall.whatsapp.config import WhatsAppConfig
from rentcall.whatsapp.dispatcher import TemplateDispatcher
from rentcall.whatsapp.providers.provider_selector import get_provider
from rentcall.whatsapp.tracker import DeliveryStatusTracker

configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build every service once and hang it on app.state"""
    logger.info("starting_service", app=settings.APP_NAME, environment=settings.ENVIRONMENT)

    # configuration errors abort startup
    token_settings = TokenSettings.from_env()
    whatsapp_config = WhatsAppConfig.from_env()
    whatsapp_config.validate()
    logger.info("whatsapp_config_loaded", **mask_config({
        k: v for k, v in asdict(whatsapp_config).items() if k != "templates"
    }))

    db_manager = AsyncDatabaseManager()
    db = await db_manager.connect()
    redis_client = AsyncRedisClient(RedisConfig.from_env())
    if not await redis_client.ping():
        logger.warning("redis_unreachable_at_startup")
    http_client = httpx.AsyncClient()
    metrics = get_metrics()

    tracker = DeliveryStatusTracker()
    provider = get_provider(whatsapp_config, http_client)
    dispatcher = TemplateDispatcher(
        provider,
        tracker,
        whatsapp_config.templates,
        template_language=whatsapp_config.template_language,
        metrics=metrics,
    )
    if not dispatcher.api_enabled:
        logger.warning("whatsapp_api_not_configured", mode="link-only")

    app.state.db_manager = db_manager
    app.state.redis_client = redis_client
    app.state.metrics = metrics
    app.state.whatsapp_config = whatsapp_config
    app.state.tracker = tracker
    app.state.dispatcher = dispatcher
    app.state.token_service = TokenService(token_settings, redis_client, metrics=metrics)
    app.state.account_repository = AccountRepository(db)
    app.state.rent_repository = RentRepository(db)

    yield

    logger.info("stopping_service")
    await http_client.aclose()
    await redis_client.close()
    db_manager.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="rentcall",
        version=__version__,
        description="Rent settlement, WhatsApp rent-call notifications and landlord tokens",
        lifespan=lifespan,
        default_response_class=MongoORJSONResponse,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RentcallError)
    async def rentcall_exception_handler(request: Request, exc: RentcallError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "request_failed",
            error_type=exc.error_type,
            detail=exc.message,
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": exc.error_type},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with proper logging"""
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.error(
            "unexpected_exception",
            error=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(auth.router)
    app.include_router(whatsapp.router)
    app.include_router(rents.router)

    @app.get("/")
    async def root():
        return {"service": settings.APP_NAME, "version": __version__, "status": "running"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
