import os

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import Base, engine
from .exceptions import EmbroHubError, error_body
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.activity import router as activity_router
from .routes.employees import router as employees_router
from .routes.files import router as files_router
from .routes.invoices import router as invoices_router
from .routes.notifications import router as notifications_router, realtime_router
from .routes.orders import router as orders_router
from .routes.payments import router as payments_router, webhook_router
from .routes.users import router as users_router


log = structlog.get_logger()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(EmbroHubError)
    async def _domain_error(request: Request, exc: EmbroHubError):
        if exc.status_code >= 500:
            log.error("request_failed", path=request.url.path, error=exc.message, detail=exc.error)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.error))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content=error_body(message), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
        return JSONResponse(status_code=400, content=error_body(message))


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    _register_error_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(employees_router)
    app.include_router(orders_router)
    app.include_router(invoices_router)
    app.include_router(payments_router)
    app.include_router(webhook_router)
    app.include_router(notifications_router)
    app.include_router(realtime_router)
    app.include_router(activity_router)
    app.include_router(files_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"success": True, "status": "ok", "brand": settings.brand_name}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs(os.path.dirname(settings.database_url[len("sqlite:///"):]) or ".", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("database_ready", tables=len(Base.metadata.tables))
        log.info(
            "app_started",
            environment=settings.environment,
            push=settings.enable_push,
            email=settings.enable_email,
        )

    return app


app = create_app()
