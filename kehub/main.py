import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, settings as default_settings
from .db import Database
from .logging import setup_logging, RequestIdMiddleware, structlog
from .services.errors import ServiceError
from .auth.router import router as auth_router
from .routes.tasks import router as tasks_router
from .routes.issues import router as issues_router
from .routes.users import router as users_router
from .routes.dashboard import router as dashboard_router


logger = structlog.get_logger(__name__)


def _failure(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


def _validation_errors(exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        errors.append({"field": field, "message": err.get("msg")})
    return errors


def register_exception_handlers(app: FastAPI, cfg: Settings) -> None:
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("request_failed", path=request.url.path, error=type(exc).__name__, message=exc.message)
        return _failure(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        errors = _validation_errors(exc)
        message = errors[0]["message"] if len(errors) == 1 else "Validation failed"
        return _failure(400, message, errors=errors)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _failure(exc.status_code, str(exc.detail))

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limited(request: Request, exc: RateLimitExceeded):
        return _failure(429, "Too many requests, please try again later")

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        if cfg.is_development:
            return _failure(500, "Server error", error=str(exc))
        return _failure(500, "Server error")


def create_app(app_settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    cfg = app_settings or default_settings
    setup_logging(cfg.log_level)
    app = FastAPI(title=cfg.app_name)
    app.state.settings = cfg
    app.state.database = database or Database.from_settings(cfg)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[cfg.rate_limit],
        enabled=cfg.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app, cfg)

    # Routers
    app.include_router(auth_router)
    app.include_router(tasks_router)
    app.include_router(issues_router)
    app.include_router(users_router)
    app.include_router(dashboard_router)

    @app.get("/health")
    def health():
        return {"success": True, "status": "ok", "environment": cfg.environment}

    # Metrics
    if cfg.enable_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        if cfg.database_url.startswith("sqlite:///./"):
            os.makedirs(os.path.dirname(cfg.database_url[len("sqlite:///"):]) or ".", exist_ok=True)
        if cfg.auto_create_db:
            app.state.database.create_all()
            logger.info("database_ready", url=app.state.database.engine.url.render_as_string(hide_password=True))

    @app.on_event("shutdown")
    def _shutdown():
        app.state.database.dispose()

    return app


app = create_app()
