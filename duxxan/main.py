import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, utcnow
from .container import ServiceContainer, build_container
from .exceptions import ServiceError
from .routers import admin, channels, donations, mail, raffles, tickets, users, websocket
from .utils.responses import fail, ok

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _handle_loop_exception(loop, context):
    exc = context.get("exception")
    logger.error(f"Unhandled exception in background task: {context.get('message')}", exc_info=exc)


# Background task: sweeps for lost settlements and expired approvals
async def run_maintenance(container: ServiceContainer):
    while True:
        try:
            await container.run_maintenance()
        except Exception as e:
            logger.exception(f"Error in maintenance task: {e}")
        await asyncio.sleep(container.settings.sweep_interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: ServiceContainer = app.state.container
    asyncio.get_running_loop().set_exception_handler(_handle_loop_exception)

    # Startup
    await container.start()
    task = asyncio.create_task(run_maintenance(container))
    yield
    # Shutdown
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    await container.close()


def register_exception_handlers(app: FastAPI, settings: Settings):
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=fail(exc.message, exc.data))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content=fail("Validation failed", {"errors": errors}))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        message = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(status_code=500, content=fail(message))


def create_app(settings: Optional[Settings] = None,
               container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or (container.settings if container else Settings.from_env())
    configure_logging(settings.log_level)

    app = FastAPI(lifespan=lifespan, title="DUXXAN API", version="1.0.0")
    app.state.container = container or build_container(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app, settings)

    # Include routers
    app.include_router(users.router, prefix="/api/users", tags=["users"])
    app.include_router(raffles.router, prefix="/api/raffles", tags=["raffles"])
    app.include_router(tickets.router, prefix="/api/tickets", tags=["tickets"])
    app.include_router(donations.router, prefix="/api/donations", tags=["donations"])
    app.include_router(channels.router, prefix="/api/channels", tags=["channels"])
    app.include_router(mail.router, prefix="/api/mail", tags=["mail"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    app.include_router(websocket.router, tags=["websocket"])

    @app.get("/")
    async def root():
        return ok({"name": "DUXXAN API", "version": "1.0.0"})

    @app.get("/health")
    async def health_check(request: Request):
        services: ServiceContainer = request.app.state.container
        return ok({
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "queue": services.queue.stats(),
            "circuit_breaker": services.breaker.snapshot(),
            "cache": services.cache.name,
            "websocket_clients": services.ws_manager.count,
        })

    return app
