"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from delivery_dispatch.api.routes import router, to_http_exception
from delivery_dispatch.api.websocket import ConnectionManager, handle_notifications_websocket
from delivery_dispatch.config import get_settings
from delivery_dispatch.errors import DispatchError
from delivery_dispatch.service import DispatchService
from delivery_dispatch.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting")

    service: DispatchService | None = app.state.service
    if service is None:
        service = DispatchService(get_settings())
        app.state.service = service
    service.subscribe(app.state.connections.broadcast_notification)

    # first load is silent so a throttled or unreachable backend does not block startup
    await service.refresh(silent=True)
    service.start()
    logger.info(
        "dispatch_service_started",
        actor_id=service.actor.id,
        role=service.actor.role.value,
    )

    yield

    # Shutdown
    logger.info("application_shutting_down")
    service.unsubscribe(app.state.connections.broadcast_notification)
    await service.close()


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """Render dispatch errors with their mapped status code."""
    http_error = to_http_exception(exc)
    logger.info(
        "dispatch_error_response",
        path=request.url.path,
        status_code=http_error.status_code,
        error=type(exc).__name__,
    )
    return JSONResponse(
        status_code=http_error.status_code,
        content={"detail": http_error.detail},
        headers=http_error.headers,
    )


def create_app(service: DispatchService | None = None) -> FastAPI:
    """Build the API; without a service, the lifespan builds one from settings."""
    app = FastAPI(
        title="Delivery Dispatch",
        description="Delivery order prioritization, status transitions and assignment",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.connections = ConnectionManager()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DispatchError, dispatch_error_handler)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "delivery-dispatch"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Delivery Dispatch API",
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(router, prefix="/api/v1", tags=["api"])

    # WebSocket endpoint
    @app.websocket("/ws/notifications")
    async def notifications_websocket(websocket: WebSocket) -> None:
        """Push notifications as refreshes emit them."""
        if app.state.service is None:
            await websocket.close(code=1013, reason="Dispatch service is not running")
            return
        await handle_notifications_websocket(websocket, app.state.service, app.state.connections)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "delivery_dispatch.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
