"""
WebSocket Gateway main application.

Routes:
- GET /                          entry page
- GET /static/{type}/{filename}  browser assets
- WS  /socket                    chat relay (ChatEndpoint)
- GET /health, /health/detailed  service health

The Redis pool, publisher and connection registry are created in the
lifespan and handed to every endpoint; nothing is a module-level singleton.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import FileResponse, JSONResponse

from shared.config.logging import setup_logging, ws_gateway_logger as logger
from shared.config.settings import Settings, get_settings
from shared.infrastructure.events import (
    BrokerPool,
    ChatPublisher,
    ClientFactory,
    check_broker_health,
)
from ws_gateway.components.core.constants import WSConstants
from ws_gateway.components.endpoints import ChatEndpoint
from ws_gateway.components.static_files import HOME_PAGE, static_file_response
from ws_gateway.connection_manager import ConnectionManager


def create_app(
    settings: Settings | None = None,
    client_factory: ClientFactory | None = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Configuration; defaults to the cached environment settings.
        client_factory: Overrides how Redis clients are created (tests inject
            an in-memory broker here).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Creates the Redis pool, publisher and connection registry, then on
        shutdown stops every bridge before closing the pool.
        """
        setup_logging(settings)
        config_errors = settings.validate_pool_limits()
        if config_errors:
            raise RuntimeError("Invalid configuration: " + "; ".join(config_errors))

        logger.info(
            "Starting WebSocket Gateway",
            port=settings.ws_gateway_port,
            env=settings.environment,
        )

        pool = BrokerPool.from_settings(settings, client_factory=client_factory)
        app.state.pool = pool
        app.state.publisher = ChatPublisher(pool)
        app.state.manager = ConnectionManager()

        yield

        logger.info("Shutting down WebSocket Gateway")
        await app.state.manager.close_all()
        await pool.close()

    app = FastAPI(
        title="Convo WebSocket Gateway",
        description="Real-time chat relay over Redis pub/sub",
        version="0.2.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    static_root = settings.static_root_path

    # =========================================================================
    # Static entry page and assets
    # =========================================================================

    @app.get("/", include_in_schema=False)
    async def home() -> FileResponse:
        return static_file_response(static_root, *HOME_PAGE.parts)

    @app.get("/static/{asset_type}/{filename}", include_in_schema=False)
    async def static_asset(asset_type: str, filename: str) -> FileResponse:
        return static_file_response(static_root, asset_type, filename)

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health")
    async def health_check(request: Request):
        """Basic health check with connection and pool stats."""
        state = request.app.state
        return {
            "status": "healthy",
            "service": "ws-gateway",
            "version": app.version,
            "environment": settings.environment,
            **state.manager.get_stats(),
            "pool": state.pool.stats(),
        }

    @app.get("/health/detailed")
    async def detailed_health_check(request: Request):
        """Health check that also pings Redis. Returns 503 when Redis is down."""
        state = request.app.state
        redis_health = await check_broker_health(state.pool)
        checks = {
            "status": "healthy" if redis_health.is_healthy else "degraded",
            "service": "ws-gateway",
            "environment": settings.environment,
            "connections": state.manager.get_stats(),
            "dependencies": {"redis": redis_health.to_dict()},
        }
        if not redis_health.is_healthy:
            return JSONResponse(content=checks, status_code=503)
        return checks

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket(WSConstants.SOCKET_PATH)
    async def chat_socket(websocket: WebSocket):
        """Chat relay socket: every client receives every published message."""
        state = websocket.app.state
        endpoint = ChatEndpoint(
            websocket,
            state.manager,
            state.pool,
            state.publisher,
            bridge_poll_interval=settings.ws_bridge_poll_interval,
            bridge_shutdown_timeout=settings.ws_bridge_shutdown_timeout,
        )
        await endpoint.run()

    return app


app = create_app()


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "ws_gateway.main:app",
        host=_settings.ws_gateway_host,
        port=_settings.ws_gateway_port,
        reload=_settings.debug,
    )
