"""
API Gateway for the order execution engine.

Provides:
- Order submission
- Per-order WebSocket status streams
- Order lookup
- Health monitoring
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from ..common.config import Settings, settings
from ..common.database import close_duckdb, close_redis, init_duckdb, init_redis
from ..common.exceptions import NotificationDeliveryError, PersistenceError, ValidationError
from ..common.logging import get_logger, setup_logging
from ..common.monitoring import setup_metrics_server
from ..common.utils import format_iso, get_utc_datetime, get_utc_timestamp
from ..order_router.main import OrderRouter
from .schemas import HealthResponse, OrderRequest, SubmissionResponse, ValidationErrorResponse

logger = get_logger(__name__)


class WebSocketChannel:
    """Adapts a FastAPI WebSocket to the broadcaster's channel interface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, message: str) -> None:
        try:
            await self.websocket.send_text(message)
        except (RuntimeError, WebSocketDisconnect) as e:
            self._closed = True
            raise NotificationDeliveryError(
                "WebSocket send failed",
                error_code="CHANNEL_SEND_FAILED",
                context={"error": str(e)},
            ) from e

    async def close(self) -> None:
        was_open = self.is_open
        self._closed = True
        if was_open:
            await self.websocket.close()

    def mark_closed(self) -> None:
        self._closed = True


def _field_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        cause = error.get("ctx", {}).get("error")
        details.append({
            "field": ".".join(loc) or "body",
            "message": str(cause) if cause is not None else error.get("msg", "Invalid value"),
        })
    return details


def create_app(
    order_router: Optional[OrderRouter] = None,
    app_settings: Optional[Settings] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        order_router: Pre-built router. When omitted the lifespan connects to
            Redis and DuckDB and builds one from settings.
        app_settings: Application settings
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        redis_client = None
        duckdb_conn = None
        router = order_router

        if router is None:
            app_settings.ensure_directories()
            setup_metrics_server(app_settings.monitoring.prometheus_port)
            redis_client = await init_redis(app_settings.redis)
            duckdb_conn = init_duckdb(app_settings.duckdb)
            router = OrderRouter(redis_client, duckdb_conn, app_settings)

        app.state.order_router = router
        await router.start()
        logger.info("API Gateway started")

        try:
            yield
        finally:
            await router.stop()
            if redis_client is not None:
                await close_redis(redis_client)
            if duckdb_conn is not None:
                close_duckdb(duckdb_conn)
            logger.info("API Gateway shutdown complete")

    app = FastAPI(
        title="Order Execution Engine API",
        description="""
        Order submission and live status streaming.

        ## Features

        * **Orders**: Submit market orders routed to the best venue
        * **Status**: WebSocket stream of every lifecycle transition
        * **Monitoring**: Health of the backing stores
        """,
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.order_router = order_router

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = ValidationErrorResponse(details=_field_errors(exc))
        return JSONResponse(status_code=400, content=body.model_dump())

    @app.exception_handler(ValidationError)
    async def order_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": exc.message, "details": exc.details},
        )

    # Dependency to ensure system is initialized
    async def get_order_router(request: Request) -> OrderRouter:
        router = request.app.state.order_router
        if router is None:
            raise HTTPException(status_code=503, detail="Order router not initialized")
        return router

    @app.post(
        "/api/orders/execute",
        status_code=202,
        response_model=SubmissionResponse,
        summary="Submit Order",
    )
    async def execute_order(
        order_request: OrderRequest,
        router: OrderRouter = Depends(get_order_router)
    ) -> Any:
        """Accept an order for asynchronous execution."""
        try:
            order = await router.submit_order(
                order_request.token_in,
                order_request.token_out,
                order_request.amount,
                order_request.order_type,
            )
        except PersistenceError as e:
            logger.error("Error submitting order", exception=e)
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to submit order", "message": e.message},
            )

        return SubmissionResponse(order_id=order.order_id)

    @app.get("/api/orders/{order_id}", summary="Get Order")
    async def get_order(
        order_id: str,
        router: OrderRouter = Depends(get_order_router)
    ) -> Dict[str, Any]:
        """Current state of an order."""
        try:
            order = await router.get_order(order_id)
        except PersistenceError as e:
            logger.error("Error fetching order", order_id=order_id, exception=e)
            raise HTTPException(status_code=500, detail="Failed to fetch order")

        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return order.to_dict()

    @app.websocket("/api/orders/{order_id}/status")
    async def order_status_stream(websocket: WebSocket, order_id: str) -> None:
        """Push every status transition of ``order_id`` to the client."""
        router: Optional[OrderRouter] = websocket.app.state.order_router
        await websocket.accept()
        if router is None:
            await websocket.close(code=1011, reason="Order router not initialized")
            return

        await websocket.send_json({
            "type": "connected",
            "orderId": order_id,
            "timestamp": get_utc_timestamp(),
            "message": "Connected to order status stream",
        })

        channel = WebSocketChannel(websocket)
        subscription_id = router.broadcaster.subscribe(channel, order_id)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.debug("Status stream disconnected", order_id=order_id)
                    break

                # Binary and empty frames are ignored
                raw = message.get("text")
                if raw is None:
                    continue
                try:
                    frame = json.loads(raw)
                except ValueError:
                    continue

                if isinstance(frame, dict) and frame.get("type") == "ping":
                    await websocket.send_json({"type": "pong", "timestamp": get_utc_timestamp()})
        except WebSocketDisconnect:
            logger.debug("Status stream disconnected", order_id=order_id)
        finally:
            channel.mark_closed()
            router.broadcaster.unsubscribe(subscription_id)

    @app.get("/health", response_model=HealthResponse, summary="Health Check")
    async def health(router: OrderRouter = Depends(get_order_router)) -> Any:
        """Liveness and store connectivity."""
        checker = router.health_checker
        results = await checker.run_all_checks()
        healthy = checker.is_healthy()

        body = HealthResponse(
            status="healthy" if healthy else "degraded",
            timestamp=format_iso(get_utc_datetime()),
            components={name: "up" if ok else "down" for name, ok in results.items()},
            details={
                "checks": checker.get_status()["components"],
                "queue": router.queue.get_stats(),
            },
        )
        return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())

    @app.get("/", summary="API Information")
    async def root() -> Dict[str, Any]:
        """Get API information."""
        return {
            "service": "Order Execution Engine",
            "version": "1.0.0",
            "status": "running",
            "timestamp": format_iso(get_utc_datetime()),
            "endpoints": {
                "submit": "/api/orders/execute",
                "status_stream": "/api/orders/{orderId}/status",
                "order": "/api/orders/{orderId}",
                "health": "/health",
                "docs": "/docs",
            },
        }

    return app


def main() -> None:
    """Main entry point."""
    setup_logging(settings)
    uvicorn.run(
        create_app(app_settings=settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
