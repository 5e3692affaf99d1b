import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from deliveries.bus import NotificationBus
from deliveries.config import settings
from deliveries.db import PostgresIdentityProvider, PostgresOrderStore, close_pool, get_pool, init_schema
from deliveries.errors import (
    AuthError,
    InvalidTransitionError,
    NotFoundError,
    OrderError,
    StoreUnavailableError,
    ValidationError,
)
from deliveries.identity import ADMIN_ROLE, USER_ROLE
from deliveries.metrics import get_metrics_bytes, get_metrics_content_type
from deliveries.redis_client import close_redis, get_redis, ping_redis
from deliveries.relay import RedisRelay
from deliveries.routes import events, orders
from deliveries.service import OrderService

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

STORE_RETRY_AFTER_SEC = 2


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    await init_schema(pool)
    identity = PostgresIdentityProvider(pool, settings.store_timeout_seconds)
    for user_id in settings.admin_user_ids:
        await identity.upsert_user(user_id, roles=(ADMIN_ROLE, USER_ROLE))
        logger.info("Provisioned admin %s", user_id)

    bus = NotificationBus(buffer_size=settings.subscriber_buffer)
    relay = None
    if settings.notification_backend == "redis":
        relay = RedisRelay(bus, await get_redis(), settings.notification_channel)
        await relay.start()

    app.state.bus = bus
    app.state.order_service = OrderService(
        PostgresOrderStore(pool, settings.store_timeout_seconds), identity, bus
    )
    logger.info("Deliveries API ready (notifications=%s)", settings.notification_backend)
    yield
    bus.close()
    if relay is not None:
        await relay.stop()
        await close_redis()
    await close_pool()


def _error_response(exc: OrderError) -> JSONResponse:
    headers = None
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})
    if isinstance(exc, AuthError):
        status_code = 403 if exc.authenticated else 401
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, InvalidTransitionError):
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(exc),
                "current_status": exc.current_status.value,
                "stale": exc.stale,
                "terminal": exc.terminal,
            },
        )
    elif isinstance(exc, StoreUnavailableError):
        status_code = 503
        headers = {"Retry-After": str(STORE_RETRY_AFTER_SEC)}
    else:
        status_code = 400
    return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers)


def create_app(order_service: OrderService | None = None, bus: NotificationBus | None = None) -> FastAPI:
    """Build the API. Passing a service skips the Postgres/Redis lifespan (tests, embedding)."""
    app = FastAPI(title="Deliveries", lifespan=None if order_service is not None else lifespan)
    if order_service is not None:
        app.state.order_service = order_service
        app.state.bus = bus or NotificationBus(buffer_size=settings.subscriber_buffer)
    app.include_router(orders.router)
    app.include_router(events.router)

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
        return _error_response(exc)

    @app.get("/health")
    async def health() -> dict:
        body = {"status": "ok", "notifications": settings.notification_backend}
        if settings.notification_backend == "redis":
            body["redis"] = await ping_redis()
            if not body["redis"]:
                body["status"] = "degraded"
        return body

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run("deliveries.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
