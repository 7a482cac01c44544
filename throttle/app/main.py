from contextlib import asynccontextmanager
from functools import partial
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from pydantic import BaseModel

from throttle.app.core.clients import close_counter_backend, counter_backend_options
from throttle.app.core.config import Settings, settings
from throttle.app.core.logging import get_logger, setup_logging
from throttle.app.middleware.rate_limit import Ratelimit

READ_ONLY_METHODS = frozenset(("GET", "HEAD", "OPTIONS"))
BACKEND_NAMES = {"redis": "redis", "cache": "memcached", "counter": "memory"}


class ItemIn(BaseModel):
    name: str


def client_ip(request: Request, trust_forwarded_for: bool = False) -> Optional[str]:
    """Classify requests by client IP.

    X-Forwarded-For is client-controlled unless a trusted proxy sets it, so
    it is only read when ``trust_forwarded_for`` is on.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def is_read_only(request: Request) -> bool:
    return request.method in READ_ONLY_METHODS


def is_api_request(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Two limiters sit in front of the routes: ``API`` for everything under
    /api/ and, inside it, ``POST`` for bursts of writes. Both classify by
    client IP.

    Args:
        app_settings: Settings to use instead of the environment

    Returns:
        Configured FastAPI application instance
    """
    cfg = app_settings or settings

    setup_logging()
    logger = get_logger(__name__)
    access_logger = get_logger("throttle.access")
    classify = partial(client_ip, trust_forwarded_for=cfg.trust_forwarded_for)

    write_backend = counter_backend_options(cfg)
    api_backend = counter_backend_options(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Application startup complete",
            extra={
                "backend": BACKEND_NAMES[next(iter(api_backend))],
                "debug_mode": cfg.debug,
            }
        )
        yield
        for options in (write_backend, api_backend):
            await close_counter_backend(options)
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Throttle",
        description="Demo application behind stacked fixed-window rate limiters",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.items = []

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        Ratelimit,
        name="POST",
        rate=(cfg.write_rate_limit, cfg.write_rate_period),
        status=cfg.rate_limit_status,
        exceptions=[is_read_only],
        logger=access_logger,
        classifier=classify,
        **write_backend,
    )
    app.add_middleware(
        Ratelimit,
        name="API",
        rate=(cfg.api_rate_limit, cfg.api_rate_period),
        status=cfg.rate_limit_status,
        conditions=[is_api_request],
        logger=access_logger,
        classifier=classify,
        **api_backend,
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "backend": BACKEND_NAMES[next(iter(api_backend))]}

    @app.get("/api/items")
    async def list_items(request: Request) -> dict[str, Any]:
        return {"items": request.app.state.items}

    @app.post("/api/items", status_code=201)
    async def create_item(item: ItemIn, request: Request) -> dict[str, Any]:
        request.app.state.items.append(item.name)
        return {"name": item.name}

    return app


# Create the application instance
app = create_app()
