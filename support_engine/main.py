"""FastAPI application wiring for the storefront support engine.

- Loads ``.env``, configures logging, rate limiting and Prometheus metrics.
- Mounts the chat turn, helpdesk webhook and customer-context routers.
- Exposes health and version probes.

Services are built lazily on first use by :mod:`support_engine.routers.dependencies`
and released on shutdown.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import get_settings
from .core.ratelimit import limiter
from .routers import chat, customer_context, webhooks
from .routers.dependencies import shutdown_components

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not get_settings().helpdesk_webhook_secret:
        logger.warning(
            "HELPDESK_WEBHOOK_SECRET is not set; webhook signatures will not be verified"
        )
    yield
    shutdown_components()


app = FastAPI(title="Storefront Support Engine", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
# Optional CORS for the storefront chat widget
widget_origins = os.getenv("CHAT_WIDGET_ORIGINS")
if widget_origins:
    origins = [o.strip() for o in widget_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
app.include_router(chat.router)
app.include_router(webhooks.router)
app.include_router(customer_context.router)

Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness probe."""
    return {"status": "ok", "version": __version__}


@app.get("/api/version")
async def version():
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
