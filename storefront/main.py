"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from storefront.backend_client import BackendClient
from storefront.cache import TTLCache
from storefront.config import get_settings
from storefront.db import close_db, init_db
from storefront.loyalty import LoyaltyTokenClient
from storefront.orchestrator import shutdown_orchestrators

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    settings = get_settings()
    await init_db()
    logger.info("DB ready at %s", settings.db_abs_path)

    # Shared per-process service objects (tests override the route dependencies).
    app.state.backend = BackendClient()
    app.state.loyalty = LoyaltyTokenClient(app.state.backend)
    app.state.profile_cache = TTLCache(settings.profile_cache_ttl)
    yield
    await shutdown_orchestrators()
    await close_db()
    logger.info("DB closed")


app = FastAPI(
    title="fasho checkout",
    version="0.1.0",
    lifespan=lifespan,
)

# Session middleware (signed cookie: browser scope + signed-in user id).
app.add_middleware(SessionMiddleware, secret_key=get_settings().secret_key)

# Routers
from storefront.checkout_routes import router as checkout_router  # noqa: E402

app.include_router(checkout_router)


@app.get("/health")
async def health():
    """Simple health-check endpoint."""
    return JSONResponse({"status": "ok", "version": app.version})
