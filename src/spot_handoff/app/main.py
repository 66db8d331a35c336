"""FastAPI application entry point for the Spot Handoff API."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spot_handoff.app.config import get_settings
from spot_handoff.app.dependencies import build_services
from spot_handoff.infra.database import async_session, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database, wire services, run the sweeper."""
    await init_db()
    services = build_services(async_session, settings=get_settings())
    app.state.services = services

    sweeper_task = asyncio.create_task(services.sweeper.run())
    yield

    sweeper_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper_task
    logger.info("Expiration sweeper stopped")


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Spot Handoff API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware: debug mode allows any origin
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from spot_handoff.app.routes.auth import router as auth_router
from spot_handoff.app.routes.location import router as location_router
from spot_handoff.app.routes.spots import router as spots_router
from spot_handoff.app.routes.ws import router as ws_router

app.include_router(auth_router)
app.include_router(location_router)
app.include_router(spots_router)
app.include_router(ws_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "spot-handoff"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "spot_handoff.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
