"""
shamba.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn shamba.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from shamba import __version__  # noqa: E402
from shamba.api.deps import get_config, get_engine  # noqa: E402
from shamba.api.routes.community import router as community_router  # noqa: E402
from shamba.api.routes.engagement import router as engagement_router  # noqa: E402
from shamba.api.routes.events import router as events_router  # noqa: E402
from shamba.api.routes.posts import router as posts_router  # noqa: E402
from shamba.api.routes.questions import router as questions_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the engine and config."""
    engine = get_engine()
    cfg = get_config()
    logger.info("%s API started — engine ready (%s)", cfg.community_name, engine.url.database)
    yield
    logger.info("%s API shutting down", cfg.community_name)


app = FastAPI(
    title="Shamba Community API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(posts_router, prefix="/api")
app.include_router(questions_router, prefix="/api")
app.include_router(events_router, prefix="/api")
app.include_router(engagement_router, prefix="/api")
app.include_router(community_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
