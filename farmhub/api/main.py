"""
farmhub.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn farmhub.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from farmhub.api.auth import router as auth_router  # noqa: E402
from farmhub.api.deps import get_config, get_engine  # noqa: E402
from farmhub.api.rate_limit import configure_rate_limiter  # noqa: E402
from farmhub.api.routes.admin import router as admin_router  # noqa: E402
from farmhub.api.routes.best_practices import router as best_practices_router  # noqa: E402
from farmhub.api.routes.discussions import router as discussions_router  # noqa: E402
from farmhub.api.routes.moderation import router as moderation_router  # noqa: E402
from farmhub.api.routes.notifications import router as notifications_router  # noqa: E402
from farmhub.api.routes.quizzes import router as quizzes_router  # noqa: E402
from farmhub.api.routes.score import router as score_router  # noqa: E402
from farmhub.database.engine import init_db, run_db  # noqa: E402
from farmhub.services import scoring_service  # noqa: E402
from farmhub.services.log_buffer import install_handler  # noqa: E402
from farmhub.services.tasks import PeriodicTasks  # noqa: E402

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
    """Startup/shutdown lifecycle: schema, throttles, maintenance loops."""
    # Uvicorn reconfigures logging on startup, so the buffer handler is
    # attached here rather than at import time.
    install_handler()

    cfg = get_config()
    engine = get_engine()
    await run_db(init_db, engine)
    scoring_service.configure(verify_totals=cfg.scoring_verify_totals)
    configure_rate_limiter(engine=engine)

    tasks = PeriodicTasks(engine, cfg)
    tasks.start()
    logger.info("%s API started, engine ready (%s)", cfg.community_name, engine.url.database)
    try:
        yield
    finally:
        await tasks.stop()
        logger.info("%s API shutting down", cfg.community_name)


app = FastAPI(
    title="FarmHub Community API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api")
app.include_router(discussions_router, prefix="/api")
app.include_router(moderation_router, prefix="/api")
app.include_router(best_practices_router, prefix="/api")
app.include_router(quizzes_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(score_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
