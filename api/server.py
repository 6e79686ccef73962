"""
Focus Blocks API Server - REST API for auto-scheduling and task commitments.
"""
# ruff: noqa: S104
# S104: Development server binding (guarded by __name__ check)

import logging
import os

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.scheduler_router import get_gateway, get_preferences, router as scheduler_router
from focusblocks import __version__, paths
from focusblocks.config import load_logging_settings
from focusblocks.observability import CorrelationIdMiddleware, configure_logging
from focusblocks.time_truth.models import SchedulerPreferences

logger = logging.getLogger(__name__)

# FastAPI app initialization
app = FastAPI(
    title="Focus Blocks API",
    description="Auto-scheduling of tasks into focus blocks",
    version=__version__,
)

# CORS middleware - configurable via CORS_ORIGINS env var
# Dev default: allow all origins; Production: set CORS_ORIGINS to comma-separated list
cors_origins_env = os.getenv("CORS_ORIGINS", "*")
cors_origins = (
    ["*"] if cors_origins_env == "*" else [o.strip() for o in cors_origins_env.split(",")]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(scheduler_router, prefix="/api")


@app.on_event("startup")
async def log_startup():
    """Log where state and config live."""
    logger.info("=== Focus Blocks Startup ===")
    logger.info(f"DB path: {paths.db_path()}")
    logger.info(f"Config path: {paths.config_path()} (exists: {paths.config_path().exists()})")


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.get("/api/config")
async def get_config(prefs: SchedulerPreferences = Depends(get_preferences)):
    """Effective scheduler preferences."""
    return {
        "working_hours": {
            "start": prefs.working_hours_start.strftime("%H:%M"),
            "end": prefs.working_hours_end.strftime("%H:%M"),
        },
        "timezone": prefs.timezone,
        "scheduling_horizon_days": prefs.scheduling_horizon_days,
        "daily_capacity_minutes": prefs.daily_capacity_minutes,
        "buffer_minutes": prefs.buffer_minutes,
        "default_duration_minutes": prefs.default_duration_minutes,
    }


# ==== Main ====


def main():
    """Run the server."""
    settings = load_logging_settings()
    configure_logging(settings["level"], settings["json"])
    get_gateway()

    port = int(os.environ.get("PORT", 8420))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
