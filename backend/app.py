from pathlib import Path

from fastapi import FastAPI

from backend.routes import router
from nearfield.config import Settings, load_settings
from nearfield.engine import build_engine
from nearfield.scheduling import Scheduler


def create_app(
    data_dir: Path | None = None,
    *,
    settings: Settings | None = None,
    scheduler: Scheduler | None = None,
) -> FastAPI:
    """Build the API around a fresh engine.

    Run with ``uvicorn backend.app:create_app --factory``.
    """
    resolved = settings or load_settings(data_dir)

    app = FastAPI(title="Nearfield")
    app.state.engine = build_engine(resolved, scheduler=scheduler)
    app.include_router(router, prefix="/api")
    return app
