import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend.routes import router
from daggergm.config import Settings, build_provider
from daggergm.orchestrator import Orchestrator
from daggergm.provider import AdventureProvider
from daggergm.ratelimit import RateLimiter
from daggergm.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(
    data_dir: Path | None = None,
    settings: Settings | None = None,
    provider: AdventureProvider | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    resolved = data_dir or (
        settings.data_dir if "data_dir" in settings.model_fields_set else DEFAULT_DATA_DIR
    )
    storage = Storage(resolved)
    provider = provider or build_provider(settings, storage)

    app = FastAPI(title="DaggerGM")
    app.state.settings = settings
    app.state.storage = storage
    app.state.orchestrator = Orchestrator(
        storage, provider, RateLimiter(enabled=settings.rate_limits_enabled),
    )
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
