import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from filevault.config import Settings, get_settings
from filevault.core.security import TokenKeys, make_password_context
from filevault.database import build_engine, build_session_maker, create_tables
from filevault.routes.auth import router as auth_router
from filevault.routes.files import router as file_router
from filevault.routes.stats import router as stats_router
from filevault.services.stats import StatsCache
from filevault.services.uploads import UploadPipeline
from filevault.storage.local import LocalStorage

log = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    app.state.storage.ensure_root()
    await create_tables(app.state.engine)
    log.info("Storage root %s, database %s", settings.STORAGE_ROOT, app.state.engine.url.render_as_string())
    try:
        yield
    finally:
        await app.state.engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="filevault", lifespan=lifespan)

    engine = build_engine(settings)
    storage = LocalStorage(settings.STORAGE_ROOT)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_maker = build_session_maker(engine)
    app.state.storage = storage
    app.state.token_keys = TokenKeys.from_secret(settings.JWT_SECRET)
    app.state.pwd_context = make_password_context(
        time_cost=settings.ARGON2_TIME_COST,
        memory_cost=settings.ARGON2_MEMORY_COST,
        parallelism=settings.ARGON2_PARALLELISM,
    )
    app.state.upload_pipeline = UploadPipeline(storage, settings.MAX_UPLOAD_BYTES)
    app.state.stats_cache = StatsCache(refresh_interval=settings.stats_refresh_seconds)

    app.include_router(auth_router)
    app.include_router(file_router)
    app.include_router(stats_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
