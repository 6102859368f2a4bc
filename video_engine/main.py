from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from video_engine.api.v1 import get_api_router
from video_engine.core.config import get_settings
from video_engine.core.db import create_engine, create_session_factory
from video_engine.core.errors import HTTP_STATUS_BY_KIND, EngineError
from video_engine.core.logging import configure_logging, get_logger, level_from_name
from video_engine.core.storage import Storage, get_storage
from video_engine.ingest.probe import MediaProbe
from video_engine.services.engine import VideoEngine
from video_engine.services.transcode import TranscodeProvider

logger = get_logger(component="api")


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = HTTP_STATUS_BY_KIND.get(exc.kind, 500)
    log = logger.warning if status_code < 500 else logger.error
    log("request_failed", path=request.url.path, kind=exc.kind.value, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
            "error": exc.to_dict(),
        },
    )


def create_app(
    *,
    provider: Optional[TranscodeProvider] = None,
    probe: Optional[MediaProbe] = None,
    storage: Optional[Storage] = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    storage = storage or get_storage(settings)
    db_engine = create_engine(settings)
    session_factory = create_session_factory(db_engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        video_engine = VideoEngine.from_settings(
            settings,
            session_factory,
            provider=provider,
            probe=probe,
            storage=storage,
        )
        app.state.settings = settings
        app.state.storage = storage
        app.state.db_engine = db_engine
        app.state.session_factory = session_factory
        app.state.video_engine = video_engine
        await video_engine.start()
        try:
            yield
        finally:
            await video_engine.shutdown()
            await db_engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.add_exception_handler(EngineError, engine_error_handler)
    app.include_router(get_api_router())
    return app


__all__ = ["create_app", "engine_error_handler"]
