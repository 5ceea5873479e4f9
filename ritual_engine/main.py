"""
Ritual Engine - Main Application
Ritual registry + completion log + streaks + analytics + templates.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ritual_engine import __version__
from ritual_engine.api import rituals, templates
from ritual_engine.config import Settings, settings
from ritual_engine.db import Database
from ritual_engine.errors import RitualEngineError
from ritual_engine.schema.response import APIResponse

logger = logging.getLogger("ritual_engine")


def _error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    body = APIResponse(success=False, error=message, error_kind=kind)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _first_field(exc: RequestValidationError) -> Optional[str]:
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        if loc:
            return ".".join(loc)
    return None


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Build an application bound to ``app_settings`` (defaults to the environment)."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=app_settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        database = Database(app_settings.db_url, echo=app_settings.db_echo)
        if app_settings.env != "prod":
            await database.create_all()
        app.state.database = database
        logger.info("ritual_engine_started", extra={"env": app_settings.env, "version": __version__})

        yield

        await database.dispose()
        logger.info("ritual_engine_stopped")

    app = FastAPI(
        title="Ritual Engine",
        description="Ritual tracking: definitions, completion log, streaks and analytics.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.clock = clock

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RitualEngineError)
    async def ritual_engine_error_handler(request: Request, exc: RitualEngineError):
        return _error_response(exc.status_code, exc.kind, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        field = _first_field(exc)
        message = f"{field}: invalid value" if field else "malformed request"
        return _error_response(422, "ValidationError", message)

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("storage_error", extra={"path": request.url.path})
        return _error_response(500, "StorageError", "Internal storage error")

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    @app.get("/health/db")
    async def database_health(request: Request):
        healthy = await request.app.state.database.health_check()
        return {"status": "ok" if healthy else "degraded", "database": healthy}

    app.include_router(rituals.router, prefix="/api")
    app.include_router(templates.router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("ritual_engine.main:app", host="0.0.0.0", port=8000, reload=settings.env == "dev")
