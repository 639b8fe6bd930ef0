"""Application factory that serves both the API and the bundled frontend."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response
from starlette.types import Scope

from .api import create_app as create_api_app
from .api import prepare_database
from .config import Settings, load_settings
from .database import Database
from .resources import Clock

logger = logging.getLogger("tally.application")


class SinglePageStaticFiles(StaticFiles):
    """Serve built frontend assets, answering unknown paths with ``index.html``."""

    async def get_response(self, path: str, scope: Scope) -> Response:
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as exc:
            if exc.status_code != 404:
                raise
            return await super().get_response("index.html", scope)


def create_application(
    *,
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    clock: Optional[Clock] = None,
    initialize_database: bool = False,
) -> FastAPI:
    """Create the combined ASGI application.

    A supplied ``database`` is used as is unless ``initialize_database`` is set.
    """

    settings = settings or load_settings()
    if database is None:
        database = prepare_database(Database(settings.database_path), settings)
    elif initialize_database:
        prepare_database(database, settings)

    api_app = create_api_app(database=database, settings=settings, clock=clock)

    app = FastAPI(
        title="Tally",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Origin", "Content-Type", "Authorization"],
            allow_credentials=True,
        )
    app.state.database = database
    app.state.settings = settings
    app.state.api = api_app

    app.mount(settings.api_prefix or "/", api_app)

    static_dir = settings.static_dir
    if settings.api_prefix and static_dir is not None:
        if _has_index(static_dir):
            app.mount("/", SinglePageStaticFiles(directory=str(static_dir), html=True), name="frontend")
        else:
            logger.warning("Static directory %s has no index.html; frontend hosting disabled", static_dir)

    return app


def _has_index(directory: Path) -> bool:
    return (directory / "index.html").is_file()


__all__ = ["SinglePageStaticFiles", "create_application"]
