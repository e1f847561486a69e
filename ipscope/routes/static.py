# Static assets from settings.static_dir. StaticFiles resolves paths inside
# its directory and rejects traversal; the two root files are fixed names.

from pathlib import Path

import structlog
from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import FileResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles

from ipscope.config import Settings
from ipscope.dependencies import get_settings_dep

logger = structlog.get_logger(__name__)

router = APIRouter()


def mount_static(app: FastAPI, static_dir: str) -> None:
    """Mount /static when the directory exists; skip with a warning otherwise."""
    if not Path(static_dir).is_dir():
        logger.warning("static_dir_missing", path=static_dir)
        return
    app.mount("/static", StaticFiles(directory=static_dir), name="static")


def _serve_root_file(static_dir: str, filename: str) -> Response:
    path = Path(static_dir) / filename
    if not path.is_file():
        return PlainTextResponse("Not found", status_code=404)
    return FileResponse(path)


@router.get("/favicon.ico", include_in_schema=False)
async def favicon(settings: Settings = Depends(get_settings_dep)) -> Response:
    return _serve_root_file(settings.static_dir, "favicon.ico")


@router.get("/robots.txt", include_in_schema=False)
async def robots(settings: Settings = Depends(get_settings_dep)) -> Response:
    return _serve_root_file(settings.static_dir, "robots.txt")
