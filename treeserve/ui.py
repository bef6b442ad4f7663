"""
UI routes and template rendering for treeserve
"""

import logging
from pathlib import Path
from fastapi import APIRouter, Request, Depends
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from .models import Config
from .api import get_app_config, get_storage
from .storage_server import StorageServer, FileSystemError
from .utils import build_breadcrumbs, format_file_size, format_timestamp

logger = logging.getLogger(__name__)

# UI router
ui_router = APIRouter(tags=["ui"])

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.filters["filesize"] = format_file_size
templates.env.filters["timestamp"] = format_timestamp


@ui_router.get("/", response_class=HTMLResponse, name="index")
async def index(
    request: Request,
    path: str = "",
    sort: str = "name",
    order: str = "",
    config: Config = Depends(get_app_config),
    storage: StorageServer = Depends(get_storage),
):
    """Directory browser"""

    context = {
        "title": config.ui.title,
        "auth_enabled": config.auth.enabled,
        "current_path": path,
        "breadcrumbs": build_breadcrumbs(path),
        "files": [],
        "sort": sort,
        "order": order,
        "error": None,
    }

    try:
        files, context["sort"], context["order"] = await storage.list_files(path, sort, order)
        context["files"] = files
    except FileSystemError as e:
        context["error"] = str(e)
        return templates.TemplateResponse(request, "index.html", context, status_code=e.status_code)

    return templates.TemplateResponse(request, "index.html", context)


@ui_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, config: Config = Depends(get_app_config)):
    """Login page"""

    return templates.TemplateResponse(request, "login.html", {"title": config.ui.title})


def setup_ui_routes(app):
    """Setup UI routes"""
    app.include_router(ui_router)
    logger.info("UI routes setup complete")
