"""
API routes for treeserve
"""

from __future__ import annotations

import logging
from typing import List
from urllib.parse import urlencode

from fastapi import APIRouter, Request, HTTPException, UploadFile, File, Form, Depends
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import BaseModel
from starlette.types import Receive, Scope, Send

from .models import ApiResponse, ResponseCode, Config, AUTH_COOKIE
from .auth import authenticate, presented_tokens, LOGIN_PATH
from .tokens import TokenStore
from .storage_server import StorageServer, FileSystemError
from .ranges import RangeError, unsatisfied_content_range
from .utils import create_response_headers, content_disposition, build_breadcrumbs

logger = logging.getLogger(__name__)

api_router = APIRouter(tags=["api"])


class DownloadResponse(StreamingResponse):
    """Streaming response that always closes its file body.

    A failed send (client gone mid-transfer) leaves the body generator
    suspended; it is closed here so the file handle is released at once.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()


class LoginRequest(BaseModel):
    username: str
    password: str
    remember_me: bool = False


def get_app_config(request: Request) -> Config:
    return request.app.state.config


def get_storage(request: Request) -> StorageServer:
    return request.app.state.storage


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.token_store


def _fs_http_exception(exc: FileSystemError) -> HTTPException:
    """Convert a FileSystemError into a HTTPException."""

    status_code = getattr(exc, "status_code", 400) or 400
    if status_code == 404:
        code = ResponseCode.NOT_FOUND.value
    elif status_code == 409:
        code = ResponseCode.CONFLICT.value
    elif status_code >= 500:
        code = ResponseCode.INTERNAL_ERROR.value
    elif status_code == 400:
        code = ResponseCode.BAD_REQUEST.value
    else:
        code = ResponseCode.ERROR.value

    return HTTPException(
        status_code=status_code,
        detail=ApiResponse(
            code=code,
            msg=str(exc),
            data=None,
        ).to_dict(),
    )


def _is_ajax(request: Request) -> bool:
    return request.headers.get("X-Requested-With") == "XMLHttpRequest"


# Session endpoints
@api_router.post("/api/login")
async def login(
    request: Request,
    config: Config = Depends(get_app_config),
    token_store: TokenStore = Depends(get_token_store),
):
    """Exchange the configured credentials for a session token"""

    try:
        payload = await request.json()
        if not isinstance(payload, dict):
            raise ValueError("login body must be a JSON object")
        login_req = LoginRequest(**payload)
    except ValueError as exc:
        logger.info(f"Malformed login request: {exc}")
        return JSONResponse(status_code=400, content={"error": "Invalid request format"})

    if not authenticate(config.auth, login_req.username, login_req.password):
        return JSONResponse(status_code=401, content={"error": "Invalid username or password"})

    if login_req.remember_me:
        duration = config.auth.remember_seconds
    else:
        duration = config.auth.session_seconds

    token_info = token_store.issue(duration)

    response = JSONResponse(content=token_info.to_dict())
    response.set_cookie(
        AUTH_COOKIE,
        token_info.token,
        max_age=int(duration),
        path="/",
        httponly=True,
        samesite="lax",
        secure=config.server.tls.enabled,
    )
    return response


@api_router.get("/logout")
async def logout(request: Request, token_store: TokenStore = Depends(get_token_store)):
    """Revoke the presented token and clear the session cookie"""

    for token in presented_tokens(request):
        token_store.revoke(token)

    response = RedirectResponse(url=LOGIN_PATH, status_code=302)
    response.delete_cookie(AUTH_COOKIE, path="/", httponly=True)
    return response


@api_router.get("/download")
async def download_file(
    request: Request,
    file: str = "",
    path: str = "",
    storage: StorageServer = Depends(get_storage),
):
    """Download file with range support"""

    range_header = request.headers.get("Range")

    try:
        stream = await storage.open_for_download(path, file, range_header)
    except FileSystemError as e:
        raise _fs_http_exception(e)
    except RangeError as e:
        logger.info(f"Unsatisfiable range {range_header!r} for {file!r}: {e}")
        headers = {}
        if e.total_length is not None:
            headers["Content-Range"] = unsatisfied_content_range(e.total_length)
        raise HTTPException(
            status_code=416,
            detail=ApiResponse(
                code=ResponseCode.RANGE_NOT_SATISFIABLE.value,
                msg=str(e),
                data=None,
            ).to_dict(),
            headers=headers,
        )

    headers = create_response_headers(
        content_length=stream.content_length,
        content_type="application/octet-stream",
        last_modified=stream.modified,
    )
    headers["Content-Disposition"] = content_disposition(stream.filename)

    if stream.partial:
        headers["Content-Range"] = stream.byte_range.content_range(stream.total_size)
        status_code = 206
    else:
        status_code = 200

    return DownloadResponse(
        stream.body,
        status_code=status_code,
        headers=headers,
        media_type="application/octet-stream",
    )


@api_router.get("/list")
async def list_files(
    path: str = "",
    sort: str = "name",
    order: str = "",
    storage: StorageServer = Depends(get_storage),
):
    """List directory contents"""

    try:
        files, sort, order = await storage.list_files(path, sort, order)
    except FileSystemError as e:
        raise _fs_http_exception(e)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="success",
        data={
            "path": path,
            "sort": sort,
            "order": order,
            "breadcrumbs": [crumb.to_dict() for crumb in build_breadcrumbs(path)],
            "files": [f.to_dict() for f in files],
        }
    ).to_dict()


@api_router.post("/upload")
async def upload_files(
    path: str = "",
    files: List[UploadFile] = File(..., alias="files[]"),
    config: Config = Depends(get_app_config),
    storage: StorageServer = Depends(get_storage),
):
    """Upload one or more files into a directory"""

    uploaded = []
    try:
        for upload in files:
            size = await storage.upload_file(
                path,
                upload.filename or "",
                upload,
                max_size=config.ui.maxUploadSize,
            )
            uploaded.append({"filename": upload.filename, "size": size})
    except FileSystemError as e:
        raise _fs_http_exception(e)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="Files uploaded successfully",
        data={"path": path, "files": uploaded},
    ).to_dict()


@api_router.api_route("/delete", methods=["GET", "POST"])
async def delete_item(
    request: Request,
    file: str = "",
    path: str = "",
    storage: StorageServer = Depends(get_storage),
):
    """Delete a file or a directory tree"""

    try:
        await storage.delete(path, file)
    except FileSystemError as e:
        raise _fs_http_exception(e)

    if not _is_ajax(request):
        return RedirectResponse(url="/?" + urlencode({"path": path}), status_code=302)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="Deleted successfully",
        data={"path": path, "file": file},
    ).to_dict()


@api_router.post("/create")
async def create_item(
    kind: str = Form("", alias="type"),
    name: str = Form(""),
    path: str = Form(""),
    storage: StorageServer = Depends(get_storage),
):
    """Create an empty file or a folder"""

    try:
        await storage.create(path, name, kind)
    except FileSystemError as e:
        raise _fs_http_exception(e)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="File created successfully" if kind == "file" else "Folder created successfully",
        data={"path": path, "name": name, "type": kind},
    ).to_dict()


@api_router.post("/rename")
async def rename_item(
    old: str = Form(""),
    new: str = Form(""),
    path: str = Form(""),
    storage: StorageServer = Depends(get_storage),
):
    """Rename file or directory"""

    try:
        await storage.rename(path, old, new)
    except FileSystemError as e:
        raise _fs_http_exception(e)

    return ApiResponse(
        code=ResponseCode.SUCCESS.value,
        msg="Renamed successfully",
        data={"path": path, "old": old, "new": new},
    ).to_dict()


def setup_api_routes(app):
    """Setup API routes"""
    app.include_router(api_router)
    logger.info("API routes setup complete")
