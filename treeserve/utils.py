"""
Utility functions for treeserve
"""

import mimetypes
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from .models import Breadcrumb, DEFAULT_MIME_TYPE

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")
HTTP_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"


def get_mime_type(file_path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return mime_type or DEFAULT_MIME_TYPE


def format_file_size(size_bytes: int) -> str:
    """Listing size: whole bytes below 1 KB, two decimals above"""
    value = float(size_bytes)
    unit = 0
    while value >= 1024 and unit < len(SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{size_bytes} B"
    return f"{value:.2f} {SIZE_UNITS[unit]}"


def format_timestamp(timestamp: float) -> str:
    """Local modification time for the listing page"""
    try:
        return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, OSError, OverflowError):
        return "-"


def normalize_path(path: str) -> str:
    """Accept Windows separators from clients"""
    return path.replace('\\', '/')


def build_breadcrumbs(rel_dir: str) -> List[Breadcrumb]:
    """Navigation trail from the root down to ``rel_dir``"""
    crumbs = [Breadcrumb(name="Home", path="")]
    cumulative = ""
    for part in normalize_path(rel_dir).split('/'):
        if not part:
            continue
        cumulative = f"{cumulative}/{part}" if cumulative else part
        crumbs.append(Breadcrumb(name=part, path=cumulative))
    return crumbs


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and an RFC 5987 name"""
    fallback_name = "".join(
        ch if 32 <= ord(ch) < 127 and ch not in {'"', '\\'} else "_"
        for ch in filename
    ) or "download"
    return f"attachment; filename=\"{fallback_name}\"; filename*=UTF-8''{quote(filename, safe='')}"


def create_response_headers(
    content_length: Optional[int] = None,
    content_type: str = "application/octet-stream",
    last_modified: Optional[float] = None,
) -> dict:
    """Headers shared by full and partial downloads"""
    headers = {
        "Content-Type": content_type,
        "Accept-Ranges": "bytes",
        "Cache-Control": "no-cache",
        "X-Content-Type-Options": "nosniff",
    }
    if content_length is not None:
        headers["Content-Length"] = str(content_length)
    if last_modified:
        headers["Last-Modified"] = time.strftime(HTTP_DATE_FORMAT, time.gmtime(last_modified))
    return headers
