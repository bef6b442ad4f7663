"""
Safe filesystem operations for treeserve
"""

import asyncio
import os
import posixpath
import secrets
import shutil
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncGenerator, List, Optional, Tuple, Union
import aiofiles
import aiofiles.os
from fastapi import UploadFile

from .models import FileInfo, SORT_FIELDS
from .ranges import ByteRange, parse_http_range
from .utils import get_mime_type, normalize_path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# In-flight uploads; hidden from listings
UPLOAD_PART_PREFIX = ".treeserve-upload-"

PathLike = Union[str, Path]


class FileSystemError(Exception):
    """Filesystem operation failure reported back to the client"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class PathEscapeError(FileSystemError):
    """Raised when a client path would leave the root directory"""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class NotFoundError(FileSystemError):
    """Raised when the resolved path does not exist"""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


def _escape(rel_path: str, reason: str) -> PathEscapeError:
    logger.warning(f"Path escape attempt blocked ({reason}): {rel_path!r}")
    return PathEscapeError(f"Invalid path: {rel_path}")


def _ensure_within(base: str, candidate: str, rel_path: str) -> None:
    relative = os.path.relpath(candidate, base)
    if relative == os.pardir or relative.startswith(os.pardir + os.sep):
        raise _escape(rel_path, "leaves root")


def resolve_path(root: PathLike, rel_path: Optional[str]) -> Path:
    """
    Confine a client-supplied relative path to ``root``

    The check is lexical: ``.``, ``..`` and empty segments are collapsed
    without touching the filesystem, so symlinks already on disk are not
    followed or judged.

    Args:
        root: Root directory
        rel_path: Relative path sent by the client ("" means the root)

    Returns:
        Absolute path equal to root or below it

    Raises:
        PathEscapeError: If the path is absolute or climbs above root
    """
    base = os.path.normpath(os.path.abspath(os.fspath(root)))
    rel = normalize_path(rel_path or "")

    if '\x00' in rel:
        raise _escape(rel, "NUL byte")

    if rel.startswith('/') or os.path.isabs(rel) or os.path.splitdrive(rel)[0]:
        raise _escape(rel, "absolute path")

    cleaned = posixpath.normpath(rel) if rel else "."
    joined = os.path.normpath(os.path.join(base, cleaned))
    _ensure_within(base, joined, rel)

    return Path(joined)


def resolve_child(root: PathLike, directory: PathLike, name: Optional[str]) -> Path:
    """Resolve ``name`` inside an already resolved directory, re-checked against root"""
    candidate = resolve_path(directory, name)
    base = os.path.normpath(os.path.abspath(os.fspath(root)))
    _ensure_within(base, os.fspath(candidate), name or "")
    return candidate


def relative_display_path(rel_dir: str, name: str) -> str:
    """Client-facing path of ``name`` inside ``rel_dir``"""
    rel_dir = normalize_path(rel_dir or "").strip('/')
    return f"{rel_dir}/{name}" if rel_dir else name


def normalize_sort(sort: Optional[str], order: Optional[str]) -> Tuple[str, str]:
    """Fill in listing sort defaults: name ascending, time descending"""
    if sort not in SORT_FIELDS:
        sort = "name"
    if order not in ("asc", "desc"):
        order = "desc" if sort == "time" else "asc"
    return sort, order


def sort_entries(entries: List[FileInfo], sort: str, order: str) -> List[FileInfo]:
    """Sort listing entries in place and return them"""
    if sort == "time":
        key = lambda entry: entry.modified
    elif sort == "size":
        key = lambda entry: entry.size
    else:
        key = lambda entry: entry.name.lower()

    entries.sort(key=key, reverse=(order == "desc"))
    return entries


async def _lexists(path: Path) -> bool:
    # Dangling symlinks still count as present
    return await asyncio.to_thread(os.path.lexists, path)


def _remove_tree_or_file(path: Path) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)


async def list_directory(root: PathLike, rel_dir: str) -> List[FileInfo]:
    """
    List directory contents safely

    Args:
        root: Root directory
        rel_dir: Relative path of the directory

    Returns:
        List of FileInfo objects, unsorted

    Raises:
        FileSystemError: If the directory cannot be read
    """

    dir_path = resolve_path(root, rel_dir)

    if not await aiofiles.os.path.isdir(dir_path):
        raise NotFoundError(f"Directory not found: {rel_dir}")

    try:
        names = await aiofiles.os.listdir(dir_path)
    except OSError as e:
        raise FileSystemError(f"Failed to list directory: {e}", status_code=500)

    entries = []
    for name in names:
        if name.startswith(UPLOAD_PART_PREFIX):
            continue
        entry_path = dir_path / name
        try:
            stat = await aiofiles.os.stat(entry_path)
            is_dir = await aiofiles.os.path.isdir(entry_path)
        except OSError as e:
            logger.warning(f"Failed to stat {entry_path}: {e}")
            continue

        entries.append(FileInfo(
            name=name,
            path=relative_display_path(rel_dir, name),
            size=0 if is_dir else stat.st_size,
            is_dir=is_dir,
            modified=stat.st_mtime,
            mime_type="" if is_dir else get_mime_type(entry_path)
        ))

    return entries


async def create_entry(root: PathLike, rel_dir: str, name: str, kind: str) -> Path:
    """
    Create an empty file or a folder inside ``rel_dir``

    Raises:
        FileSystemError: If the name is empty, the type unknown, or creation fails
    """
    if not name:
        raise FileSystemError("Name must not be empty")
    if kind not in ("file", "folder"):
        raise FileSystemError(f"Invalid type: {kind}")

    dir_path = resolve_path(root, rel_dir)
    target = resolve_child(root, dir_path, name)

    if kind == "file":
        if await aiofiles.os.path.exists(target):
            raise FileSystemError(f"File already exists: {name}", status_code=409)
        try:
            async with aiofiles.open(target, 'xb'):
                pass
        except FileExistsError:
            raise FileSystemError(f"File already exists: {name}", status_code=409)
        except OSError as e:
            raise FileSystemError(f"Failed to create file: {e}", status_code=500)
    else:
        try:
            await aiofiles.os.mkdir(target)
        except FileExistsError:
            raise FileSystemError(f"Folder already exists: {name}", status_code=409)
        except OSError as e:
            raise FileSystemError(f"Failed to create folder: {e}", status_code=500)

    logger.info(f"Created {kind}: {target}")
    return target


async def delete_entry(root: PathLike, rel_dir: str, name: str) -> Path:
    """
    Delete a file, or a directory with everything below it

    Raises:
        FileSystemError: If the target is the root itself, missing, or removal fails
    """
    if not name:
        raise FileSystemError("No file specified")

    dir_path = resolve_path(root, rel_dir)
    target = resolve_child(root, dir_path, name)

    if target == resolve_path(root, ""):
        raise FileSystemError("Refusing to delete the root directory")

    if not await _lexists(target):
        raise NotFoundError(f"Path not found: {relative_display_path(rel_dir, name)}")

    try:
        await asyncio.to_thread(_remove_tree_or_file, target)
    except OSError as e:
        raise FileSystemError(f"Failed to delete: {e}", status_code=500)

    logger.info(f"Deleted: {target}")
    return target


async def rename_entry(root: PathLike, rel_dir: str, old_name: str, new_name: str) -> Path:
    """
    Rename an entry of ``rel_dir``; both names are confined to root

    Raises:
        FileSystemError: If a name is missing, the source is absent or the
            destination already exists
    """
    if not old_name or not new_name:
        raise FileSystemError("Missing old or new name")

    dir_path = resolve_path(root, rel_dir)
    old_path = resolve_child(root, dir_path, old_name)
    new_path = resolve_child(root, dir_path, new_name)

    root_path = resolve_path(root, "")
    if root_path in (old_path, new_path):
        raise FileSystemError("Refusing to rename the root directory")

    if not await _lexists(old_path):
        raise NotFoundError(f"Source path not found: {old_name}")

    if await _lexists(new_path):
        raise FileSystemError(f"Destination already exists: {new_name}", status_code=409)

    try:
        await aiofiles.os.rename(old_path, new_path)
    except OSError as e:
        raise FileSystemError(f"Failed to rename: {e}", status_code=500)

    logger.info(f"Renamed: {old_path} -> {new_path}")
    return new_path


async def resolve_upload_target(root: PathLike, rel_dir: str, filename: str) -> Path:
    """
    Work out where an uploaded file goes

    Raises:
        FileSystemError: If the directory is missing or the filename is unusable
    """
    if not filename:
        raise FileSystemError("Uploaded file has no name")

    dir_path = resolve_path(root, rel_dir)
    if not await aiofiles.os.path.isdir(dir_path):
        raise NotFoundError(f"Directory not found: {rel_dir}")

    target = resolve_child(root, dir_path, filename)
    if target == dir_path or await aiofiles.os.path.isdir(target):
        raise FileSystemError(f"Invalid file name: {filename}")

    return target


async def save_uploaded_file(
    target: Path,
    upload_file: UploadFile,
    max_size: Optional[int] = None,
) -> int:
    """
    Copy an upload into ``target``, replacing any existing file

    The data goes to a sibling part file first and is moved over ``target``
    only once the whole upload has been written, so a rejected or broken
    upload leaves the previous file untouched.

    Args:
        target: Resolved destination path
        upload_file: FastAPI UploadFile object
        max_size: Optional maximum file size in bytes

    Returns:
        Number of bytes written

    Raises:
        FileSystemError: If the file is too large or cannot be written
    """
    part_path = target.with_name(f"{UPLOAD_PART_PREFIX}{secrets.token_hex(8)}-{target.name}")

    try:
        handle = await aiofiles.open(part_path, 'xb')
    except OSError as e:
        raise FileSystemError(f"Failed to create file: {e}", status_code=500)

    bytes_written = 0
    try:
        try:
            while True:
                chunk = await upload_file.read(CHUNK_SIZE)
                if not chunk:
                    break

                bytes_written += len(chunk)
                if max_size is not None and bytes_written > max_size:
                    raise FileSystemError(f"File too large (max: {max_size} bytes)", status_code=413)

                await handle.write(chunk)
        finally:
            await handle.close()

        await aiofiles.os.replace(part_path, target)

    except FileSystemError:
        await _remove_partial(part_path)
        raise
    except OSError as e:
        await _remove_partial(part_path)
        raise FileSystemError(f"Failed to save file: {e}", status_code=500)

    logger.info(f"Uploaded file: {target} ({bytes_written} bytes)")
    return bytes_written


async def _remove_partial(target: Path) -> None:
    try:
        await aiofiles.os.remove(target)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove partial upload {target}: {e}")


@dataclass
class DownloadStream:
    """An opened download: body iterator plus what the headers need"""
    body: AsyncGenerator[bytes, None]
    filename: str
    total_size: int
    modified: float
    byte_range: Optional[ByteRange] = None

    @property
    def partial(self) -> bool:
        return self.byte_range is not None

    @property
    def content_length(self) -> int:
        if self.byte_range is not None:
            return self.byte_range.length
        return self.total_size


async def open_file_for_download(
    root: PathLike,
    rel_dir: str,
    filename: str,
    range_header: Optional[str] = None,
) -> DownloadStream:
    """
    Open file for download with optional range support

    Args:
        root: Root directory
        rel_dir: Relative directory of the file
        filename: File name inside ``rel_dir``
        range_header: Raw Range header, if the client sent one

    Returns:
        DownloadStream whose body yields exactly ``content_length`` bytes

    Raises:
        FileSystemError: If the path is invalid, missing or a directory
        RangeError: If the Range header cannot be served
    """
    if not filename:
        raise FileSystemError("No file specified")

    dir_path = resolve_path(root, rel_dir)
    file_path = resolve_child(root, dir_path, filename)

    try:
        stat = await aiofiles.os.stat(file_path)
    except FileNotFoundError:
        raise NotFoundError(f"File not found: {relative_display_path(rel_dir, filename)}")
    except OSError as e:
        raise FileSystemError(f"Failed to stat file: {e}", status_code=500)

    if await aiofiles.os.path.isdir(file_path):
        raise FileSystemError(f"Cannot download a directory: {filename}")

    total_size = stat.st_size
    byte_range = parse_http_range(range_header, total_size) if range_header else None

    if byte_range is not None:
        start, remaining = byte_range.start, byte_range.length
    else:
        start, remaining = 0, total_size

    try:
        handle = await aiofiles.open(file_path, 'rb')
    except OSError as e:
        raise FileSystemError(f"Failed to open file: {e}", status_code=500)

    async def file_generator():
        nonlocal remaining
        try:
            if start:
                await handle.seek(start)
            while remaining > 0:
                chunk = await handle.read(min(CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk
        finally:
            await handle.close()

    return DownloadStream(
        body=file_generator(),
        filename=file_path.name,
        total_size=total_size,
        modified=stat.st_mtime,
        byte_range=byte_range,
    )
