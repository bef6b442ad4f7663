"""Server-side storage orchestration layer."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional, Tuple
import logging

from fastapi import UploadFile

from .fs import (
    list_directory,
    create_entry,
    delete_entry,
    rename_entry,
    resolve_upload_target,
    save_uploaded_file,
    open_file_for_download,
    normalize_sort,
    sort_entries,
    DownloadStream,
    FileSystemError,
)
from .models import FileInfo

logger = logging.getLogger(__name__)


class StorageServer:
    """All storage operations on one root directory.

    Whole-directory operations (listing, create, rename, delete) run one at
    a time under a single lock. Uploads take the lock only while their target
    is resolved; downloads never take it.
    """

    def __init__(self, root: Path):
        self.root = root
        self._dir_lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def directory_lock(self) -> asyncio.Lock:
        """The directory lock, bound to the running event loop.

        The server object is built before uvicorn starts its loop, and
        ``asyncio.Lock`` ties itself to a loop on older interpreters, so
        the lock is made on first use inside the loop.
        """
        loop = asyncio.get_running_loop()
        if self._dir_lock is None or self._lock_loop is not loop:
            self._dir_lock = asyncio.Lock()
            self._lock_loop = loop
        return self._dir_lock

    @property
    def locked(self) -> bool:
        return self._dir_lock is not None and self._dir_lock.locked()

    async def list_files(
        self,
        rel_path: str,
        sort: Optional[str] = None,
        order: Optional[str] = None,
    ) -> Tuple[List[FileInfo], str, str]:
        sort, order = normalize_sort(sort, order)
        logger.debug("Listing files", extra={"path": rel_path, "sort": sort, "order": order})
        async with self.directory_lock():
            entries = await list_directory(self.root, rel_path)
        return sort_entries(entries, sort, order), sort, order

    async def upload_file(
        self,
        rel_path: str,
        filename: str,
        upload_file_obj: UploadFile,
        *,
        max_size: Optional[int] = None,
    ) -> int:
        logger.debug("Uploading file", extra={"path": rel_path, "file_name": filename})
        async with self.directory_lock():
            target = await resolve_upload_target(self.root, rel_path, filename)

        return await save_uploaded_file(target, upload_file_obj, max_size=max_size)

    async def create(self, rel_path: str, name: str, kind: str) -> Path:
        logger.debug("Creating entry", extra={"path": rel_path, "entry": name, "kind": kind})
        async with self.directory_lock():
            return await create_entry(self.root, rel_path, name, kind)

    async def rename(self, rel_path: str, old_name: str, new_name: str) -> Path:
        logger.debug(
            "Renaming entry",
            extra={"path": rel_path, "old_name": old_name, "new_name": new_name},
        )
        async with self.directory_lock():
            return await rename_entry(self.root, rel_path, old_name, new_name)

    async def delete(self, rel_path: str, name: str) -> Path:
        logger.debug("Deleting entry", extra={"path": rel_path, "entry": name})
        async with self.directory_lock():
            return await delete_entry(self.root, rel_path, name)

    async def open_for_download(
        self,
        rel_path: str,
        filename: str,
        range_header: Optional[str] = None,
    ) -> DownloadStream:
        logger.debug("Opening file for download", extra={"path": rel_path, "file_name": filename})
        return await open_file_for_download(self.root, rel_path, filename, range_header)


__all__ = ["StorageServer", "FileSystemError"]
