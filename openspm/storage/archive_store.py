"""
Blob store persisted as a single gzip-compressed tar archive.

Every mutation reads the whole archive into memory, applies the change and
rewrites the archive to a temporary file that is then renamed over the old
one. Mutations on one instance are serialized by a lock; the archive is not
safe for concurrent use from several processes.
"""
from __future__ import annotations

import io
import logging
import os
import tarfile
import tempfile
import threading
import time
import zlib
from pathlib import Path
from typing import Dict, List

from openspm.domain.errors import BlobNotFoundError, InvalidDataError, StoreError
from openspm.storage.db_manager import BlobStore

logger = logging.getLogger(__name__)

ARCHIVE_FILE_NAME = "data.bin"
ENTRY_MODE = 0o644

_READ_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error)


class ArchiveBlobStore(BlobStore):
    def __init__(self, archive_path: Path):
        self._archive_path = Path(archive_path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._archive_path

    def ensure_created(self) -> None:
        with self._lock:
            if self._archive_path.exists():
                return
            try:
                self._archive_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(f"Failed to create data directory {self._archive_path.parent}: {e}") from e
            self._write_all({})
            logger.debug(f"Created empty blob store at {self._archive_path}")

    def put(self, name: str, data: bytes) -> None:
        self._check_name(name)
        with self._lock:
            entries = self._read_all() if self._archive_path.exists() else {}
            entries[name] = bytes(data)
            self._write_all(entries)
        logger.debug(f"Stored blob {name} ({len(data)} bytes)")

    def get(self, name: str) -> bytes:
        with self._lock:
            self._require_archive(name)
            try:
                with tarfile.open(self._archive_path, mode="r:gz") as tar:
                    for member in tar:
                        if member.name == name and member.isfile():
                            return self._read_member(tar, member)
            except _READ_ERRORS as e:
                raise StoreError(f"Failed to read blob store {self._archive_path}: {e}") from e
        raise BlobNotFoundError(name)

    def delete(self, name: str) -> None:
        with self._lock:
            self._require_archive(name)
            entries = self._read_all()
            if name not in entries:
                raise BlobNotFoundError(name)
            del entries[name]
            self._write_all(entries)
        logger.debug(f"Deleted blob {name}")

    def list(self) -> List[str]:
        with self._lock:
            self._require_archive(self._archive_path.name)
            try:
                with tarfile.open(self._archive_path, mode="r:gz") as tar:
                    return [m.name for m in tar.getmembers() if m.isfile()]
            except _READ_ERRORS as e:
                raise StoreError(f"Failed to read blob store {self._archive_path}: {e}") from e

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_name(name: str) -> None:
        if not isinstance(name, str) or not name:
            raise InvalidDataError("Blob name must be a non-empty string")

    def _require_archive(self, name: str) -> None:
        if not self._archive_path.exists():
            raise BlobNotFoundError(
                name,
                recovery_hint=f"The blob store {self._archive_path} has not been created yet.",
            )

    def _read_member(self, tar: tarfile.TarFile, member: tarfile.TarInfo) -> bytes:
        handle = tar.extractfile(member)
        if handle is None:
            raise StoreError(f"Blob {member.name} is not a regular file")
        data = handle.read()
        if len(data) != member.size:
            raise StoreError(
                f"Blob {member.name} is truncated: expected {member.size} bytes, read {len(data)}"
            )
        return data

    def _read_all(self) -> Dict[str, bytes]:
        entries: Dict[str, bytes] = {}
        try:
            with tarfile.open(self._archive_path, mode="r:gz") as tar:
                for member in tar:
                    if member.isfile():
                        entries[member.name] = self._read_member(tar, member)
        except _READ_ERRORS as e:
            raise StoreError(f"Failed to read blob store {self._archive_path}: {e}") from e
        return entries

    def _write_all(self, entries: Dict[str, bytes]) -> None:
        # Rewrite into a sibling temp file so a crash never leaves a half-written archive.
        try:
            self._archive_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._archive_path.name}.",
                suffix=".tmp",
                dir=str(self._archive_path.parent),
            )
        except OSError as e:
            raise StoreError(f"Failed to write blob store {self._archive_path}: {e}") from e
        try:
            with os.fdopen(fd, "wb") as raw:
                with tarfile.open(fileobj=raw, mode="w:gz", format=tarfile.PAX_FORMAT) as tar:
                    mtime = int(time.time())
                    for name in sorted(entries):
                        content = entries[name]
                        info = tarfile.TarInfo(name)
                        info.size = len(content)
                        info.mode = ENTRY_MODE
                        info.type = tarfile.REGTYPE
                        info.mtime = mtime
                        tar.addfile(info, io.BytesIO(content))
                raw.flush()
                os.fsync(raw.fileno())
            os.replace(tmp_name, self._archive_path)
        except (tarfile.TarError, OSError) as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreError(f"Failed to write blob store {self._archive_path}: {e}") from e
