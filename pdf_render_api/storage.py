"""Local storage for generated PDFs with time-based expiry."""

from __future__ import annotations

import errno
import logging
import os
import re
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

from .errors import InvalidNameError, NotFoundError, StorageError
from .formatting import fmt_timestamp

logger = logging.getLogger(__name__)

FILENAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+\.pdf")
MAX_NAME_LENGTH = 100
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def is_valid_filename(filename: str) -> bool:
    return bool(filename) and FILENAME_PATTERN.fullmatch(filename) is not None


def sanitize_filename(hint: str) -> Optional[str]:
    """Turn a caller-supplied name into an allowed artifact filename."""
    stem = hint.strip()
    if stem.lower().endswith(".pdf"):
        stem = stem[:-4]
    stem = _UNSAFE_CHARS.sub("", stem)[:MAX_NAME_LENGTH]
    if not stem:
        return None
    return f"{stem}.pdf"


def generate_filename() -> str:
    return f"{secrets.token_hex(20)}.pdf"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_missing(exc: OSError) -> bool:
    return isinstance(exc, FileNotFoundError) or exc.errno == errno.ENOENT


@dataclass(frozen=True)
class PdfArtifact:
    filename: str
    path: str
    created_at: datetime
    size_bytes: int
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) > self.expires_at

    def status(self, now: Optional[datetime] = None) -> str:
        return "expired" if self.is_expired(now) else "active"

    def to_dict(self, base_url: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "createdAt": fmt_timestamp(self.created_at),
            "expiresAt": fmt_timestamp(self.expires_at),
            "sizeBytes": self.size_bytes,
            "status": self.status(now),
            "downloadUrl": f"{base_url}/download/{self.filename}",
            "viewUrl": f"{base_url}/view/{self.filename}",
        }


class PdfFileStore:
    def __init__(self, directory: str, ttl_seconds: int) -> None:
        self.directory = os.path.abspath(directory)
        self.ttl = timedelta(seconds=ttl_seconds)

    def ensure_directory(self) -> None:
        try:
            os.makedirs(self.directory, exist_ok=True)
        except OSError as exc:
            raise StorageError("Output directory is not writable.", details=str(exc)) from exc

    def path_for(self, filename: str) -> str:
        if not is_valid_filename(filename):
            raise InvalidNameError("Invalid filename format.")
        return os.path.join(self.directory, filename)

    def _artifact(self, filename: str, path: str) -> PdfArtifact:
        stat = os.stat(path)
        created_at = datetime.fromtimestamp(stat.st_mtime, timezone.utc)
        return PdfArtifact(
            filename=filename,
            path=path,
            created_at=created_at,
            size_bytes=stat.st_size,
            expires_at=created_at + self.ttl,
        )

    def create(self, data: bytes, name_hint: Optional[str] = None) -> PdfArtifact:
        filename = sanitize_filename(name_hint) if name_hint else None
        if filename is None:
            filename = generate_filename()
        path = self.path_for(filename)

        # Written beside the target and swapped in with os.replace, so a prior
        # file of the same name is gone the moment the new one appears.
        tmp_path = os.path.join(self.directory, f".{secrets.token_hex(8)}.tmp")
        try:
            self.ensure_directory()
            with open(tmp_path, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
            artifact = self._artifact(filename, path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError as cleanup_exc:
                if not _is_missing(cleanup_exc):
                    logger.warning("Could not remove temp file %s: %s", tmp_path, cleanup_exc)
            raise StorageError("Failed to store PDF.", details=str(exc)) from exc

        logger.info("Stored %s (%d bytes)", filename, artifact.size_bytes)
        return artifact

    def get(self, filename: str, now: Optional[datetime] = None) -> PdfArtifact:
        path = self.path_for(filename)
        try:
            artifact = self._artifact(filename, path)
        except OSError as exc:
            if _is_missing(exc):
                raise NotFoundError("File not found or has expired.") from exc
            raise StorageError("Failed to read PDF.", details=str(exc)) from exc
        if artifact.is_expired(now):
            raise NotFoundError("File not found or has expired.")
        return artifact

    def read(self, filename: str, now: Optional[datetime] = None) -> Tuple[BinaryIO, int]:
        artifact = self.get(filename, now)
        try:
            handle = open(artifact.path, "rb")
        except OSError as exc:
            if _is_missing(exc):
                raise NotFoundError("File not found or has expired.") from exc
            raise StorageError("Failed to read PDF.", details=str(exc)) from exc
        return handle, os.fstat(handle.fileno()).st_size

    def list(self) -> List[PdfArtifact]:
        try:
            names = os.listdir(self.directory)
        except OSError as exc:
            if _is_missing(exc):
                return []
            raise StorageError("Failed to list files.", details=str(exc)) from exc

        artifacts: List[PdfArtifact] = []
        for name in names:
            if not is_valid_filename(name):
                continue
            try:
                artifacts.append(self._artifact(name, os.path.join(self.directory, name)))
            except OSError as exc:
                if not _is_missing(exc):
                    logger.warning("Could not stat %s: %s", name, exc)
        return artifacts

    def delete(self, filename: str) -> bool:
        path = self.path_for(filename)
        try:
            os.unlink(path)
        except OSError as exc:
            if _is_missing(exc):
                return False
            raise StorageError("Failed to delete PDF.", details=str(exc)) from exc
        return True

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """Delete every expired artifact and return the names removed."""
        now = now or _utcnow()
        try:
            artifacts = self.list()
        except StorageError as exc:
            logger.error("Cleanup skipped, cannot read %s: %s", self.directory, exc.details)
            return []

        deleted: List[str] = []
        for artifact in artifacts:
            if not artifact.is_expired(now):
                continue
            try:
                os.unlink(artifact.path)
            except OSError as exc:
                if not _is_missing(exc):
                    logger.warning("Failed to delete expired file %s: %s", artifact.filename, exc)
                continue
            logger.info("Deleted expired file: %s", artifact.filename)
            deleted.append(artifact.filename)
        return deleted


class ExpirySweeper:
    """Background thread that sweeps the store on a fixed interval."""

    def __init__(self, store: PdfFileStore, interval_seconds: float) -> None:
        self.store = store
        self.interval = interval_seconds
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="pdf-expiry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.store.sweep()
            except Exception:
                logger.exception("Expired file sweep failed")
