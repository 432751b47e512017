"""Blob storage for chat image uploads."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable
from urllib.parse import quote

from loguru import logger

from ..utils.error_handler import TransientBackendError, ValidationError

ProgressListener = Callable[[int, int], None]


class BlobStore(ABC):
    """Uploads binary payloads and returns a URL they can be fetched from."""

    @abstractmethod
    def upload_blob(
        self,
        path: str,
        data: bytes,
        content_type: str,
        on_progress: ProgressListener | None = None,
    ) -> str:
        """Store ``data`` under ``path`` and return its download URL.

        ``on_progress`` is called with ``(bytes_transferred, total_bytes)``
        after every chunk.  Failures raise :class:`TransientBackendError`.
        """


class LocalBlobStore(BlobStore):
    """Writes blobs below a root directory in fixed-size chunks."""

    def __init__(self, root: str | Path, base_url: str, chunk_size: int = 64 * 1024) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.chunk_size = chunk_size

    def upload_blob(
        self,
        path: str,
        data: bytes,
        content_type: str,
        on_progress: ProgressListener | None = None,
    ) -> str:
        target = self._target(path)
        total = len(data)
        logger.debug("Uploading {} bytes of {} to {}", total, content_type, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            transferred = 0
            with target.open("wb") as handle:
                if total == 0 and on_progress is not None:
                    on_progress(0, 0)
                while transferred < total:
                    chunk = data[transferred : transferred + self.chunk_size]
                    handle.write(chunk)
                    transferred += len(chunk)
                    if on_progress is not None:
                        on_progress(transferred, total)
        except OSError as exc:
            logger.exception("Failed to write blob {}", path)
            target.unlink(missing_ok=True)
            raise TransientBackendError("Failed to upload blob") from exc
        return f"{self.base_url}/{quote(path)}"

    def _target(self, path: str) -> Path:
        segments = [segment for segment in path.split("/") if segment]
        if not segments or any(segment in (".", "..") for segment in segments):
            raise ValidationError(f"Invalid blob path '{path}'")
        return self.root.joinpath(*segments)
