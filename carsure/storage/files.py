"""Local file store for inspection artifacts (images, PDF reports).

Files land under ``<upload_dir>/rdv/<appointment_id>/`` with random
names; the stored reference is the public URL the web client loads.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from carsure.config import settings
from carsure.errors import UpstreamIO, ValidationError

logger = logging.getLogger(__name__)

IMAGE_TYPES: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}
PDF_TYPES: dict[str, str] = {"application/pdf": ".pdf"}


@dataclass(frozen=True)
class IncomingFile:
    """An uploaded file already read into memory."""

    filename: str
    content_type: str
    data: bytes


class FileStore:
    """Writes artifacts to disk and returns their public references."""

    def __init__(self, root: str | Path, url_prefix: str, max_bytes: int) -> None:
        self._root = Path(root)
        self._url_prefix = url_prefix.rstrip("/")
        self._max_bytes = max_bytes

    def validate(self, file: IncomingFile, allowed: dict[str, str]) -> str:
        """Check size and type; returns the extension to store with."""
        ext = allowed.get(file.content_type)
        if ext is None:
            raise ValidationError(f"Type de fichier non supporté: {file.filename}")
        if not file.data:
            raise ValidationError(f"Fichier vide: {file.filename}")
        if len(file.data) > self._max_bytes:
            raise ValidationError(f"Fichier trop volumineux: {file.filename}")
        return ext

    async def save(self, appointment_id: uuid.UUID, file: IncomingFile, ext: str) -> str:
        name = f"{uuid.uuid4().hex}{ext}"
        relative = Path("rdv") / str(appointment_id) / name
        target = self._root / relative
        try:
            await asyncio.to_thread(self._write, target, file.data)
        except OSError as exc:
            logger.exception("Failed to store %s for appointment %s", file.filename, appointment_id)
            raise UpstreamIO() from exc
        logger.info("Stored %s (%d bytes) as %s", file.filename, len(file.data), relative)
        return f"{self._url_prefix}/{relative.as_posix()}"

    async def save_images(self, appointment_id: uuid.UUID, files: list[IncomingFile]) -> list[str]:
        """Store a batch of images, all or nothing.

        Every file is validated before the first one is written. If a write
        fails midway the files already written are removed.
        """
        exts = [self.validate(f, IMAGE_TYPES) for f in files]
        urls: list[str] = []
        try:
            for f, ext in zip(files, exts):
                urls.append(await self.save(appointment_id, f, ext))
        except UpstreamIO:
            await self.discard(urls)
            raise
        return urls

    async def save_pdf(self, appointment_id: uuid.UUID, file: IncomingFile) -> str:
        return await self.save(appointment_id, file, self.validate(file, PDF_TYPES))

    async def discard(self, urls: list[str]) -> None:
        """Best-effort removal of stored artifacts by public reference."""
        for url in urls:
            relative = url.removeprefix(self._url_prefix).lstrip("/")
            try:
                await asyncio.to_thread((self._root / relative).unlink, missing_ok=True)
            except OSError:
                logger.warning("Could not remove orphaned upload %s", relative)

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


# Module-level singleton
file_store = FileStore(
    settings.storage.upload_dir,
    settings.storage.public_url_prefix,
    settings.storage.max_upload_bytes,
)
