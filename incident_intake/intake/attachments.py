from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, Sequence
from uuid import uuid4

from .models import Attachment, BinaryHandle

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "video/mp4",
        "application/pdf",
        "text/plain",
    }
)
MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024


@dataclass(slots=True, frozen=True)
class BytesHandle:
    """Binary handle over bytes already held in memory."""

    data: bytes = field(repr=False)

    async def read(self) -> bytes:
        return self.data


@dataclass(slots=True, frozen=True)
class PathHandle:
    """Binary handle reading a local file off the event loop."""

    path: Path

    async def read(self) -> bytes:
        return await asyncio.to_thread(self.path.read_bytes)


@dataclass(slots=True, frozen=True)
class IncomingFile:
    """File selected or pasted by the user, before validation."""

    name: str
    mime_type: str
    size: int
    handle: BinaryHandle

    @classmethod
    def from_bytes(cls, name: str, mime_type: str, data: bytes) -> IncomingFile:
        return cls(name=name, mime_type=mime_type, size=len(data), handle=BytesHandle(data))


@dataclass(slots=True, frozen=True)
class AttachmentRejection:
    name: str
    reason: str


class AttachmentValidationError(ValueError):
    """Combined report for every file rejected from one batch."""

    def __init__(self, rejections: Sequence[AttachmentRejection]) -> None:
        self.rejections = tuple(rejections)
        super().__init__("\n".join(rejection.reason for rejection in self.rejections))


@dataclass(slots=True, frozen=True)
class AttachmentBatch:
    accepted: tuple[Attachment, ...]
    error: AttachmentValidationError | None = None


def _new_attachment_id() -> str:
    return f"file-{uuid4().hex}"


def to_data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class AttachmentManager:
    """Pending attachments of the turn being composed.

    Accepted files get an id immediately. Image previews are computed in
    background tasks and merged back by id; :meth:`drain` waits for them
    before handing the attachments over to a turn.
    """

    def __init__(
        self,
        *,
        allowed_types: Iterable[str] = ALLOWED_MIME_TYPES,
        max_bytes: int = MAX_ATTACHMENT_BYTES,
        id_factory: Callable[[], str] = _new_attachment_id,
    ) -> None:
        self._allowed_types = frozenset(allowed_types)
        self._max_bytes = max_bytes
        self._id_factory = id_factory
        self._pending: list[Attachment] = []
        self._preview_tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def pending(self) -> tuple[Attachment, ...]:
        return tuple(self._pending)

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def validate(self, incoming: IncomingFile) -> AttachmentRejection | None:
        if incoming.mime_type not in self._allowed_types:
            return AttachmentRejection(incoming.name, f"Archivo no permitido: {incoming.name}.")
        if incoming.size > self._max_bytes:
            limit_mb = self._max_bytes // (1024 * 1024)
            return AttachmentRejection(incoming.name, f"Archivo grande: {incoming.name} (máx {limit_mb}MB).")
        return None

    def add_files(self, files: Iterable[IncomingFile]) -> AttachmentBatch:
        """Validate a batch; valid files are added even when others are rejected."""

        accepted: list[Attachment] = []
        rejections: list[AttachmentRejection] = []
        for incoming in files:
            rejection = self.validate(incoming)
            if rejection is not None:
                rejections.append(rejection)
                continue
            attachment = Attachment(
                id=self._id_factory(),
                name=incoming.name,
                mime_type=incoming.mime_type,
                size=incoming.size,
                handle=incoming.handle,
            )
            accepted.append(attachment)
            self._pending.append(attachment)
            if attachment.is_image:
                self._schedule_preview(attachment)

        error = AttachmentValidationError(rejections) if rejections else None
        if error is not None:
            logger.info("Rejected %d attachment(s): %s", len(rejections), [r.name for r in rejections])
        return AttachmentBatch(accepted=tuple(accepted), error=error)

    def add_pasted(self, files: Iterable[IncomingFile]) -> AttachmentBatch:
        """Clipboard pastes only contribute images."""

        return self.add_files(incoming for incoming in files if incoming.mime_type.startswith("image/"))

    def remove(self, attachment_id: str) -> bool:
        for index, attachment in enumerate(self._pending):
            if attachment.id == attachment_id:
                del self._pending[index]
                task = self._preview_tasks.pop(attachment_id, None)
                if task is not None:
                    task.cancel()
                return True
        return False

    async def wait_for_previews(self) -> None:
        tasks = list(self._preview_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> tuple[Attachment, ...]:
        """Wait for pending previews, then hand over and clear the pending list."""

        await self.wait_for_previews()
        drained = tuple(self._pending)
        self._pending.clear()
        return drained

    def discard(self) -> None:
        for task in self._preview_tasks.values():
            task.cancel()
        self._preview_tasks.clear()
        self._pending.clear()

    def _schedule_preview(self, attachment: Attachment) -> None:
        task = asyncio.get_running_loop().create_task(self._compute_preview(attachment))
        self._preview_tasks[attachment.id] = task

    async def _compute_preview(self, attachment: Attachment) -> None:
        try:
            if attachment.handle is None:
                return
            try:
                data = await attachment.handle.read()
            except Exception:
                # Nothing awaits this task once it has finished, so failures end here.
                logger.warning("Could not read attachment %s for preview", attachment.name, exc_info=True)
                return
            self._merge_preview(attachment.id, to_data_url(attachment.mime_type, data))
        finally:
            self._preview_tasks.pop(attachment.id, None)

    def _merge_preview(self, attachment_id: str, preview: str) -> None:
        for index, attachment in enumerate(self._pending):
            if attachment.id == attachment_id:
                self._pending[index] = replace(attachment, preview=preview)
                return
