import asyncio
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from .charset import LEGACY_ENCODING, rewrite
from .interfaces import ArchiveGateway, DecoderGateway, PdfRendererGateway, StorageGateway
from .naming import ARCHIVE_NAME, pdf_export_name, utf8_export_name

log = logging.getLogger(__name__)

CHUNK = 1024 * 1024
DEFAULT_NAME = "upload.html"


class FileStatus(str, Enum):
    PENDING = "pending"
    CONVERTING = "converting"
    DONE = "done"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (FileStatus.DONE, FileStatus.ERROR)


_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.CONVERTING}),
    FileStatus.CONVERTING: frozenset({FileStatus.DONE, FileStatus.ERROR}),
    FileStatus.DONE: frozenset(),
    FileStatus.ERROR: frozenset(),
}


class InvalidTransition(ValueError):
    pass


class ExportNotReady(RuntimeError):
    pass


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ConvertibleFile:
    id: str
    name: str
    raw_bytes: bytes = field(repr=False)
    status: FileStatus = FileStatus.PENDING
    decoded_text: str | None = field(default=None, repr=False)
    size_bytes: int = 0
    checksum: str = ""
    sequence: int = 0
    error: str | None = None
    created_at: str = ""
    updated_at: str = ""
    completed_at: str | None = None
    failed_at: str | None = None

    @property
    def utf8_name(self) -> str:
        return utf8_export_name(self.name)

    @property
    def pdf_name(self) -> str:
        return pdf_export_name(self.name)

    def transition(self, status: FileStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"cannot move {self.id} from {self.status.value} to {status.value}")
        now = _utcnow()
        self.status = status
        self.updated_at = now
        if status is FileStatus.DONE:
            self.completed_at = now
        elif status is FileStatus.ERROR:
            self.failed_at = now

    def to_dict(self) -> dict[str, object]:
        """Metadata only; raw bytes and decoded text are stored beside it."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "size_bytes": self.size_bytes,
            "checksum": self.checksum,
            "sequence": self.sequence,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "failed_at": self.failed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object], raw_bytes: bytes, decoded_text: str | None = None) -> "ConvertibleFile":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            raw_bytes=raw_bytes,
            status=FileStatus(data["status"]),
            decoded_text=decoded_text,
            size_bytes=int(data.get("size_bytes", len(raw_bytes))),  # type: ignore[arg-type]
            checksum=str(data.get("checksum", "")),
            sequence=int(data.get("sequence", 0)),  # type: ignore[arg-type]
            error=data.get("error"),  # type: ignore[arg-type]
            created_at=str(data.get("created_at", "")),
            updated_at=str(data.get("updated_at", "")),
            completed_at=data.get("completed_at"),  # type: ignore[arg-type]
            failed_at=data.get("failed_at"),  # type: ignore[arg-type]
        )

    def public_view(self) -> dict[str, object]:
        view = self.to_dict()
        view.pop("sequence")
        view["utf8_name"] = self.utf8_name
        view["pdf_name"] = self.pdf_name
        return view


class ConversionService:
    """Core domain service sequencing intake, conversion and export.

    Framework-agnostic: files are queued on an asyncio queue and converted
    by worker tasks, while gateways handle storage, decoding, PDF rendering
    and archive packing. With a single worker files convert one after the
    other in intake order.
    """

    def __init__(
        self,
        storage: StorageGateway,
        decoder: DecoderGateway,
        renderer: PdfRendererGateway,
        archiver: ArchiveGateway,
        *,
        declared_charset: str = LEGACY_ENCODING,
        workers: int = 1,
    ) -> None:
        self._storage = storage
        self._decoder = decoder
        self._renderer = renderer
        self._archiver = archiver
        # Token looked for in charset declarations; independent of the codec the decoder uses
        self._declared_charset = declared_charset
        self._workers = workers
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._last_sequence = 0

    @property
    def queue(self) -> asyncio.Queue[str]:
        return self._queue

    async def start(self) -> None:
        await self.recover()
        for i in range(self._workers):
            task = asyncio.create_task(self._worker_loop(f"worker-{i+1}"))
            self._tasks.append(task)

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        self._tasks.clear()

    async def drain(self) -> None:
        await self._queue.join()

    async def recover(self) -> int:
        """Pick up files left over from a previous run.

        Pending files are queued again in intake order. Files caught in the
        middle of a conversion cannot be resumed and end as errors. Returns
        the number of files re-queued.
        """
        requeued = 0
        for file in self._storage.list_files():
            self._last_sequence = max(self._last_sequence, file.sequence)
            if file.status is FileStatus.PENDING:
                await self._queue.put(file.id)
                requeued += 1
            elif file.status is FileStatus.CONVERTING:
                file.error = "conversion interrupted by a restart"
                file.transition(FileStatus.ERROR)
                self._storage.save_file(file)
                log.warning("marked %s (%s) as failed: interrupted", file.name, file.id)
        if requeued:
            log.info("re-queued %d pending file(s)", requeued)
        return requeued

    def _next_sequence(self) -> int:
        self._last_sequence = max(self._last_sequence + 1, time.time_ns())
        return self._last_sequence

    async def read_upload(self, reader: Callable[[int], Awaitable[bytes]], *, max_upload_mb: int) -> bytes:
        """Read an upload into memory, raising ValueError past the size limit."""
        buf = bytearray()
        max_bytes = max_upload_mb * 1024 * 1024
        while True:
            chunk = await reader(CHUNK)
            if not chunk:
                break
            buf.extend(chunk)
            if len(buf) > max_bytes:
                raise ValueError(f"upload exceeds {max_upload_mb} MB")
        return bytes(buf)

    async def add_file(self, filename: str, raw: bytes) -> ConvertibleFile:
        """Persist raw content as a pending file and enqueue it for conversion."""
        now = _utcnow()
        file = ConvertibleFile(
            id=str(uuid.uuid4()),
            name=filename or DEFAULT_NAME,
            raw_bytes=raw,
            size_bytes=len(raw),
            checksum=hashlib.sha256(raw).hexdigest(),
            sequence=self._next_sequence(),
            created_at=now,
            updated_at=now,
        )
        self._storage.save_file(file)
        log.info("accepted %s as %s (%d bytes)", file.name, file.id, file.size_bytes)

        await self._queue.put(file.id)
        return file

    async def create_file_from_upload(
        self,
        filename: str,
        reader: Callable[[int], Awaitable[bytes]],
        *,
        max_upload_mb: int,
    ) -> ConvertibleFile:
        raw = await self.read_upload(reader, max_upload_mb=max_upload_mb)
        return await self.add_file(filename, raw)

    async def convert(self, file_id: str) -> ConvertibleFile | None:
        """Run one file through decode and charset rewrite.

        Failures end in the terminal error status and never propagate, so one
        bad file does not stop the rest of the batch. Returns None when the
        file was removed before or during conversion.
        """
        try:
            file = self._storage.load_file(file_id)
        except FileNotFoundError:
            log.info("skipping %s: removed before conversion", file_id)
            return None

        file.transition(FileStatus.CONVERTING)
        self._storage.save_file(file)

        try:
            text = await asyncio.to_thread(self._decoder.decode, file.raw_bytes)
            text = rewrite(text, self._declared_charset)
        except Exception as e:
            if not self._storage.exists(file_id):
                log.info("dropping %s: removed during conversion", file_id)
                return None
            log.warning("conversion of %s (%s) failed: %s", file.name, file_id, e)
            file.error = str(e) or type(e).__name__
            file.transition(FileStatus.ERROR)
            self._storage.save_file(file)
            return file

        if not self._storage.exists(file_id):
            log.info("dropping %s: removed during conversion", file_id)
            return None
        file.decoded_text = text
        file.transition(FileStatus.DONE)
        self._storage.save_file(file)
        log.info("converted %s (%s)", file.name, file_id)
        return file

    async def _worker_loop(self, name: str) -> None:
        while True:
            file_id = await self._queue.get()
            try:
                await self.convert(file_id)
            except Exception:
                log.exception("%s: unexpected failure on %s", name, file_id)
            finally:
                self._queue.task_done()

    def get_file(self, file_id: str) -> ConvertibleFile:
        return self._storage.load_file(file_id)

    def list_files(self) -> list[ConvertibleFile]:
        return self._storage.list_files()

    def completed_count(self) -> int:
        return sum(1 for f in self._storage.list_files() if f.status is FileStatus.DONE)

    def remove_file(self, file_id: str) -> None:
        self._storage.remove_file(file_id)
        log.info("removed %s", file_id)

    def _completed(self, file_id: str) -> ConvertibleFile:
        file = self._storage.load_file(file_id)
        if file.status is not FileStatus.DONE or file.decoded_text is None:
            raise ExportNotReady(f"file {file_id} is {file.status.value}")
        return file

    def utf8_export(self, file_id: str) -> tuple[str, str]:
        file = self._completed(file_id)
        return file.utf8_name, file.decoded_text  # type: ignore[return-value]

    async def pdf_export(self, file_id: str) -> tuple[str, bytes]:
        file = self._completed(file_id)
        pdf = await asyncio.to_thread(self._renderer.render, file.decoded_text)
        return file.pdf_name, pdf

    async def archive_export(self) -> tuple[str, bytes]:
        entries: dict[str, str] = {}
        for f in self._storage.list_files():
            if f.status is FileStatus.DONE and f.decoded_text is not None:
                # Same entry name twice: the later file wins.
                entries[f.utf8_name] = f.decoded_text
        if not entries:
            raise ExportNotReady("no converted files to bundle")
        data = await asyncio.to_thread(self._archiver.build, entries)
        return ARCHIVE_NAME, data
