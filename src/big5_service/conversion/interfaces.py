from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .service import ConvertibleFile


class StorageGateway(Protocol):
    def file_dir(self, file_id: str) -> str:
        ...

    def save_file(self, file: ConvertibleFile) -> None:
        ...

    def load_file(self, file_id: str) -> ConvertibleFile:
        """Load a file with its raw bytes and decoded text.
        Raises FileNotFoundError when the id is unknown.
        """

    def list_files(self) -> list[ConvertibleFile]:
        ...

    def exists(self, file_id: str) -> bool:
        ...

    def remove_file(self, file_id: str) -> None:
        ...


class DecoderGateway(Protocol):
    def decode(self, raw: bytes) -> str:
        """Decode legacy-encoded bytes into text.
        This is a blocking call; callers should offload to threads if needed.
        """


class PdfRendererGateway(Protocol):
    def render(self, html: str) -> bytes:
        """Render an HTML document to PDF bytes. Blocking."""


class ArchiveGateway(Protocol):
    def build(self, entries: dict[str, str]) -> bytes:
        ...
