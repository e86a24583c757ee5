"""
Test Configuration and Fixtures
"""
import pytest

from big5_service.conversion import ConversionService
from big5_service.conversion.adapters import CodecDecoder, LocalStorage, ZipArchiver

BIG5_PAGE = (
    '<html><head><meta http-equiv="Content-Type" content="text/html; charset=big5">'
    "</head><body><p>中文測試</p></body></html>"
)


class FakeRenderer:
    """Stands in for WeasyPrint so tests need no native libraries."""

    def __init__(self):
        self.rendered = []

    def render(self, html: str) -> bytes:
        self.rendered.append(html)
        return b"%PDF-1.7 fake"


class FailingRenderer:
    def render(self, html: str) -> bytes:
        raise OSError("cannot load library 'pango'")


def reader_for(data: bytes, chunk_size: int = 7):
    """Async chunk reader over bytes, shaped like UploadFile.read."""
    state = {"pos": 0}

    async def read(n: int) -> bytes:
        size = min(n, chunk_size)
        start = state["pos"]
        state["pos"] = start + size
        return data[start:start + size]

    return read


@pytest.fixture
def big5_page() -> bytes:
    return BIG5_PAGE.encode("big5")


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "data"))


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def service(storage, renderer):
    return ConversionService(
        storage=storage,
        decoder=CodecDecoder(),
        renderer=renderer,
        archiver=ZipArchiver(),
    )
