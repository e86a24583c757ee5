import io
import json
import shutil
import zipfile
from pathlib import Path

from .interfaces import ArchiveGateway, DecoderGateway, PdfRendererGateway, StorageGateway
from .service import ConvertibleFile

# Big5 with the HKSCS and ETEN extensions, closest to the browser Big5 table
DEFAULT_CODEC = "big5hkscs"

PDF_STYLESHEET = """
@page { size: A4 portrait; margin: 10mm; }
body { font-family: Arial, sans-serif; font-size: 12pt; line-height: 1.5; }
"""


class LocalStorage(StorageGateway):
    def __init__(self, data_dir: str) -> None:
        self._base = Path(data_dir).resolve()

    def file_dir(self, file_id: str) -> str:
        return str(self._base / "files" / file_id)

    def _paths(self, file_id: str) -> tuple[Path, Path, Path]:
        d = Path(self.file_dir(file_id))
        return d / "file.json", d / "input" / "original", d / "output" / "converted.html"

    def save_file(self, file: ConvertibleFile) -> None:
        meta_path, input_path, output_path = self._paths(file.id)
        for p in (meta_path, input_path, output_path):
            p.parent.mkdir(parents=True, exist_ok=True)
        if not input_path.exists():
            input_path.write_bytes(file.raw_bytes)
        if file.decoded_text is not None:
            output_path.write_text(file.decoded_text, encoding="utf-8")
        # Metadata last so a listed file always has its input on disk
        with meta_path.open("w", encoding="utf-8") as f:
            json.dump(file.to_dict(), f, ensure_ascii=False, indent=2)

    def load_file(self, file_id: str) -> ConvertibleFile:
        meta_path, input_path, output_path = self._paths(file_id)
        if not meta_path.exists():
            raise FileNotFoundError("file not found")
        with meta_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        decoded = output_path.read_text(encoding="utf-8") if output_path.exists() else None
        return ConvertibleFile.from_dict(data, input_path.read_bytes(), decoded)

    def list_files(self) -> list[ConvertibleFile]:
        root = self._base / "files"
        if not root.is_dir():
            return []
        files = []
        for d in root.iterdir():
            try:
                files.append(self.load_file(d.name))
            except FileNotFoundError:
                # Removed concurrently or not fully written yet
                continue
        return sorted(files, key=lambda f: f.sequence)

    def exists(self, file_id: str) -> bool:
        return self._paths(file_id)[0].exists()

    def remove_file(self, file_id: str) -> None:
        d = Path(self.file_dir(file_id))
        if not (d / "file.json").exists():
            raise FileNotFoundError("file not found")
        shutil.rmtree(d)


class CodecDecoder(DecoderGateway):
    def __init__(self, encoding: str = DEFAULT_CODEC, errors: str = "strict") -> None:
        self.encoding = encoding
        self.errors = errors

    def decode(self, raw: bytes) -> str:
        return raw.decode(self.encoding, self.errors)


class WeasyPrintRenderer(PdfRendererGateway):
    def __init__(self, stylesheet: str = PDF_STYLESHEET) -> None:
        self._stylesheet = stylesheet

    def render(self, html: str) -> bytes:
        # Imported here: weasyprint needs pango at import time
        import weasyprint

        css = weasyprint.CSS(string=self._stylesheet)
        return weasyprint.HTML(string=html).write_pdf(stylesheets=[css])


class ZipArchiver(ArchiveGateway):
    def build(self, entries: dict[str, str]) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, text in entries.items():
                zf.writestr(name, text.encode("utf-8"))
        return buf.getvalue()
