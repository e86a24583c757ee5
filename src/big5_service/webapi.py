import logging
import os
from pathlib import Path
from urllib.parse import quote

from fastapi import FastAPI, File, HTTPException, Response, UploadFile, status
from fastapi.responses import JSONResponse

from big5_service.conversion import ConversionService, ConvertibleFile, ExportNotReady, FileStatus
from big5_service.conversion.adapters import DEFAULT_CODEC, CodecDecoder, LocalStorage, WeasyPrintRenderer, ZipArchiver
from big5_service.conversion.charset import LEGACY_ENCODING

log = logging.getLogger(__name__)

app = FastAPI(
    title="Big5 Conversion Service",
    version=os.getenv("BIG5_SERVICE_VERSION", "0.1.0"),
    description=(
        "Converts Big5-encoded HTML documents to UTF-8 and exports them as "
        "UTF-8 HTML, PDF or a zip bundle."
    ),
)

# Global configuration defaults
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))
ALLOWED_EXTENSIONS = {
    e.strip().lower() for e in os.getenv("ALLOWED_EXTENSIONS", ".html,.htm").split(",") if e.strip()
}
ALLOWED_MIME = {
    m.strip().lower()
    for m in os.getenv("ALLOWED_MIME", "text/html,application/xhtml+xml,application/octet-stream").split(",")
    if m.strip()
}
DATA_DIR = Path(os.getenv("DATA_DIR", "./data")).resolve()
WORKERS = int(os.getenv("WORKERS", "1"))
SOURCE_ENCODING = os.getenv("SOURCE_ENCODING", DEFAULT_CODEC)
DECLARED_CHARSET = os.getenv("DECLARED_CHARSET", LEGACY_ENCODING)
DECODE_ERRORS = os.getenv("DECODE_ERRORS", "strict")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

SERVICE: ConversionService | None = None


def _service() -> ConversionService:
    if SERVICE is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "service not started"})
    return SERVICE


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "file not found"})


def _attachment(filename: str) -> dict[str, str]:
    # RFC 5987 form keeps arbitrary Unicode names intact
    return {"Content-Disposition": f"attachment; filename*=utf-8''{quote(filename, safe='')}"}


def _is_accepted(filename: str, content_type: str) -> bool:
    _, ext = os.path.splitext(filename.lower())
    if ext in ALLOWED_EXTENSIONS:
        return True
    return bool(content_type) and content_type in ALLOWED_MIME


def _file_body(file: ConvertibleFile) -> dict[str, object]:
    body = file.public_view()
    body["links"] = {
        "self": f"/files/{file.id}",
        "download": f"/files/{file.id}/download",
        "pdf": f"/files/{file.id}/pdf",
    }
    return body


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.on_event("startup")
async def _startup() -> None:
    (DATA_DIR / "files").mkdir(parents=True, exist_ok=True)
    global SERVICE
    SERVICE = ConversionService(
        storage=LocalStorage(str(DATA_DIR)),
        decoder=CodecDecoder(SOURCE_ENCODING, DECODE_ERRORS),
        renderer=WeasyPrintRenderer(),
        archiver=ZipArchiver(),
        declared_charset=DECLARED_CHARSET,
        workers=WORKERS,
    )
    await SERVICE.start()
    log.info(
        "service started: data_dir=%s codec=%s declared=%s workers=%d",
        DATA_DIR, SOURCE_ENCODING, DECLARED_CHARSET, WORKERS,
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    global SERVICE
    if SERVICE is not None:
        await SERVICE.stop()
        SERVICE = None


@app.post("/files", status_code=status.HTTP_202_ACCEPTED)
async def create_files(files: list[UploadFile] = File(...)) -> JSONResponse:
    """Accept one or more legacy-encoded HTML files for conversion.

    Accepts multipart/form-data with one or more parts named "files". All
    parts are read and checked before any is stored, so a rejected batch
    leaves nothing behind. Each file is stored as pending and queued;
    conversion runs in the background.
    Returns 202 Accepted with the created file records.
    """
    for upload in files:
        ct = (upload.content_type or "").strip().lower()
        if not _is_accepted(upload.filename or "", ct):
            raise HTTPException(
                status_code=415,
                detail={"code": "unsupported_media_type", "message": f"{upload.filename}: content-type {upload.content_type} not allowed"},
            )

    service = _service()
    contents = []
    for upload in files:
        async def read_chunk(n: int, upload: UploadFile = upload) -> bytes:
            return await upload.read(n)

        try:
            raw = await service.read_upload(read_chunk, max_upload_mb=MAX_UPLOAD_MB)
        except ValueError as e:
            raise HTTPException(status_code=413, detail={"code": "payload_too_large", "message": f"{upload.filename}: {e}"})
        contents.append((upload.filename or "", raw))

    created = []
    for filename, raw in contents:
        file = await service.add_file(filename, raw)
        created.append(_file_body(file))

    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"files": created})


@app.get("/files")
async def list_files() -> dict[str, object]:
    files = _service().list_files()
    return {
        "files": [_file_body(f) for f in files],
        "total": len(files),
        "completed": sum(1 for f in files if f.status is FileStatus.DONE),
    }


@app.get("/files/{file_id}")
async def get_file(file_id: str) -> dict[str, object]:
    try:
        return _file_body(_service().get_file(file_id))
    except FileNotFoundError:
        raise _not_found()


@app.get("/files/{file_id}/download")
async def download_file(file_id: str) -> Response:
    try:
        name, text = _service().utf8_export(file_id)
    except FileNotFoundError:
        raise _not_found()
    except ExportNotReady as e:
        raise HTTPException(status_code=409, detail={"code": "not_ready", "message": str(e)})
    return Response(content=text.encode("utf-8"), media_type="text/html; charset=utf-8", headers=_attachment(name))


@app.get("/files/{file_id}/pdf")
async def download_pdf(file_id: str) -> Response:
    try:
        name, pdf = await _service().pdf_export(file_id)
    except FileNotFoundError:
        raise _not_found()
    except ExportNotReady as e:
        raise HTTPException(status_code=409, detail={"code": "not_ready", "message": str(e)})
    except Exception as e:
        log.exception("PDF render failed for %s", file_id)
        raise HTTPException(status_code=500, detail={"code": "render_failed", "message": str(e)})
    return Response(content=pdf, media_type="application/pdf", headers=_attachment(name))


@app.get("/archive")
async def download_archive() -> Response:
    try:
        name, data = await _service().archive_export()
    except ExportNotReady as e:
        raise HTTPException(status_code=409, detail={"code": "not_ready", "message": str(e)})
    return Response(content=data, media_type="application/zip", headers=_attachment(name))


@app.delete("/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_file(file_id: str) -> Response:
    try:
        _service().remove_file(file_id)
    except FileNotFoundError:
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s  %(levelname)s  %(name)s  %(message)s")
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("big5_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
