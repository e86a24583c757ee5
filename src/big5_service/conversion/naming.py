UTF8_PREFIX = "utf8_"
PDF_EXTENSION = ".pdf"
ARCHIVE_NAME = "converted_files.zip"


def utf8_export_name(original: str) -> str:
    return f"{UTF8_PREFIX}{original}"


def pdf_export_name(original: str) -> str:
    """Swap the last extension for `.pdf`, or append it when there is none.

    `archive.html.bak` becomes `archive.html.pdf`; `README` becomes `README.pdf`.
    """
    stem, dot, _ = original.rpartition(".")
    if not dot:
        stem = original
    return f"{stem}{PDF_EXTENSION}"
