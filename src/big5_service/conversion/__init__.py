"""
Domain layer for Big5 to UTF-8 conversion.
Provides the charset rewrite and export naming rules, gateway interfaces,
and a service to orchestrate per-file conversion and exports, abstracting
storage, decoding, PDF rendering and archiving so front-ends (HTTP or
others) can use the same core logic.
"""

from .charset import rewrite
from .interfaces import ArchiveGateway, DecoderGateway, PdfRendererGateway, StorageGateway
from .naming import ARCHIVE_NAME, pdf_export_name, utf8_export_name
from .service import ConversionService, ConvertibleFile, ExportNotReady, FileStatus, InvalidTransition
