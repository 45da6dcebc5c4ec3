import os
from enum import Enum
from typing import Optional

from coachdesk.core.errors import IngestionError

IMPORT_MAX_FILE_BYTES = int(os.getenv("IMPORT_MAX_FILE_BYTES", str(50 * 1024 * 1024)))

ALLOWED_EXTENSIONS = (".xlsx", ".xls", ".csv")
SPREADSHEET_MIME_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}
CSV_MIME_TYPES = {"text/csv", "application/csv"}
# Generic types some browsers send when they cannot classify the upload.
UNCLASSIFIED_MIME_TYPES = {"", "application/octet-stream"}

ZIP_SIGNATURE = b"PK\x03\x04"
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


class FileFormat(str, Enum):
    csv = "csv"
    spreadsheet = "spreadsheet"


def _extension(filename: str) -> str:
    _, ext = os.path.splitext((filename or "").strip().lower())
    return ext


def _mime(content_type: Optional[str]) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def validate_upload(
    filename: str,
    content_type: Optional[str],
    size: int,
    max_bytes: Optional[int] = None,
) -> None:
    limit = IMPORT_MAX_FILE_BYTES if max_bytes is None else max_bytes
    ext = _extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise IngestionError(
            f"Invalid file extension. Allowed: {', '.join(ALLOWED_EXTENSIONS)}",
            code="INVALID_FILE_TYPE",
        )

    mime = _mime(content_type)
    allowed_mime = SPREADSHEET_MIME_TYPES | CSV_MIME_TYPES | UNCLASSIFIED_MIME_TYPES
    if mime not in allowed_mime and ext != ".csv":
        raise IngestionError(
            "Invalid file type. Please upload an Excel (.xlsx, .xls) or CSV file",
            code="INVALID_FILE_TYPE",
        )

    if size > limit:
        raise IngestionError(
            f"File too large. Maximum size: {limit // (1024 * 1024)}MB",
            status_code=413,
            code="FILE_TOO_LARGE",
            suggestion="Split the file or use the chunked upload.",
        )
    if size == 0:
        raise IngestionError("File is empty", code="EMPTY_FILE")


def _looks_like_csv(content: bytes) -> bool:
    head = content[:4096]
    if b"\x00" in head:
        return False
    try:
        text = head.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = head.decode("latin-1")
    first_line = text.splitlines()[0] if text.splitlines() else ""
    return "," in first_line


def _declared_format(filename: str, content_type: Optional[str]) -> Optional[FileFormat]:
    ext = _extension(filename)
    if ext == ".csv":
        return FileFormat.csv
    if ext in {".xlsx", ".xls"}:
        return FileFormat.spreadsheet
    mime = _mime(content_type)
    if mime in CSV_MIME_TYPES:
        return FileFormat.csv
    if mime in SPREADSHEET_MIME_TYPES:
        return FileFormat.spreadsheet
    return None


def sniff_format(filename: str, content_type: Optional[str], content: bytes) -> FileFormat:
    has_workbook_signature = content.startswith(ZIP_SIGNATURE) or content.startswith(OLE2_SIGNATURE)
    declared = _declared_format(filename, content_type)

    if declared == FileFormat.spreadsheet and not has_workbook_signature and _looks_like_csv(content):
        return FileFormat.csv
    if declared == FileFormat.csv and has_workbook_signature:
        return FileFormat.spreadsheet
    if declared is not None:
        return declared

    if has_workbook_signature:
        return FileFormat.spreadsheet
    if _looks_like_csv(content):
        return FileFormat.csv

    raise IngestionError(
        "Unrecognized file format: expected an Excel workbook or comma-separated text",
        code="UNSUPPORTED_FORMAT",
        suggestion="Upload a .xlsx, .xls or .csv file.",
    )
