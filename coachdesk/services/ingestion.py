import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coachdesk.core.columns import normalize_row, resolve_columns
from coachdesk.core.errors import IngestionError
from coachdesk.core.records import ClientRecord, ExtractionResult, ImportBatchResult, RowError
from coachdesk.core.sanitize import cell_text
from coachdesk.core.sheet_layout import (
    SheetLayout,
    detect_layout,
    first_non_empty_row,
    is_client_sheet,
    normalize_client_sheet,
)
from coachdesk.core.sniffing import FileFormat, sniff_format
from coachdesk.core.workbook import SheetGrid, read_csv_grid, read_workbook
from coachdesk.db.models import Organization

logger = logging.getLogger("uvicorn.error")

IMPORT_ERROR_LIMIT = int(os.getenv("IMPORT_ERROR_LIMIT", "50"))
DEFAULT_ORGANIZATION_ID = os.getenv("DEFAULT_ORGANIZATION_ID", "00000000-0000-0000-0000-000000000000")
CHUNKED_IMPORT_THRESHOLD_BYTES = 5 * 1024 * 1024
ANALYZE_SAMPLE_ROWS = 3
ANALYZE_TYPE_ROWS = 10

WORKOUT_FIELD_PATTERNS: dict[str, tuple[str, ...]] = {
    "date": ("date", "workout date", "session date", "day"),
    "workout_completed": ("workout completed", "completed", "done", "finished"),
    "workout_type": ("workout type", "type", "exercise type", "session type"),
    "duration": ("duration", "time", "length", "minutes"),
    "notes": ("notes", "comments", "remarks", "feedback"),
}


@dataclass
class ImportOptions:
    sheet_name: Optional[str] = None
    layout: SheetLayout = SheetLayout.auto
    skip_rows: int = 0
    max_rows: Optional[int] = None
    dry_run: bool = False


def _table_records(
    grid: SheetGrid, options: ImportOptions, errors: list[RowError]
) -> list[ClientRecord]:
    header_index, header = first_non_empty_row(grid)
    header_index = max(header_index, options.skip_rows)
    if header_index >= grid.row_count:
        return []
    header = grid.rows[header_index]
    mapping = resolve_columns(header)
    if "full_name" not in mapping:
        errors.append(RowError(row=header_index + 1, error=f"No name column found in sheet {grid.name}"))
        return []

    data_rows = grid.rows[header_index + 1 :]
    if options.max_rows is not None:
        data_rows = data_rows[: options.max_rows]

    records: list[ClientRecord] = []
    for offset, row in enumerate(data_rows):
        # Spreadsheet row numbers are 1-based and the header occupies one row.
        record = normalize_row(row, mapping, source_row=header_index + offset + 2)
        if record is not None:
            records.append(record)
    return records


def _pick_sheet(sheets: list[SheetGrid], name: Optional[str]) -> SheetGrid:
    if not name:
        return sheets[0]
    for sheet in sheets:
        if sheet.name == name:
            return sheet
    raise IngestionError(f'Sheet "{name}" not found', code="SHEET_NOT_FOUND")


def extract_records(
    filename: str,
    content_type: Optional[str],
    content: bytes,
    options: Optional[ImportOptions] = None,
) -> ExtractionResult:
    options = options or ImportOptions()
    file_format = sniff_format(filename, content_type, content)
    errors: list[RowError] = []

    if file_format == FileFormat.csv:
        grid = read_csv_grid(content, name=filename or "csv")
        return ExtractionResult(
            records=_table_records(grid, options, errors),
            layout=SheetLayout.table.value,
            sheet_names=[grid.name],
            errors=errors,
        )

    sheets = read_workbook(content)
    if not sheets:
        raise IngestionError("No sheets found in Excel file", code="NO_SHEETS")
    sheet_names = [sheet.name for sheet in sheets]

    layout = options.layout
    if layout == SheetLayout.auto:
        candidates = [_pick_sheet(sheets, options.sheet_name)] if options.sheet_name else sheets
        layout = detect_layout(candidates)

    if layout == SheetLayout.table:
        grid = _pick_sheet(sheets, options.sheet_name)
        return ExtractionResult(
            records=_table_records(grid, options, errors),
            layout=layout.value,
            sheet_names=sheet_names,
            errors=errors,
        )

    records: list[ClientRecord] = []
    skipped: list[str] = []
    selected = [_pick_sheet(sheets, options.sheet_name)] if options.sheet_name else sheets
    for sheet in selected:
        if not is_client_sheet(sheet.name):
            skipped.append(sheet.name)
            logger.info("client_import_sheet_skipped sheet=%s", sheet.name)
            continue
        record = normalize_client_sheet(sheet)
        if record is not None:
            records.append(record)
    return ExtractionResult(
        records=records,
        layout=layout.value,
        sheet_names=sheet_names,
        skipped_sheets=skipped,
        errors=errors,
    )


def require_records(extraction: ExtractionResult) -> None:
    if extraction.records:
        return
    extra: dict[str, Any] = {"sheets": extraction.sheet_names}
    if extraction.skipped_sheets:
        extra["skipped_sheets"] = extraction.skipped_sheets
    if extraction.errors:
        extra["errors"] = [error.to_dict() for error in extraction.errors[:IMPORT_ERROR_LIMIT]]
    raise IngestionError(
        "No valid client records found in file",
        code="NO_VALID_RECORDS",
        suggestion='Include a "Name" column, or use one sheet per client named after the client.',
        extra=extra,
    )


def assign_ownership(
    records: list[ClientRecord], user_id: Optional[str], organization_id: Optional[str]
) -> None:
    for record in records:
        record.user_id = record.user_id or user_id
        record.organization_id = record.organization_id or organization_id


def _find_organization(db: Session, organization_id: str) -> Optional[Organization]:
    return db.query(Organization).filter(Organization.id == organization_id).first()


def ensure_organization(db: Session, organization_id: str, name: str = "Default Organization") -> Organization:
    existing = _find_organization(db, organization_id)
    if existing:
        return existing
    created = Organization(id=organization_id, name=name)
    db.add(created)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent request inserted the same id first.
        db.rollback()
        existing = _find_organization(db, organization_id)
        if existing is None:
            raise
        logger.info("organization_create_raced id=%s", organization_id)
        return existing
    logger.info("organization_created id=%s", organization_id)
    return created


def build_summary(result: ImportBatchResult, total: int, extra_errors: Optional[list[RowError]] = None) -> tuple[int, dict]:
    """Return the HTTP status and JSON body summarizing an import.

    Partial success is still a 200; only a run where every attempted
    record failed is reported as an error status.
    """
    errors = list(extra_errors or []) + result.errors
    body = {
        "success": result.successful > 0 or (result.failed == 0 and total > 0),
        "imported": result.successful,
        "failed": result.failed,
        "total": total,
        "errors": [error.to_dict() for error in errors[:IMPORT_ERROR_LIMIT]],
    }
    if len(errors) > IMPORT_ERROR_LIMIT:
        body["errors_truncated"] = len(errors) - IMPORT_ERROR_LIMIT
    if result.successful == 0 and result.failed > 0:
        body["code"] = "IMPORT_FAILED"
        return 500, body
    return 200, body


def _column_type(rows: list[list[Any]], index: int) -> str:
    has_numbers = False
    has_text = False
    for row in rows[:ANALYZE_TYPE_ROWS]:
        value = row[index] if index < len(row) else None
        if value is None or value == "":
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            has_numbers = True
        else:
            has_text = True
    return "number" if has_numbers and not has_text else "text"


def suggest_workout_mapping(headers: list[Any]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for header in headers:
        lowered = cell_text(header).lower()
        if not lowered:
            continue
        for field_name, patterns in WORKOUT_FIELD_PATTERNS.items():
            if any(pattern in lowered for pattern in patterns):
                mapping[cell_text(header)] = field_name
                break
    return mapping


def _analyze_grid(grid: SheetGrid, layout: SheetLayout) -> dict[str, Any]:
    header_index, header = first_non_empty_row(grid)
    headers = [cell_text(value) for value in header]
    data_rows = grid.rows[header_index + 1 :] if header_index >= 0 else []
    sample = [
        {headers[i]: cell_text(row[i]) for i in range(min(len(headers), len(row))) if headers[i]}
        for row in data_rows[:ANALYZE_SAMPLE_ROWS]
    ]
    column_types = {name: _column_type(data_rows, i) for i, name in enumerate(headers) if name}
    if layout == SheetLayout.table:
        recommended = {
            field_name: headers[index] for field_name, index in resolve_columns(header).items()
        }
    else:
        recommended = suggest_workout_mapping(header)
    return {
        "name": grid.name,
        "is_client_sheet": is_client_sheet(grid.name),
        "headers": headers,
        "row_count": len(data_rows),
        "column_types": column_types,
        "sample_data": sample,
        "recommended_mapping": recommended,
    }


def analyze_file(filename: str, content_type: Optional[str], content: bytes) -> dict[str, Any]:
    file_format = sniff_format(filename, content_type, content)
    if file_format == FileFormat.csv:
        sheets = [read_csv_grid(content, name=filename or "csv")]
        layout = SheetLayout.table
    else:
        sheets = read_workbook(content)
        layout = detect_layout(sheets)

    analyzed = [_analyze_grid(sheet, layout) for sheet in sheets]
    client_sheets = [item["name"] for item in analyzed if item["is_client_sheet"]]
    skipped = [item["name"] for item in analyzed if not item["is_client_sheet"]]
    if layout == SheetLayout.table:
        estimated_clients = analyzed[0]["row_count"] if analyzed else 0
    else:
        estimated_clients = len(client_sheets)
    return {
        "file_name": filename,
        "file_size": len(content),
        "format": file_format.value,
        "layout": layout.value,
        "sheets": analyzed,
        "skipped_sheets": skipped if layout == SheetLayout.per_sheet else [],
        "recommendations": {
            "import_method": "chunked" if len(content) > CHUNKED_IMPORT_THRESHOLD_BYTES else "direct",
            "estimated_processing_seconds": max(1, len(content) // (1024 * 1024)) * 2,
            "has_multiple_sheets": len(sheets) > 1,
            "is_client_per_sheet": layout == SheetLayout.per_sheet,
            "total_clients_estimated": estimated_clients,
        },
    }
