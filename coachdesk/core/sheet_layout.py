from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from coachdesk.core.columns import has_name_column
from coachdesk.core.records import ClientRecord
from coachdesk.core.sanitize import cell_text, sanitize_string
from coachdesk.core.workbook import SheetGrid

NON_CLIENT_SHEET_TOKENS = ("template", "master", "copy", "example", "instructions")
DEFAULT_SHEET_NAME = re.compile(r"^sheet\s*\d*$", re.IGNORECASE)

LABEL_SCAN_ROWS = 20
LABEL_SCAN_COLUMNS = 10
RECENT_WORKOUTS_IN_NOTES = 5
WORKOUT_HISTORY_LIMIT = 200

# Field -> (label keyword, label prefix pattern stripped from fixed cells).
SHEET_LABELS: dict[str, tuple[str, re.Pattern[str]]] = {
    "injuries": ("injur", re.compile(r"^\s*injur(?:y|ies)?\s*[:\-]?\s*", re.IGNORECASE)),
    "goals": ("goal", re.compile(r"^\s*goals?\s*[:\-]?\s*", re.IGNORECASE)),
    "membership": ("membership", re.compile(r"^\s*membership(?:\s+type)?\s*[:\-]?\s*", re.IGNORECASE)),
}

# Fixed cells (row, col) holding client metadata on a per-client sheet: A1, C1, D1, E1.
FIXED_CELLS: dict[str, tuple[int, int]] = {
    "injuries": (0, 0),
    "goals": (0, 2),
    "membership": (0, 3),
    "additional_info": (0, 4),
}


class SheetLayout(str, Enum):
    auto = "auto"
    table = "table"
    per_sheet = "per_sheet"


def is_client_sheet(name: str) -> bool:
    lowered = (name or "").strip().lower()
    if not lowered:
        return False
    if any(token in lowered for token in NON_CLIENT_SHEET_TOKENS):
        return False
    return not DEFAULT_SHEET_NAME.match(lowered)


def first_non_empty_row(grid: SheetGrid) -> tuple[int, list[Any]]:
    for index, row in enumerate(grid.rows):
        if any(cell_text(value) for value in row):
            return index, row
    return -1, []


def detect_layout(sheets: list[SheetGrid]) -> SheetLayout:
    if not sheets:
        return SheetLayout.per_sheet
    _, header = first_non_empty_row(sheets[0])
    if header and has_name_column(header):
        return SheetLayout.table
    return SheetLayout.per_sheet


def _label_field(text: str) -> Optional[str]:
    lowered = text.lower()
    for field_name, (keyword, _) in SHEET_LABELS.items():
        if keyword in lowered:
            return field_name
    return None


def _fixed_cell_value(grid: SheetGrid, field_name: str) -> Optional[str]:
    row, col = FIXED_CELLS[field_name]
    if _is_date_like(grid.cell(row, col)):
        return None
    text = cell_text(grid.cell(row, col))
    if not text:
        return None
    # A cell to the right of a bare label belongs to that label.
    left = cell_text(grid.cell(row, col - 1)) if col else ""
    left_owner = _label_field(left) if left else None
    if left_owner and left_owner != field_name and not left.partition(":")[2].strip():
        return None
    if field_name in SHEET_LABELS:
        owner = _label_field(text)
        if owner and owner != field_name:
            return None
        text = SHEET_LABELS[field_name][1].sub("", text, count=1)
    elif _label_field(text):
        return None
    return text.strip() or None


class _ScanState(str, Enum):
    scanning = "scanning"
    inline = "inline"
    right = "right"
    below = "below"
    found = "found"


def find_labelled_value(grid: SheetGrid, keyword: str) -> Optional[str]:
    """Scan the top-left block of a sheet for a cell labelled with ``keyword``.

    The value is the text after a colon in the label cell itself, else the
    right-hand neighbour, else the neighbour below. Neighbours outside the
    sheet or that are themselves labels are skipped and scanning resumes.
    """
    keyword = keyword.lower()
    max_row = min(grid.row_count, LABEL_SCAN_ROWS)
    max_col = min(grid.column_count, LABEL_SCAN_COLUMNS)
    positions = [(r, c) for r in range(max_row) for c in range(max_col)]

    state = _ScanState.scanning
    index = 0
    label_row = label_col = 0
    value: Optional[str] = None
    while index < len(positions) or state != _ScanState.scanning:
        if state == _ScanState.scanning:
            label_row, label_col = positions[index]
            index += 1
            text = cell_text(grid.cell(label_row, label_col))
            if text and keyword in text.lower():
                state = _ScanState.inline
        elif state == _ScanState.inline:
            text = cell_text(grid.cell(label_row, label_col))
            _, sep, remainder = text.partition(":")
            remainder = remainder.strip()
            if sep and remainder:
                value = remainder
                state = _ScanState.found
            else:
                state = _ScanState.right
        elif state == _ScanState.right:
            value = _neighbour_value(grid, label_row, label_col + 1)
            state = _ScanState.found if value else _ScanState.below
        elif state == _ScanState.below:
            value = _neighbour_value(grid, label_row + 1, label_col)
            state = _ScanState.found if value else _ScanState.scanning
        else:
            return value
    return None


def _neighbour_value(grid: SheetGrid, row: int, col: int) -> Optional[str]:
    if row >= grid.row_count or col >= grid.column_count:
        return None
    text = cell_text(grid.cell(row, col))
    if not text or _label_field(text):
        return None
    return text


def _metadata_end(grid: SheetGrid) -> int:
    for index in range(min(grid.row_count, 10)):
        lowered = " ".join(cell_text(value).lower() for value in grid.rows[index])
        if "date" in lowered or "workout" in lowered:
            return index
    return 1 if grid.row_count else 0


def _is_date_like(value: Any) -> bool:
    if isinstance(value, (datetime, date)):
        return True
    text = cell_text(value)
    return bool(re.match(r"^\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}", text))


def workout_history(grid: SheetGrid) -> list[dict[str, str]]:
    history: list[dict[str, str]] = []
    for row in grid.rows[_metadata_end(grid):]:
        if len(row) < 2 or not _is_date_like(row[0]):
            continue
        workout = cell_text(row[1])
        if not workout:
            continue
        history.append({"date": cell_text(row[0]), "workout": workout})
        if len(history) >= WORKOUT_HISTORY_LIMIT:
            break
    return history


def normalize_client_sheet(grid: SheetGrid) -> Optional[ClientRecord]:
    full_name = sanitize_string(grid.name)
    if not full_name:
        return None

    # A workout header in the first row means there is no metadata block to read fixed cells from.
    use_fixed_cells = _metadata_end(grid) > 0
    found: dict[str, Optional[str]] = {}
    for field_name, (keyword, _) in SHEET_LABELS.items():
        fixed = _fixed_cell_value(grid, field_name) if use_fixed_cells else None
        found[field_name] = fixed or find_labelled_value(grid, keyword)
    additional_info = _fixed_cell_value(grid, "additional_info") if use_fixed_cells else None
    history = workout_history(grid)

    notes_lines: list[str] = []
    if found["membership"]:
        notes_lines.append(f"Membership: {found['membership']}")
    if additional_info:
        notes_lines.append(additional_info)
    if history:
        recent = [f"{item['date']}: {item['workout']}" for item in history[:RECENT_WORKOUTS_IN_NOTES]]
        notes_lines.append("Recent Workouts:\n" + "\n".join(recent))
    notes_lines.append(f"Imported from sheet: {grid.name}")

    preferences: dict[str, Any] = {"workout_history": history}
    if found["membership"]:
        preferences["membership_type"] = sanitize_string(found["membership"])

    return ClientRecord(
        full_name=full_name,
        goals=sanitize_string(found["goals"]),
        injuries=sanitize_string(found["injuries"]),
        notes=sanitize_string("\n".join(notes_lines)),
        preferences=preferences,
    )
