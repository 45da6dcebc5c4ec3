import csv
import io
import struct
import zipfile
from dataclasses import dataclass
from typing import Any

import pandas as pd
import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from coachdesk.core.errors import unparseable_file
from coachdesk.core.sniffing import OLE2_SIGNATURE


@dataclass
class SheetGrid:
    name: str
    rows: list[list[Any]]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)

    def cell(self, row: int, col: int) -> Any:
        if row < 0 or col < 0 or row >= len(self.rows):
            return None
        values = self.rows[row]
        if col >= len(values):
            return None
        return values[col]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _trim_row(values: list[Any]) -> list[Any]:
    end = len(values)
    while end and _is_blank(values[end - 1]):
        end -= 1
    return values[:end]


def _trim_trailing_rows(rows: list[list[Any]]) -> list[list[Any]]:
    end = len(rows)
    while end and not rows[end - 1]:
        end -= 1
    return rows[:end]


def _decode_text(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def read_csv_grid(content: bytes, name: str = "csv") -> SheetGrid:
    text = _decode_text(content)
    try:
        reader = csv.reader(io.StringIO(text, newline=""))
        rows = [_trim_row([cell.strip() for cell in row]) for row in reader]
    except csv.Error as exc:
        raise unparseable_file(str(exc)) from exc
    return SheetGrid(name=name, rows=_trim_trailing_rows(rows))


def _legacy_cell(value: Any) -> Any:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def read_legacy_workbook(content: bytes) -> list[SheetGrid]:
    """Read a BIFF (.xls) workbook; openpyxl only understands OOXML."""
    try:
        frames = pd.read_excel(io.BytesIO(content), sheet_name=None, header=None, engine="xlrd")
    except (xlrd.XLRDError, CompDocError, struct.error, IndexError, ValueError, KeyError, OSError) as exc:
        raise unparseable_file(str(exc) or exc.__class__.__name__) from exc

    sheets: list[SheetGrid] = []
    for title, frame in frames.items():
        rows = [
            _trim_row([_legacy_cell(value) for value in row])
            for row in frame.astype(object).itertuples(index=False, name=None)
        ]
        sheets.append(SheetGrid(name=str(title), rows=_trim_trailing_rows(rows)))
    return sheets


def read_workbook(content: bytes) -> list[SheetGrid]:
    if content.startswith(OLE2_SIGNATURE):
        return read_legacy_workbook(content)
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise unparseable_file(str(exc) or exc.__class__.__name__) from exc

    sheets: list[SheetGrid] = []
    try:
        for worksheet in workbook.worksheets:
            rows = [_trim_row(list(row)) for row in worksheet.iter_rows(values_only=True)]
            sheets.append(SheetGrid(name=worksheet.title, rows=_trim_trailing_rows(rows)))
    finally:
        workbook.close()
    return sheets
