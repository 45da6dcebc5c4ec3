import pytest

from coachdesk.core.errors import IngestionError
from coachdesk.core.sniffing import OLE2_SIGNATURE
from coachdesk.core.workbook import read_csv_grid, read_workbook


def test_read_workbook_handles_legacy_xls(build_xls) -> None:
    content = build_xls(
        {
            "Roster": [["Name", "Age", None], ["Ann", 34, None], ["Ben", None, "note"], [None, None, None]],
            "Empty": [],
        }
    )
    assert content.startswith(OLE2_SIGNATURE)

    sheets = read_workbook(content)
    assert [sheet.name for sheet in sheets] == ["Roster", "Empty"]
    roster = sheets[0].rows
    assert roster[0] == ["Name", "Age"]
    assert roster[1][0] == "Ann"
    assert roster[1][1] == 34
    assert roster[2] == ["Ben", None, "note"]
    assert sheets[1].rows == []


def test_read_workbook_corrupt_xls_is_unparseable() -> None:
    with pytest.raises(IngestionError) as excinfo:
        read_workbook(OLE2_SIGNATURE + b"not a compound document")
    assert excinfo.value.code == "UNPARSEABLE_FILE"


def test_read_workbook_matches_xlsx_grid(build_xlsx) -> None:
    sheets = read_workbook(build_xlsx({"Clients": [["Name", None], ["Ann", 30]]}))
    assert sheets[0].rows == [["Name"], ["Ann", 30]]


def test_read_csv_grid_trims_trailing_blanks() -> None:
    grid = read_csv_grid("Name,Age,\nAnn,30,\n,,\n".encode("utf-8"))
    assert grid.rows == [["Name", "Age"], ["Ann", "30"]]
