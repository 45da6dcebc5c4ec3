from coachdesk.core.columns import has_name_column, normalize_header, normalize_mapping, normalize_row, resolve_columns


def test_normalize_header_collapses_case_and_separators() -> None:
    assert normalize_header("  Full_Name ") == "full name"
    assert normalize_header("E-mail") == "e-mail"


def test_resolve_columns_prefers_first_alias_in_order() -> None:
    headers = ["Client", "Name", "Email Address", "Gender", "Weight (kg)", "Goals"]
    mapping = resolve_columns(headers)
    # "name" is listed before "client" for full_name.
    assert mapping["full_name"] == 1
    assert mapping["email"] == 2
    assert mapping["sex"] == 3
    assert mapping["weight_kg"] == 4
    assert mapping["goals"] == 5


def test_has_name_column() -> None:
    assert has_name_column(["Member Name", "Phone"])
    assert not has_name_column(["Injuries:", None, "Goals"])


def test_normalize_row_sanitizes_and_drops_blank_names() -> None:
    mapping = resolve_columns(["Name", "Age", "Equipment", "Height"])
    record = normalize_row(["  Dana  ", "1000000", "bands, mat", "172"], mapping, source_row=2)
    assert record is not None
    assert record.full_name == "Dana"
    assert record.age is None
    assert record.equipment == ["bands", "mat"]
    assert record.height_cm == 172.0
    assert record.source_row == 2

    assert normalize_row(["   ", "30"], mapping) is None
    assert normalize_row([], mapping) is None


def test_normalize_mapping_accepts_name_alias_and_sheet_name() -> None:
    record = normalize_mapping(
        {"name": "Lee", "sheetName": "Lee", "age": "41", "preferences": {"days": 3}, "equipment": ["rower"]}
    )
    assert record is not None
    assert record.full_name == "Lee"
    assert record.age == 41.0
    assert record.notes == "Imported from sheet: Lee"
    assert record.preferences == {"days": 3}
    assert record.equipment == ["rower"]
    assert normalize_mapping({"full_name": " "}) is None
