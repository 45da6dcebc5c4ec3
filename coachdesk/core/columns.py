import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from coachdesk.core.records import ClientRecord
from coachdesk.core.sanitize import (
    cell_text,
    sanitize_list,
    sanitize_mapping,
    sanitize_number,
    sanitize_string,
)


@dataclass(frozen=True)
class FieldAliases:
    field: str
    aliases: tuple[str, ...]


# Order matters: the first alias found in a header row wins for its field.
FIELD_ALIASES: tuple[FieldAliases, ...] = (
    FieldAliases(
        "full_name",
        ("name", "full name", "client name", "customer", "customer name", "client", "member", "member name"),
    ),
    FieldAliases("email", ("email", "email address", "e-mail", "mail")),
    FieldAliases("phone", ("phone", "phone number", "mobile", "cell", "telephone", "contact number")),
    FieldAliases("age", ("age", "age years")),
    FieldAliases("sex", ("sex", "gender")),
    FieldAliases("height_cm", ("height cm", "height", "height (cm)")),
    FieldAliases("weight_kg", ("weight kg", "weight", "weight (kg)", "body weight")),
    FieldAliases(
        "goals",
        ("goals", "goal", "training goals", "fitness goals", "transformation goal", "objectives"),
    ),
    FieldAliases(
        "injuries",
        ("injuries", "injury", "limitations", "medical", "medical notes", "conditions"),
    ),
    FieldAliases("equipment", ("equipment", "available equipment", "gear")),
    FieldAliases("notes", ("notes", "comments", "remarks", "additional info")),
)

TEXT_FIELDS = ("full_name", "email", "phone", "sex", "goals", "injuries", "notes")
NUMBER_FIELDS = ("age", "height_cm", "weight_kg")

_HEADER_NOISE = re.compile(r"[\s_]+")


def normalize_header(value: Any) -> str:
    return _HEADER_NOISE.sub(" ", cell_text(value).lower()).strip()


def resolve_columns(headers: Sequence[Any]) -> dict[str, int]:
    positions: dict[str, int] = {}
    for index, header in enumerate(headers):
        key = normalize_header(header)
        if key and key not in positions:
            positions[key] = index

    mapping: dict[str, int] = {}
    for entry in FIELD_ALIASES:
        for alias in entry.aliases:
            if alias in positions:
                mapping[entry.field] = positions[alias]
                break
    return mapping


def has_name_column(headers: Sequence[Any]) -> bool:
    return "full_name" in resolve_columns(headers)


def _cell(row: Sequence[Any], index: Optional[int]) -> Any:
    if index is None or index >= len(row):
        return None
    return row[index]


def normalize_row(
    row: Sequence[Any],
    mapping: dict[str, int],
    source_row: Optional[int] = None,
) -> Optional[ClientRecord]:
    full_name = sanitize_string(_cell(row, mapping.get("full_name")))
    if not full_name:
        return None

    record = ClientRecord(full_name=full_name, source_row=source_row)
    for name in TEXT_FIELDS[1:]:
        setattr(record, name, sanitize_string(_cell(row, mapping.get(name))))
    for name in NUMBER_FIELDS:
        setattr(record, name, sanitize_number(_cell(row, mapping.get(name))))
    record.equipment = sanitize_list(_cell(row, mapping.get("equipment")))
    return record


def normalize_mapping(payload: dict[str, Any], source_row: Optional[int] = None) -> Optional[ClientRecord]:
    # Pre-parsed JSON records use canonical keys, with "name" accepted for full_name.
    full_name = sanitize_string(payload.get("full_name") or payload.get("name"))
    if not full_name:
        return None

    record = ClientRecord(full_name=full_name, source_row=source_row)
    for name in TEXT_FIELDS[1:]:
        setattr(record, name, sanitize_string(payload.get(name)))
    for name in NUMBER_FIELDS:
        setattr(record, name, sanitize_number(payload.get(name)))
    record.equipment = sanitize_list(payload.get("equipment"))
    record.preferences = sanitize_mapping(payload.get("preferences"))
    sheet_name = sanitize_string(payload.get("sheetName") or payload.get("sheet_name"))
    if sheet_name and not record.notes:
        record.notes = f"Imported from sheet: {sheet_name}"
    record.user_id = sanitize_string(payload.get("user_id"))
    record.organization_id = sanitize_string(payload.get("organization_id"))
    return record
