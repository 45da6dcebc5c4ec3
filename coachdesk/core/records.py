from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

CLIENT_FIELDS: tuple[str, ...] = (
    "full_name",
    "email",
    "phone",
    "age",
    "sex",
    "height_cm",
    "weight_kg",
    "goals",
    "injuries",
    "equipment",
    "preferences",
    "notes",
    "user_id",
    "organization_id",
)


@dataclass
class ClientRecord:
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    age: Optional[float] = None
    sex: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    goals: Optional[str] = None
    injuries: Optional[str] = None
    equipment: list[str] = field(default_factory=list)
    preferences: dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    source_row: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in CLIENT_FIELDS}


@dataclass(frozen=True)
class RowError:
    row: int
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "error": self.error}


@dataclass
class ImportBatchResult:
    successful: int = 0
    failed: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.successful + self.failed

    def merge(self, other: "ImportBatchResult") -> None:
        self.successful += other.successful
        self.failed += other.failed
        self.errors.extend(other.errors)


@dataclass
class ExtractionResult:
    records: list[ClientRecord]
    layout: str
    sheet_names: list[str] = field(default_factory=list)
    skipped_sheets: list[str] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
