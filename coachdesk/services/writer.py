import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coachdesk.core.records import ClientRecord, ImportBatchResult, RowError
from coachdesk.db.models import Client

logger = logging.getLogger("uvicorn.error")

IMPORT_RETRY_ATTEMPTS = int(os.getenv("IMPORT_RETRY_ATTEMPTS", "3"))
IMPORT_RETRY_BACKOFF_SECONDS = float(os.getenv("IMPORT_RETRY_BACKOFF_SECONDS", "1.0"))
IMPORT_BATCH_PAUSE_SECONDS = float(os.getenv("IMPORT_BATCH_PAUSE_SECONDS", "0.1"))
ERROR_MESSAGE_LIMIT = 220


@dataclass(frozen=True)
class WritePolicy:
    batch_size: int
    max_attempts: int = 1
    backoff_seconds: Optional[float] = None
    pause_seconds: Optional[float] = None

    def backoff_for(self, attempt: int) -> float:
        base = IMPORT_RETRY_BACKOFF_SECONDS if self.backoff_seconds is None else self.backoff_seconds
        return base * (2 ** (attempt - 1))

    def pause(self) -> float:
        return IMPORT_BATCH_PAUSE_SECONDS if self.pause_seconds is None else self.pause_seconds


FILE_IMPORT_POLICY = WritePolicy(batch_size=10)
RECORDS_IMPORT_POLICY = WritePolicy(batch_size=50)


def stream_policy() -> WritePolicy:
    return WritePolicy(batch_size=3, max_attempts=IMPORT_RETRY_ATTEMPTS)


def to_model(record: ClientRecord) -> Client:
    return Client(
        full_name=record.full_name,
        email=record.email,
        phone=record.phone,
        age=record.age,
        sex=record.sex,
        height_cm=record.height_cm,
        weight_kg=record.weight_kg,
        goals=record.goals,
        injuries=record.injuries,
        equipment_json=json.dumps(record.equipment or []),
        preferences_json=json.dumps(record.preferences or {}, default=str),
        notes=record.notes,
        user_id=record.user_id,
        organization_id=record.organization_id,
    )


def _short(exc: BaseException) -> str:
    message = str(getattr(exc, "orig", None) or exc).strip() or exc.__class__.__name__
    return message.splitlines()[0][:ERROR_MESSAGE_LIMIT]


def _row_number(record: ClientRecord, position: int) -> int:
    return record.source_row if record.source_row is not None else position + 1


def _insert(db: Session, records: Sequence[ClientRecord]) -> list[Client]:
    rows = [to_model(record) for record in records]
    try:
        db.add_all(rows)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return rows


def _insert_individually(
    db: Session, records: Sequence[ClientRecord], offset: int
) -> ImportBatchResult:
    result = ImportBatchResult()
    for index, record in enumerate(records):
        try:
            _insert(db, [record])
            result.successful += 1
        except SQLAlchemyError as exc:
            result.failed += 1
            result.errors.append(
                RowError(row=_row_number(record, offset + index), error=f"{record.full_name}: {_short(exc)}")
            )
    return result


def write_records(
    db: Session,
    records: Sequence[ClientRecord],
    policy: WritePolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> ImportBatchResult:
    """Insert ``records`` batch by batch and report per-row outcomes.

    A failing batch is retried up to ``policy.max_attempts`` times with
    exponential backoff. After that it is split into single-record inserts
    so one malformed record fails alone. This function does not raise on
    datastore errors.
    """
    result = ImportBatchResult()
    size = max(1, policy.batch_size)
    total_batches = (len(records) + size - 1) // size

    for batch_number, start in enumerate(range(0, len(records), size), start=1):
        batch = records[start : start + size]
        last_error: Optional[SQLAlchemyError] = None
        for attempt in range(1, max(1, policy.max_attempts) + 1):
            try:
                _insert(db, batch)
                result.successful += len(batch)
                last_error = None
                break
            except SQLAlchemyError as exc:
                last_error = exc
                if attempt < policy.max_attempts:
                    delay = policy.backoff_for(attempt)
                    logger.warning(
                        "client_import_batch_retry batch=%s/%s attempt=%s delay=%.1fs detail=%s",
                        batch_number,
                        total_batches,
                        attempt,
                        delay,
                        _short(exc),
                    )
                    sleep(delay)

        if last_error is not None:
            logger.warning(
                "client_import_batch_failed batch=%s/%s attempts=%s detail=%s",
                batch_number,
                total_batches,
                policy.max_attempts,
                _short(last_error),
            )
            result.merge(_insert_individually(db, batch, start))
        else:
            logger.info("client_import_batch batch=%s/%s inserted=%s", batch_number, total_batches, len(batch))

        if start + size < len(records) and policy.pause() > 0:
            sleep(policy.pause())

    return result
