import json

from coachdesk.core.records import ClientRecord
from coachdesk.db.models import Client
from coachdesk.services.writer import FILE_IMPORT_POLICY, WritePolicy, stream_policy, write_records


def _records(owner_id: str, names: list[str]) -> list[ClientRecord]:
    return [
        ClientRecord(full_name=name, user_id=owner_id, source_row=index + 2, equipment=["mat"])
        for index, name in enumerate(names)
    ]


def test_write_records_inserts_in_batches(db_session, owner_id) -> None:
    sleeps: list[float] = []
    policy = WritePolicy(batch_size=10, pause_seconds=0.1)
    result = write_records(db_session, _records(owner_id, [f"Client {i}" for i in range(25)]), policy, sleep=sleeps.append)

    assert result.successful == 25
    assert result.failed == 0
    assert sleeps == [0.1, 0.1]
    rows = db_session.query(Client).filter(Client.user_id == owner_id).all()
    assert len(rows) == 25
    assert json.loads(rows[0].equipment_json) == ["mat"]


def test_one_malformed_record_fails_alone(db_session, owner_id) -> None:
    records = _records(owner_id, ["Ann", "Ben", "   ", "Dee"])
    result = write_records(db_session, records, FILE_IMPORT_POLICY, sleep=lambda _: None)

    assert result.successful == 3
    assert result.failed == 1
    assert len(result.errors) == 1
    assert result.errors[0].row == 4
    assert db_session.query(Client).filter(Client.user_id == owner_id).count() == 3


def test_stream_policy_retries_then_isolates_bad_record(db_session, owner_id) -> None:
    sleeps: list[float] = []
    policy = WritePolicy(batch_size=3, max_attempts=3, backoff_seconds=1.0, pause_seconds=0.5)
    result = write_records(db_session, _records(owner_id, ["Ann", " ", "Dee"]), policy, sleep=sleeps.append)

    assert result.successful == 2
    assert result.failed == 1
    assert sleeps == [1.0, 2.0]
    assert len(result.errors) == 1
    assert result.errors[0].row == 3
    assert len(result.errors[0].error) <= 240
    names = {row.full_name for row in db_session.query(Client).filter(Client.user_id == owner_id)}
    assert names == {"Ann", "Dee"}


def test_stream_policy_defaults() -> None:
    policy = stream_policy()
    assert policy.batch_size == 3
    assert policy.max_attempts == 3
    assert WritePolicy(batch_size=1, backoff_seconds=1.0).backoff_for(3) == 4.0


def test_write_records_empty_input(db_session) -> None:
    result = write_records(db_session, [], FILE_IMPORT_POLICY)
    assert result.attempted == 0
    assert result.errors == []
