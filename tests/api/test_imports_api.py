import json

from sqlalchemy.exc import OperationalError

from coachdesk.db.models import Client, Organization
from coachdesk.services import writer
from coachdesk.services.ingestion import DEFAULT_ORGANIZATION_ID

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _post_file(client, name: str, content: bytes, mime: str, **data):
    return client.post("/clients/import", files={"file": (name, content, mime)}, data=data)


def test_csv_import_trims_values(client, db_session, owner_id) -> None:
    content = b"Name,Email,Goals\n  Alice Smith , alice@example.com ,  Build strength \n"
    response = _post_file(client, "clients.csv", content, "text/csv", user_id=owner_id)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["imported"] == 1
    assert body["failed"] == 0
    assert body["total"] == 1

    row = db_session.query(Client).filter(Client.user_id == owner_id).one()
    assert row.full_name == "Alice Smith"
    assert row.email == "alice@example.com"
    assert row.goals == "Build strength"


def test_per_sheet_workbook_skips_template(client, db_session, owner_id, build_xlsx) -> None:
    content = build_xlsx(
        {
            "Alice": [["Injuries: knee", None, "Goals: run 5k"], ["Date", "Workout"], ["2024-01-01", "Run"]],
            "Master Template": [["Injuries:", None, "Goals:"]],
            "Bob": [["Goals: strength"]],
        }
    )
    response = _post_file(client, "roster.xlsx", content, XLSX_MIME, user_id=owner_id)
    assert response.status_code == 200
    body = response.json()
    assert body["imported"] == 2
    assert body["layout"] == "per_sheet"
    assert body["skipped_sheets"] == ["Master Template"]

    names = sorted(row.full_name for row in db_session.query(Client).filter(Client.user_id == owner_id))
    assert names == ["Alice", "Bob"]


def test_table_workbook_with_options(client, db_session, owner_id, build_xlsx) -> None:
    content = build_xlsx(
        {
            "Notes": [["ignore me"]],
            "Roster": [["Client Name", "Age", "Weight (kg)"], ["Ann", 34, 61.5], ["Ben", 2000000, 80], ["Cal", 50, 90]],
        }
    )
    options = json.dumps({"sheet_name": "Roster", "max_rows": 2})
    response = _post_file(client, "roster.xlsx", content, XLSX_MIME, user_id=owner_id, options=options)
    assert response.status_code == 200
    assert response.json()["imported"] == 2

    rows = {row.full_name: row for row in db_session.query(Client).filter(Client.user_id == owner_id)}
    assert set(rows) == {"Ann", "Ben"}
    assert rows["Ann"].weight_kg == 61.5
    assert rows["Ben"].age is None


def test_legacy_xls_import(client, db_session, owner_id, build_xls) -> None:
    content = build_xls({"Roster": [["Client Name", "Age", "Email"], ["Ann", 34, "ann@example.com"], ["Ben", 41, None]]})
    response = _post_file(client, "roster.xls", content, "application/vnd.ms-excel", user_id=owner_id)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["imported"] == 2

    rows = {row.full_name: row for row in db_session.query(Client).filter(Client.user_id == owner_id)}
    assert set(rows) == {"Ann", "Ben"}
    assert rows["Ann"].age == 34
    assert rows["Ann"].email == "ann@example.com"


def test_dry_run_previews_without_writing(client, db_session, owner_id) -> None:
    content = b"Name\n" + b"".join(f"Client {i}\n".encode() for i in range(8))
    response = _post_file(
        client, "clients.csv", content, "text/csv", user_id=owner_id, options=json.dumps({"dry_run": True})
    )
    assert response.status_code == 200
    body = response.json()
    assert body["preview"] is True
    assert body["client_count"] == 8
    assert len(body["clients"]) == 5
    assert db_session.query(Client).filter(Client.user_id == owner_id).count() == 0


def test_rejects_bad_extension(client) -> None:
    response = _post_file(client, "clients.pdf", b"%PDF", "application/pdf")
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_FILE_TYPE"
    assert response.headers["x-content-type-options"] == "nosniff"


def test_rejects_empty_file(client) -> None:
    response = _post_file(client, "clients.csv", b"", "text/csv")
    assert response.status_code == 400
    assert response.json()["code"] == "EMPTY_FILE"


def test_rejects_oversized_file(client, monkeypatch) -> None:
    from coachdesk.core import sniffing

    monkeypatch.setattr(sniffing, "IMPORT_MAX_FILE_BYTES", 10)
    response = _post_file(client, "clients.csv", b"Name\nSomeone long\n", "text/csv")
    assert response.status_code == 413
    assert response.json()["code"] == "FILE_TOO_LARGE"


def test_corrupt_workbook_is_unparseable(client) -> None:
    response = _post_file(client, "clients.xlsx", b"PK\x03\x04not really a zip", XLSX_MIME)
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "UNPARSEABLE_FILE"
    assert "suggestion" in body


def test_no_name_column_is_no_valid_records(client) -> None:
    response = _post_file(client, "clients.csv", b"Email,Goals\na@x.com,run\n", "text/csv")
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "NO_VALID_RECORDS"
    assert body["errors"][0]["row"] == 1


def test_invalid_options_rejected(client) -> None:
    response = _post_file(client, "clients.csv", b"Name\nA\n", "text/csv", options="{not json")
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_total_failure_reports_import_failed(client, monkeypatch, owner_id) -> None:
    def _broken_insert(db, records):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(writer, "_insert", _broken_insert)
    response = _post_file(client, "clients.csv", b"Name\nA\nB\n", "text/csv", user_id=owner_id)
    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "IMPORT_FAILED"
    assert body["success"] is False
    assert body["failed"] == 2
    assert len(body["errors"]) == 2


def test_analyze_recommends_direct_for_small_files(client, build_xlsx) -> None:
    content = build_xlsx({"Clients": [["Name", "Age"], ["Ann", 30], ["Ben", 41]]})
    response = client.post("/clients/import/analyze", files={"file": ("c.xlsx", content, XLSX_MIME)})
    assert response.status_code == 200
    analysis = response.json()["analysis"]
    assert analysis["layout"] == "table"
    assert analysis["recommendations"]["import_method"] == "direct"
    sheet = analysis["sheets"][0]
    assert sheet["headers"] == ["Name", "Age"]
    assert sheet["row_count"] == 2
    assert sheet["column_types"] == {"Name": "text", "Age": "number"}
    assert sheet["recommended_mapping"] == {"full_name": "Name", "age": "Age"}


def test_records_import_creates_default_organization(client, db_session, owner_id) -> None:
    response = client.post(
        "/clients/import/records",
        json={"clients": [{"name": "Ann"}, {"full_name": "   "}, {"full_name": "Ben", "age": 30}], "user_id": owner_id},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["imported"] == 2
    assert body["total"] == 2

    assert db_session.query(Organization).filter(Organization.id == DEFAULT_ORGANIZATION_ID).count() == 1
    rows = db_session.query(Client).filter(Client.user_id == owner_id).all()
    assert {row.organization_id for row in rows} == {DEFAULT_ORGANIZATION_ID}


def test_records_import_requires_clients(client) -> None:
    response = client.post("/clients/import/records", json={"clients": []})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_chunked_upload_reassembles_file(client, db_session, owner_id) -> None:
    content = b"Name,Goals\nAnn,Run\nBen,Lift\n"
    upload_id = "upload_abc123"
    for index, piece in enumerate((content[:12], content[12:])):
        response = client.post(
            "/clients/import/upload",
            data={"action": "chunk", "uploadId": upload_id, "chunkIndex": str(index)},
            files={"chunk": ("blob", piece, "application/octet-stream")},
        )
        assert response.status_code == 200

    complete = client.post(
        "/clients/import/upload",
        data={
            "action": "complete",
            "uploadId": upload_id,
            "totalChunks": "2",
            "fileName": "clients.csv",
            "user_id": owner_id,
        },
    )
    assert complete.status_code == 200
    assert complete.json()["imported"] == 2
    assert db_session.query(Client).filter(Client.user_id == owner_id).count() == 2


def test_chunked_upload_missing_piece(client) -> None:
    upload_id = "upload_missing1"
    client.post(
        "/clients/import/upload",
        data={"action": "chunk", "uploadId": upload_id, "chunkIndex": "0"},
        files={"chunk": ("blob", b"Name\n", "application/octet-stream")},
    )
    response = client.post(
        "/clients/import/upload",
        data={"action": "complete", "uploadId": upload_id, "totalChunks": "2", "fileName": "c.csv"},
    )
    assert response.status_code == 400


def test_chunked_upload_rejects_bad_id(client) -> None:
    response = client.post(
        "/clients/import/upload",
        data={"action": "chunk", "uploadId": "bad id!", "chunkIndex": "0"},
        files={"chunk": ("blob", b"x", "application/octet-stream")},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SESSION_ID"
