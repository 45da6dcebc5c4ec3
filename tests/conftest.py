import io
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

import pytest
import xlwt
from fastapi.testclient import TestClient
from openpyxl import Workbook

from coachdesk.db.session import SessionLocal, configure_database, create_tables
from coachdesk.services import writer
from coachdesk.services.upload_sessions import UploadSessionStore, get_upload_sessions

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "coachdesk_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from coachdesk.main import app as fastapi_app

    return fastapi_app


@pytest.fixture(autouse=True)
def no_import_delays(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(writer, "IMPORT_RETRY_BACKOFF_SECONDS", 0.0)
    monkeypatch.setattr(writer, "IMPORT_BATCH_PAUSE_SECONDS", 0.0)


@pytest.fixture
def upload_sessions() -> UploadSessionStore:
    return UploadSessionStore(ttl_seconds=900, sweep_seconds=300)


@pytest.fixture
def client(app, upload_sessions: UploadSessionStore):
    app.dependency_overrides = {}
    app.dependency_overrides[get_upload_sessions] = lambda: upload_sessions
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def owner_id() -> str:
    return f"user_{uuid4().hex[:12]}"


@pytest.fixture
def build_xlsx() -> Callable[[dict[str, list[list[Any]]]], bytes]:
    def _build(sheets: dict[str, list[list[Any]]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            worksheet = workbook.create_sheet(title=title)
            for row in rows:
                worksheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _build


@pytest.fixture
def build_xls() -> Callable[[dict[str, list[list[Any]]]], bytes]:
    def _build(sheets: dict[str, list[list[Any]]]) -> bytes:
        workbook = xlwt.Workbook()
        for title, rows in sheets.items():
            worksheet = workbook.add_sheet(title)
            for row_index, row in enumerate(rows):
                for col_index, value in enumerate(row):
                    if value is not None:
                        worksheet.write(row_index, col_index, value)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _build
