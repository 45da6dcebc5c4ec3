import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from coachdesk.core.columns import normalize_mapping
from coachdesk.core.errors import SECURITY_HEADERS, IngestionError, invalid_request, unparseable_file
from coachdesk.core.records import ClientRecord
from coachdesk.core.sheet_layout import SheetLayout
from coachdesk.core.sniffing import IMPORT_MAX_FILE_BYTES, validate_upload
from coachdesk.db.session import get_db
from coachdesk.services.ingestion import (
    DEFAULT_ORGANIZATION_ID,
    IMPORT_ERROR_LIMIT,
    ImportOptions,
    analyze_file,
    assign_ownership,
    build_summary,
    ensure_organization,
    extract_records,
    require_records,
)
from coachdesk.services.upload_sessions import (
    ChunkClaim,
    UploadSessionStore,
    get_upload_sessions,
    is_valid_session_id,
)
from coachdesk.services.writer import (
    FILE_IMPORT_POLICY,
    RECORDS_IMPORT_POLICY,
    stream_policy,
    write_records,
)

router = APIRouter(prefix="/clients/import", tags=["imports"])
logger = logging.getLogger("uvicorn.error")

DRY_RUN_PREVIEW_LIMIT = 5
MAX_RECORDS_PER_REQUEST = 10000


class ImportOptionsPayload(BaseModel):
    sheet_name: Optional[str] = Field(default=None, max_length=255)
    layout: SheetLayout = SheetLayout.auto
    skip_rows: int = Field(default=0, ge=0, le=100000)
    max_rows: Optional[int] = Field(default=None, ge=1)
    dry_run: bool = False


class RecordsImportRequest(BaseModel):
    clients: list[dict[str, Any]] = Field(max_length=MAX_RECORDS_PER_REQUEST)
    user_id: Optional[str] = Field(default=None, max_length=64)
    organization_id: Optional[str] = Field(default=None, max_length=36)


class StreamChunkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    chunk_index: int = Field(alias="chunkIndex", ge=0)
    total_chunks: int = Field(alias="totalChunks", ge=1)
    is_last_chunk: bool = Field(default=False, alias="isLastChunk")
    clients: list[dict[str, Any]] = Field(default_factory=list, max_length=MAX_RECORDS_PER_REQUEST)
    user_id: Optional[str] = Field(default=None, alias="userId", max_length=64)
    organization_id: Optional[str] = Field(default=None, alias="organizationId", max_length=36)


def _json(body: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body, headers=SECURITY_HEADERS)


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def _parse_options(raw: Optional[str]) -> ImportOptions:
    if not raw:
        return ImportOptions()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise invalid_request(f"options must be a JSON object: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise invalid_request("options must be a JSON object")
    try:
        parsed = ImportOptionsPayload.model_validate(data)
    except ValidationError as exc:
        raise invalid_request(f"Invalid options: {_validation_message(exc)}") from exc
    return ImportOptions(
        sheet_name=parsed.sheet_name,
        layout=parsed.layout,
        skip_rows=parsed.skip_rows,
        max_rows=parsed.max_rows,
        dry_run=parsed.dry_run,
    )


def _read_upload(file: UploadFile) -> bytes:
    filename = file.filename or ""
    # Reject oversized uploads before buffering when the size is known up front.
    if file.size is not None:
        validate_upload(filename, file.content_type, file.size)
    content = file.file.read()
    validate_upload(filename, file.content_type, len(content))
    return content


def _normalize_payload_records(payloads: list[dict[str, Any]]) -> list[ClientRecord]:
    records: list[ClientRecord] = []
    for index, payload in enumerate(payloads):
        if not isinstance(payload, dict):
            continue
        record = normalize_mapping(payload, source_row=index + 1)
        if record is not None:
            records.append(record)
    return records


def run_file_import(
    db: Session,
    filename: str,
    content_type: Optional[str],
    content: bytes,
    options: ImportOptions,
    user_id: Optional[str],
    organization_id: Optional[str],
) -> JSONResponse:
    try:
        extraction = extract_records(filename, content_type, content, options)
    except IngestionError:
        raise
    except Exception as exc:
        logger.exception("client_import_parse_error file=%s detail=%s", filename, str(exc))
        raise unparseable_file(exc.__class__.__name__) from exc
    require_records(extraction)

    if options.dry_run:
        return _json(
            {
                "success": True,
                "preview": True,
                "layout": extraction.layout,
                "client_count": len(extraction.records),
                "clients": [record.to_dict() for record in extraction.records[:DRY_RUN_PREVIEW_LIMIT]],
                "skipped_sheets": extraction.skipped_sheets,
            }
        )

    assign_ownership(extraction.records, user_id, organization_id)
    if organization_id:
        ensure_organization(db, organization_id)
    result = write_records(db, extraction.records, FILE_IMPORT_POLICY)
    status_code, body = build_summary(result, len(extraction.records), extraction.errors)
    body["layout"] = extraction.layout
    body["skipped_sheets"] = extraction.skipped_sheets
    logger.info(
        "client_import_complete file=%s layout=%s imported=%s failed=%s",
        filename,
        extraction.layout,
        result.successful,
        result.failed,
    )
    return _json(body, status_code)


@router.post("")
def import_clients_file(
    file: UploadFile = File(...),
    options: Optional[str] = Form(default=None),
    user_id: Optional[str] = Form(default=None, max_length=64),
    organization_id: Optional[str] = Form(default=None, max_length=36),
    db: Session = Depends(get_db),
) -> JSONResponse:
    content = _read_upload(file)
    return run_file_import(
        db,
        file.filename or "",
        file.content_type,
        content,
        _parse_options(options),
        user_id,
        organization_id,
    )


@router.post("/analyze")
def analyze_clients_file(file: UploadFile = File(...)) -> JSONResponse:
    content = _read_upload(file)
    try:
        analysis = analyze_file(file.filename or "", file.content_type, content)
    except IngestionError:
        raise
    except Exception as exc:
        logger.exception("client_import_analyze_error file=%s detail=%s", file.filename, str(exc))
        raise unparseable_file(exc.__class__.__name__) from exc
    return _json({"success": True, "analysis": analysis})


@router.post("/records")
def import_client_records(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
) -> JSONResponse:
    try:
        request = RecordsImportRequest.model_validate(payload)
    except ValidationError as exc:
        raise invalid_request(f"Invalid request: {_validation_message(exc)}") from exc
    if not request.clients:
        raise invalid_request("clients must be a non-empty list")

    records = _normalize_payload_records(request.clients)
    if not records:
        raise IngestionError(
            "No valid client records in request",
            code="NO_VALID_RECORDS",
            suggestion="Each client needs a non-empty full_name.",
        )

    organization_id = request.organization_id or DEFAULT_ORGANIZATION_ID
    ensure_organization(db, organization_id)
    assign_ownership(records, request.user_id, organization_id)
    result = write_records(db, records, RECORDS_IMPORT_POLICY)
    status_code, body = build_summary(result, len(records))
    logger.info(
        "client_records_import_complete imported=%s failed=%s", result.successful, result.failed
    )
    return _json(body, status_code)


def _final_stream_summary(
    sessions: UploadSessionStore, chunk: StreamChunkRequest, snapshot: dict[str, Any]
) -> JSONResponse:
    sessions.discard(chunk.session_id)
    logger.info(
        "client_stream_import_complete session=%s chunks=%s imported=%s",
        chunk.session_id,
        snapshot["processedChunks"],
        snapshot["totalProcessed"],
    )
    return _json(
        {
            "success": True,
            "sessionId": chunk.session_id,
            "totalChunks": chunk.total_chunks,
            "processedChunks": snapshot["processedChunks"],
            "totalImported": snapshot["totalProcessed"],
            "errors": snapshot["errors"][:IMPORT_ERROR_LIMIT],
            "complete": True,
        }
    )


@router.post("/stream")
def import_client_stream_chunk(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    sessions: UploadSessionStore = Depends(get_upload_sessions),
) -> JSONResponse:
    session_id = payload.get("sessionId")
    if not isinstance(session_id, str) or not is_valid_session_id(session_id):
        raise invalid_request("Invalid session ID format", code="INVALID_SESSION_ID")
    try:
        chunk = StreamChunkRequest.model_validate(payload)
    except ValidationError as exc:
        raise invalid_request(f"Invalid chunk: {_validation_message(exc)}") from exc
    if chunk.chunk_index >= chunk.total_chunks:
        raise invalid_request("chunkIndex must be less than totalChunks")

    claim = sessions.claim_chunk(chunk.session_id, chunk.chunk_index)
    if claim == ChunkClaim.already_processed:
        return _json(
            {
                "success": True,
                "message": "Chunk already processed",
                "chunkIndex": chunk.chunk_index,
                "totalProcessed": sessions.total_processed(chunk.session_id),
            }
        )
    if claim == ChunkClaim.in_progress:
        # Nothing is committed yet; the client must retry once the first request finishes.
        return _json(
            {
                "success": False,
                "message": "Chunk is being processed",
                "code": "CHUNK_IN_PROGRESS",
                "chunkIndex": chunk.chunk_index,
                "totalProcessed": sessions.total_processed(chunk.session_id),
            },
            status_code=409,
        )

    records = _normalize_payload_records(chunk.clients)
    if not records:
        snapshot = sessions.complete_chunk(chunk.session_id, chunk.chunk_index, 0)
        if chunk.is_last_chunk:
            return _final_stream_summary(sessions, chunk, snapshot)
        return _json(
            {
                "success": True,
                "message": "No valid clients in chunk",
                "chunkIndex": chunk.chunk_index,
                "processed": 0,
                "totalProcessed": snapshot["totalProcessed"],
            }
        )

    organization_id = chunk.organization_id or DEFAULT_ORGANIZATION_ID
    assign_ownership(records, chunk.user_id, organization_id)
    try:
        ensure_organization(db, organization_id)
        result = write_records(db, records, stream_policy())
    except Exception as exc:
        # Release the claim so the client can resend this chunk.
        db.rollback()
        sessions.fail_chunk(chunk.session_id, chunk.chunk_index, exc.__class__.__name__)
        logger.exception("client_stream_chunk_error session=%s detail=%s", chunk.session_id, str(exc))
        raise IngestionError(
            "Database error while importing chunk", status_code=500, code="DB_INSERT_ERROR"
        ) from exc

    if result.successful == 0 and result.failed > 0:
        details = [error.error for error in result.errors]
        sessions.fail_chunk(chunk.session_id, chunk.chunk_index, details[0] if details else "insert failed")
        return _json(
            {
                "success": False,
                "error": "Failed to insert clients",
                "code": "DB_INSERT_ERROR",
                "chunkIndex": chunk.chunk_index,
                "details": details[:IMPORT_ERROR_LIMIT],
            },
            status_code=500,
        )

    sessions.record_errors(chunk.session_id, chunk.chunk_index, [error.error for error in result.errors])
    snapshot = sessions.complete_chunk(chunk.session_id, chunk.chunk_index, result.successful)
    logger.info(
        "client_stream_chunk session=%s chunk=%s/%s imported=%s failed=%s",
        chunk.session_id,
        chunk.chunk_index + 1,
        chunk.total_chunks,
        result.successful,
        result.failed,
    )
    if chunk.is_last_chunk:
        return _final_stream_summary(sessions, chunk, snapshot)
    return _json(
        {
            "success": True,
            "chunkIndex": chunk.chunk_index,
            "processed": result.successful,
            "failed": result.failed,
            "totalProcessed": snapshot["totalProcessed"],
            "progress": round(snapshot["processedChunks"] / chunk.total_chunks * 100),
        }
    )


@router.get("/stream")
def get_stream_status(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    sessions: UploadSessionStore = Depends(get_upload_sessions),
) -> JSONResponse:
    if not is_valid_session_id(session_id):
        raise invalid_request("Invalid session ID format", code="INVALID_SESSION_ID")
    snapshot = sessions.status(session_id or "")
    if snapshot is None:
        return _json({"exists": False, "message": "Session not found or expired"})
    return _json(snapshot)


@router.post("/upload")
def upload_file_piece(
    action: str = Form(...),
    upload_id: str = Form(..., alias="uploadId"),
    chunk_index: Optional[int] = Form(default=None, alias="chunkIndex"),
    total_chunks: Optional[int] = Form(default=None, alias="totalChunks"),
    file_name: Optional[str] = Form(default=None, alias="fileName"),
    content_type: Optional[str] = Form(default=None, alias="contentType"),
    options: Optional[str] = Form(default=None),
    user_id: Optional[str] = Form(default=None, max_length=64),
    organization_id: Optional[str] = Form(default=None, max_length=36),
    chunk: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    sessions: UploadSessionStore = Depends(get_upload_sessions),
) -> JSONResponse:
    if not is_valid_session_id(upload_id):
        raise invalid_request("Invalid upload ID format", code="INVALID_SESSION_ID")

    if action == "chunk":
        if chunk is None or chunk_index is None or chunk_index < 0:
            raise invalid_request("Missing chunk data")
        data = chunk.file.read()
        received = sessions.store_file_chunk(upload_id, chunk_index, data)
        if received > IMPORT_MAX_FILE_BYTES:
            sessions.discard(upload_id)
            raise IngestionError(
                f"File too large. Maximum size: {IMPORT_MAX_FILE_BYTES // (1024 * 1024)}MB",
                status_code=413,
                code="FILE_TOO_LARGE",
            )
        return _json({"success": True, "chunkIndex": chunk_index, "received": received})

    if action == "complete":
        if total_chunks is None or total_chunks < 1:
            raise invalid_request("Missing totalChunks")
        filename = file_name or "upload.xlsx"
        content = sessions.assemble_file(upload_id, total_chunks)
        if content is None:
            raise invalid_request("Missing chunks for upload")
        validate_upload(filename, content_type, len(content))
        return run_file_import(
            db,
            filename,
            content_type,
            content,
            _parse_options(options),
            user_id,
            organization_id,
        )

    raise invalid_request("action must be 'chunk' or 'complete'")
