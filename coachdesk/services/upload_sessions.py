import os
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

UPLOAD_SESSION_TTL_SECONDS = float(os.getenv("UPLOAD_SESSION_TTL_SECONDS", "900"))
UPLOAD_SESSION_SWEEP_SECONDS = float(os.getenv("UPLOAD_SESSION_SWEEP_SECONDS", "300"))

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{10,50}$")


def is_valid_session_id(value: Optional[str]) -> bool:
    return bool(value) and bool(SESSION_ID_PATTERN.fullmatch(value or ""))


@dataclass
class UploadSession:
    session_id: str
    created_at: float
    updated_at: float
    processed_chunks: set[int] = field(default_factory=set)
    in_flight_chunks: set[int] = field(default_factory=set)
    total_processed: int = 0
    errors: list[dict] = field(default_factory=list)
    file_chunks: dict[int, bytes] = field(default_factory=dict)

    def snapshot(self, now: float) -> dict:
        return {
            "exists": True,
            "processedChunks": len(self.processed_chunks),
            "totalProcessed": self.total_processed,
            "errors": list(self.errors),
            "age": round(now - self.created_at, 3),
        }


class ChunkClaim(str, Enum):
    claimed = "claimed"
    already_processed = "already_processed"
    in_progress = "in_progress"


class UploadSessionStore:
    """Process-local upload sessions keyed by client-supplied ID.

    Every read and write happens under one lock; sync FastAPI handlers run
    on a thread pool, so concurrent chunks for one session are common.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        sweep_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = UPLOAD_SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.sweep_seconds = UPLOAD_SESSION_SWEEP_SECONDS if sweep_seconds is None else sweep_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, UploadSession] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _sweep_locked(self, now: float, force: bool = False) -> int:
        if not force and now - self._last_sweep < self.sweep_seconds:
            return 0
        self._last_sweep = now
        expired = [
            key for key, session in self._sessions.items() if now - session.updated_at > self.ttl_seconds
        ]
        for key in expired:
            del self._sessions[key]
        return len(expired)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock(), force=True)

    def _get_or_create_locked(self, session_id: str, now: float) -> UploadSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = UploadSession(session_id=session_id, created_at=now, updated_at=now)
            self._sessions[session_id] = session
        session.updated_at = now
        return session

    def status(self, session_id: str) -> Optional[dict]:
        with self._lock:
            now = self._clock()
            self._sweep_locked(now)
            session = self._sessions.get(session_id)
            if session is None or now - session.updated_at > self.ttl_seconds:
                return None
            return session.snapshot(now)

    def total_processed(self, session_id: str) -> int:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.total_processed if session else 0

    def claim_chunk(self, session_id: str, chunk_index: int) -> ChunkClaim:
        with self._lock:
            now = self._clock()
            self._sweep_locked(now)
            session = self._get_or_create_locked(session_id, now)
            if chunk_index in session.processed_chunks:
                return ChunkClaim.already_processed
            if chunk_index in session.in_flight_chunks:
                return ChunkClaim.in_progress
            session.in_flight_chunks.add(chunk_index)
            return ChunkClaim.claimed

    def complete_chunk(self, session_id: str, chunk_index: int, imported: int) -> dict:
        with self._lock:
            now = self._clock()
            session = self._get_or_create_locked(session_id, now)
            session.in_flight_chunks.discard(chunk_index)
            session.processed_chunks.add(chunk_index)
            session.total_processed += imported
            return session.snapshot(now)

    def fail_chunk(self, session_id: str, chunk_index: int, error: str) -> None:
        with self._lock:
            now = self._clock()
            session = self._get_or_create_locked(session_id, now)
            session.in_flight_chunks.discard(chunk_index)
            session.errors.append({"chunk": chunk_index, "error": error})

    def record_errors(self, session_id: str, chunk_index: int, errors: list[str]) -> None:
        if not errors:
            return
        with self._lock:
            session = self._get_or_create_locked(session_id, self._clock())
            session.errors.extend({"chunk": chunk_index, "error": error} for error in errors)

    def store_file_chunk(self, upload_id: str, chunk_index: int, data: bytes) -> int:
        with self._lock:
            now = self._clock()
            self._sweep_locked(now)
            session = self._get_or_create_locked(upload_id, now)
            session.file_chunks[chunk_index] = data
            return sum(len(piece) for piece in session.file_chunks.values())

    def assemble_file(self, upload_id: str, total_chunks: int) -> Optional[bytes]:
        """Return the joined pieces and drop the session, or None when pieces are missing."""
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is None:
                return None
            if total_chunks < 1 or set(session.file_chunks) != set(range(total_chunks)):
                return None
            del self._sessions[upload_id]
            return b"".join(session.file_chunks[index] for index in range(total_chunks))

    def has_session(self, upload_id: str) -> bool:
        with self._lock:
            return upload_id in self._sessions

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


_store = UploadSessionStore()


def get_upload_sessions() -> UploadSessionStore:
    return _store
