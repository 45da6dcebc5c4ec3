from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

SECURITY_HEADERS = {"X-Content-Type-Options": "nosniff"}


class IngestionError(RuntimeError):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: Optional[str] = None,
        suggestion: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.suggestion = suggestion
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.code:
            body["code"] = self.code
        if self.suggestion:
            body["suggestion"] = self.suggestion
        body.update(self.extra)
        return body


def invalid_request(message: str, code: str = "INVALID_REQUEST") -> IngestionError:
    return IngestionError(message, status_code=400, code=code)


def unparseable_file(detail: str) -> IngestionError:
    return IngestionError(
        f"Could not read file contents: {detail[:220]}",
        status_code=422,
        code="UNPARSEABLE_FILE",
        suggestion="Save the file as .xlsx or CSV and upload it again.",
    )


async def ingestion_error_handler(_request: Request, exc: IngestionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=SECURITY_HEADERS)
