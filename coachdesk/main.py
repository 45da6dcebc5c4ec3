from fastapi import FastAPI

from coachdesk.api.clients import router as clients_router
from coachdesk.api.feedback import router as feedback_router
from coachdesk.api.imports import router as imports_router
from coachdesk.core.errors import IngestionError, ingestion_error_handler
from coachdesk.db.session import create_tables

app = FastAPI(title="Coachdesk")
app.add_exception_handler(IngestionError, ingestion_error_handler)


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "Coachdesk API", "status": "ok"}


app.include_router(imports_router)
app.include_router(clients_router)
app.include_router(feedback_router)
