import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from coachdesk.db.models import Base

# Override with DB_PATH when needed.
DB_PATH = os.getenv("DB_PATH", "data/coachdesk.db")

connect_args = {"check_same_thread": False}


def _build_engine(db_path: str):
    db_parent = Path(db_path).expanduser().resolve().parent
    db_parent.mkdir(parents=True, exist_ok=True)
    database_url = f"sqlite:///{db_path}"
    return create_engine(database_url, connect_args=connect_args)


engine = _build_engine(DB_PATH)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def configure_database(db_path: str) -> None:
    global DB_PATH, engine
    DB_PATH = db_path
    engine = _build_engine(DB_PATH)
    SessionLocal.configure(bind=engine)


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
