import os
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from craveless.db.models import Base

DB_PATH = os.getenv("DB_PATH", "/var/data/craveless.db")

# Route threads share the engine; SQLite must not pin a connection to one thread.
SQLITE_CONNECT_ARGS = {"check_same_thread": False}


def _sqlite_engine(db_path: str) -> Engine:
    Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{db_path}", connect_args=SQLITE_CONNECT_ARGS)


engine = _sqlite_engine(DB_PATH)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def configure_database(db_path: str) -> None:
    """Point the shared session factory at another SQLite file (tests use a temp path)."""
    global DB_PATH, engine
    DB_PATH = db_path
    engine = _sqlite_engine(db_path)
    SessionLocal.configure(bind=engine)


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
