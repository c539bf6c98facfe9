from pathlib import Path
import os
import sys
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

def app_root_dir() -> Path:
    if getattr(sys, "frozen", False):
        exe_dir = Path(sys.executable).resolve().parent
        return exe_dir.parent
    return Path(__file__).resolve().parent

def resolve_db_path(root_dir: Path) -> Path:
    custom_path = os.getenv("APP_DB_PATH")
    if not custom_path:
        data_dir = root_dir / "data"
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / "borrow.db"

    db_path = Path(custom_path).expanduser()
    if not db_path.is_absolute():
        db_path = (root_dir / db_path).resolve()

    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path

def resolve_db_timeout() -> float:
    try:
        return float(os.getenv("APP_DB_TIMEOUT", "15"))
    except ValueError:
        return 15.0

ROOT_DIR = app_root_dir()
DB_PATH = resolve_db_path(ROOT_DIR)
DATABASE_URL = f"sqlite:///{DB_PATH.as_posix()}"

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": resolve_db_timeout()},
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

class Base(DeclarativeBase):
    pass


def is_sqlite(db: Session) -> bool:
    return db.get_bind().dialect.name == "sqlite"


def begin_write(db: Session) -> None:
    """
    Open the session's transaction holding the database write lock.

    On SQLite this issues BEGIN IMMEDIATE, so a check-then-write unit cannot
    interleave with another writer. A connection that already holds an open
    write transaction keeps it. Other dialects rely on FOR UPDATE row locks.
    """
    if not is_sqlite(db):
        return
    conn = db.connection()
    if not conn.connection.dbapi_connection.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")
