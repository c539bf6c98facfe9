import os
import tempfile
from pathlib import Path

# ---- test DB path (must be set before the app modules are imported) ----
_tmp_dir = Path(tempfile.mkdtemp(prefix="borrow_app_"))
os.environ["APP_DB_PATH"] = str(_tmp_dir / "test_borrow.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete, func, select

import crud
from db import SessionLocal
from dependencies import get_db
from models import AssetIn
from orm import AssetORM, AuditORM, BorrowRequestORM, CategoryORM, NotificationORM

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "ADMIN"}
STAFF = {"X-User-Id": "staff-1", "X-User-Role": "STAFF"}


def viewer(user_id: str) -> dict:
    return {"X-User-Id": user_id, "X-User-Role": "VIEWER"}


def count_requests_for_pair(db, asset_id: str, requester_id: str) -> int:
    stmt = select(func.count()).select_from(BorrowRequestORM).where(
        BorrowRequestORM.asset_id == asset_id,
        BorrowRequestORM.requester_id == requester_id,
    )
    return int(db.execute(stmt).scalar_one())


@pytest.fixture(scope="session")
def app_module():
    import main

    return main


@pytest.fixture()
def client(app_module):
    def _get_db_override():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app_module.app.dependency_overrides[get_db] = _get_db_override
    with TestClient(app_module.app) as c:
        yield c
    app_module.app.dependency_overrides.clear()


@pytest.fixture()
def db_session(app_module):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db(app_module, db_session):
    # wipe every table before each test (children first: notifications -> borrow_requests -> assets)
    db_session.execute(delete(NotificationORM))
    db_session.execute(delete(AuditORM))
    db_session.execute(delete(BorrowRequestORM))
    db_session.execute(delete(AssetORM))
    db_session.execute(delete(CategoryORM))
    db_session.commit()
    yield


@pytest.fixture()
def make_asset(db_session):
    def _make(serial="A101", name="Projector", **kwargs):
        return crud.create_asset(db_session, AssetIn(name=name, serial_number=serial, **kwargs))

    return _make
