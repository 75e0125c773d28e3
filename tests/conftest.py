import os
import tempfile
from pathlib import Path

# ---- test DB path; db.py reads it at import time ----
_TMP_DIR = Path(tempfile.mkdtemp(prefix="lending_test_"))
os.environ["LENDING_DB_PATH"] = str(_TMP_DIR / "test_lending.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete

import crud
from helpers import NOW, days
from models import Actor, ItemCondition, ItemIn, Role


@pytest.fixture(scope="session")
def app_module():
    import main

    return main


@pytest.fixture()
def client(app_module):
    with TestClient(app_module.app) as c:
        yield c


@pytest.fixture()
def db_session(app_module):
    from db import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db(app_module, db_session):
    # children before parents: damage -> returns -> reservations -> items
    from orm import (
        AuditLogORM,
        DamageReportORM,
        ItemORM,
        ReputationEntryORM,
        ReservationORM,
        ReturnORM,
        TrustScoreORM,
    )

    db_session.execute(delete(DamageReportORM))
    db_session.execute(delete(ReturnORM))
    db_session.execute(delete(ReservationORM))
    db_session.execute(delete(ItemORM))
    db_session.execute(delete(ReputationEntryORM))
    db_session.execute(delete(TrustScoreORM))
    db_session.execute(delete(AuditLogORM))
    db_session.commit()
    yield


# ---- actors ----
@pytest.fixture()
def staff():
    return Actor(user_id="staff-1", role=Role.STAFF)


@pytest.fixture()
def manager():
    return Actor(user_id="manager-1", role=Role.MANAGER)


@pytest.fixture()
def admin():
    return Actor(user_id="admin-1", role=Role.SUPER_ADMIN)


@pytest.fixture()
def borrower():
    return Actor(user_id="alice", role=Role.BORROWER)


@pytest.fixture()
def other_borrower():
    return Actor(user_id="bob", role=Role.BORROWER)


# ---- factories ----
@pytest.fixture()
def make_item(db_session, staff):
    counter = {"n": 0}

    def _make(name=None, condition=ItemCondition.EXCELLENT, **kw):
        counter["n"] += 1
        body = ItemIn(name=name or f"Item {counter['n']}", condition=condition, **kw)
        return crud.create_item(db_session, staff, body, now=NOW - days(30))

    return _make
