import os
import shutil
import tempfile
from pathlib import Path

# ---- テスト用DB / 署名ディレクトリ（アプリのimport前に設定）----
_TMP_DIR = Path(tempfile.mkdtemp(prefix="loan_ledger_tests_"))
os.environ.pop("APP_DATABASE_URL", None)
os.environ["APP_DB_PATH"] = str(_TMP_DIR / "test_loans.db")
os.environ["APP_SIGNATURES_DIR"] = str(_TMP_DIR / "signatures")

import pytest
from fastapi.testclient import TestClient

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


@pytest.fixture(scope="session")
def app_module():
    import main

    yield main
    shutil.rmtree(_TMP_DIR, ignore_errors=True)


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


@pytest.fixture()
def signatures_dir(app_module) -> Path:
    from signature_store import get_signature_store

    return get_signature_store().directory


@pytest.fixture(autouse=True)
def clean_db(app_module, db_session):
    # 各テスト前に全消し（順序注意：lines -> loans -> items -> models/employees）
    from sqlalchemy import delete

    import audit
    from orm import (
        AssetItemORM,
        AssetModelORM,
        AuditLogORM,
        EmployeeORM,
        LoanLineORM,
        LoanORM,
        StockItemORM,
    )

    db_session.execute(delete(AuditLogORM))
    db_session.execute(delete(LoanLineORM))
    db_session.execute(delete(LoanORM))
    db_session.execute(delete(AssetItemORM))
    db_session.execute(delete(StockItemORM))
    db_session.execute(delete(AssetModelORM))
    db_session.execute(delete(EmployeeORM))
    db_session.commit()

    sig_dir = Path(os.environ["APP_SIGNATURES_DIR"])
    if sig_dir.exists():
        shutil.rmtree(sig_dir)

    previous = audit.set_recorder(audit.DatabaseAuditRecorder())
    yield
    audit.set_recorder(previous)


# ---- factories ----
@pytest.fixture()
def asset_model(db_session):
    import crud
    from models import AssetModelIn

    return crud.create_asset_model(db_session, AssetModelIn(type="Laptop", brand="Dell", model_name="Latitude 5440"))


@pytest.fixture()
def make_employee(db_session):
    import crud
    from models import EmployeeIn

    counter = {"n": 0}

    def _make(**kw):
        counter["n"] += 1
        body = EmployeeIn(
            first_name=kw.get("first_name", "Alice"),
            last_name=kw.get("last_name", f"Martin{counter['n']}"),
            email=kw.get("email"),
            dept=kw.get("dept", "IT"),
        )
        return crud.create_employee(db_session, body)

    return _make


@pytest.fixture()
def make_asset_item(db_session, asset_model):
    import crud
    from models import AssetItemIn

    counter = {"n": 0}

    def _make(tag=None, serial=None):
        counter["n"] += 1
        body = AssetItemIn(
            asset_tag=tag or f"PC-{counter['n']:03d}",
            asset_model_id=asset_model.id,
            serial=serial,
        )
        return crud.create_asset_item(db_session, body)

    return _make


@pytest.fixture()
def make_stock_item(db_session, asset_model):
    import crud
    from models import StockItemIn

    def _make(quantity=10):
        return crud.create_stock_item(db_session, StockItemIn(asset_model_id=asset_model.id, quantity=quantity))

    return _make


@pytest.fixture()
def make_loan(db_session, make_employee):
    import lifecycle

    def _make(employee_id=None):
        employee_id = employee_id or make_employee().id
        return lifecycle.create_loan(db_session, employee_id, created_by_id="manager-1")

    return _make


@pytest.fixture()
def fresh(db_session):
    """Re-read a row from the database, bypassing the identity map."""

    def _fresh(model, row_id):
        db_session.expire_all()
        return db_session.get(model, row_id)

    return _fresh
