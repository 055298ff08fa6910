from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

import audit
from errors import NotFound, ValidationError
from models import (
    AssetItem,
    AssetItemIn,
    AssetModel,
    AssetModelIn,
    Employee,
    EmployeeIn,
    Loan,
    LoanLine,
    StockItem,
    StockItemIn,
)
from orm import AssetItemORM, AssetModelORM, EmployeeORM, LoanLineORM, LoanORM, StockItemORM

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def new_id() -> str:
    return str(uuid4())

def persist(db: Session, *, commit: bool) -> None:
    if commit:
        db.commit()
    else:
        db.flush()

@contextmanager
def unit_of_work(db: Session, *, commit: bool) -> Iterator[None]:
    """Run the body as one transaction; any error rolls it back and propagates.

    With ``commit=False`` only a flush happens and the caller owns the
    transaction (including the rollback).
    """
    try:
        yield
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        raise

def _employee_to_schema(e: EmployeeORM) -> Employee:
    return Employee(
        id=e.id,
        first_name=e.first_name,
        last_name=e.last_name,
        email=e.email,
        dept=e.dept,
        created_at=e.created_at,
        updated_at=e.updated_at,
    )

def _asset_model_to_schema(m: AssetModelORM) -> AssetModel:
    return AssetModel(id=m.id, type=m.type, brand=m.brand, model_name=m.model_name, created_at=m.created_at)

def _asset_item_to_schema(a: AssetItemORM) -> AssetItem:
    return AssetItem(
        id=a.id,
        asset_tag=a.asset_tag,
        serial=a.serial,
        notes=a.notes,
        asset_model_id=a.asset_model_id,
        status=a.status,  # type: ignore
        created_at=a.created_at,
        updated_at=a.updated_at,
    )

def _stock_item_to_schema(s: StockItemORM) -> StockItem:
    return StockItem(
        id=s.id,
        asset_model_id=s.asset_model_id,
        quantity=s.quantity,
        loaned=s.loaned,
        low_stock_threshold=s.low_stock_threshold,
        notes=s.notes,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )

def _loan_line_to_schema(l: LoanLineORM) -> LoanLine:
    return LoanLine(
        id=l.id,
        loan_id=l.loan_id,
        target=l.target,
        asset_item_id=l.asset_item_id,
        stock_item_id=l.stock_item_id,
        quantity=l.quantity,
        added_at=l.added_at,
        asset_item=_asset_item_to_schema(l.asset_item) if l.asset_item else None,
        stock_item=_stock_item_to_schema(l.stock_item) if l.stock_item else None,
    )

def _loan_to_schema(l: LoanORM) -> Loan:
    return Loan(
        id=l.id,
        employee_id=l.employee_id,
        created_by_id=l.created_by_id,
        status=l.status,  # type: ignore
        opened_at=l.opened_at,
        closed_at=l.closed_at,
        pickup_signature_url=l.pickup_signature_url,
        pickup_signed_at=l.pickup_signed_at,
        return_signature_url=l.return_signature_url,
        return_signed_at=l.return_signed_at,
        lines=[_loan_line_to_schema(line) for line in l.lines],
    )

def loan_snapshot(l: LoanORM) -> dict:
    """Column values recorded in the audit log."""
    return {
        "status": l.status,
        "employee_id": l.employee_id,
        "closed_at": l.closed_at,
        "pickup_signature_url": l.pickup_signature_url,
        "return_signature_url": l.return_signature_url,
    }


# ---------- Employee ----------
def create_employee(db: Session, body: EmployeeIn, *, actor_id: Optional[str] = None, commit: bool = True) -> Employee:
    now = utcnow()
    email = (body.email or "").strip() or None
    if email and db.execute(select(EmployeeORM.id).where(EmployeeORM.email == email)).first():
        raise ValidationError("email already exists")

    e = EmployeeORM(
        id=new_id(),
        first_name=body.first_name,
        last_name=body.last_name,
        email=email,
        dept=body.dept,
        created_at=now,
        updated_at=now,
    )
    with unit_of_work(db, commit=commit):
        db.add(e)
        db.flush()
        audit.record_after_commit(db, "CREATE", "employees", e.id, new_values=body.model_dump(), actor_id=actor_id)
    return _employee_to_schema(e)

def get_employee(db: Session, employee_id: str) -> Optional[Employee]:
    row = db.get(EmployeeORM, employee_id)
    return _employee_to_schema(row) if row else None


# ---------- AssetModel ----------
def create_asset_model(db: Session, body: AssetModelIn, *, commit: bool = True) -> AssetModel:
    m = AssetModelORM(id=new_id(), type=body.type, brand=body.brand, model_name=body.model_name, created_at=utcnow())
    with unit_of_work(db, commit=commit):
        db.add(m)
    return _asset_model_to_schema(m)

def get_asset_model(db: Session, asset_model_id: str) -> Optional[AssetModel]:
    row = db.get(AssetModelORM, asset_model_id)
    return _asset_model_to_schema(row) if row else None


# ---------- AssetItem ----------
def asset_tag_exists(db: Session, asset_tag: str, exclude_asset_item_id: Optional[str] = None) -> bool:
    stmt = select(AssetItemORM).where(AssetItemORM.asset_tag == asset_tag)
    if exclude_asset_item_id:
        stmt = stmt.where(AssetItemORM.id != exclude_asset_item_id)
    return db.execute(stmt).first() is not None

def create_asset_item(db: Session, body: AssetItemIn, *, actor_id: Optional[str] = None, commit: bool = True) -> AssetItem:
    if not db.get(AssetModelORM, body.asset_model_id):
        raise NotFound("asset model not found")
    if asset_tag_exists(db, body.asset_tag):
        raise ValidationError("asset_tag already exists")

    now = utcnow()
    a = AssetItemORM(
        id=new_id(),
        asset_tag=body.asset_tag,
        serial=(body.serial or "").strip() or None,
        notes=body.notes,
        asset_model_id=body.asset_model_id,
        status="EN_STOCK",
        created_at=now,
        updated_at=now,
    )
    try:
        with unit_of_work(db, commit=commit):
            db.add(a)
            db.flush()
            audit.record_after_commit(db, "CREATE", "asset_items", a.id, new_values=body.model_dump(), actor_id=actor_id)
    except IntegrityError as exc:
        raise ValidationError("serial already exists") from exc
    return _asset_item_to_schema(a)

def get_asset_item(db: Session, asset_item_id: str) -> Optional[AssetItem]:
    row = db.get(AssetItemORM, asset_item_id)
    return _asset_item_to_schema(row) if row else None


# ---------- StockItem ----------
def create_stock_item(db: Session, body: StockItemIn, *, actor_id: Optional[str] = None, commit: bool = True) -> StockItem:
    if not db.get(AssetModelORM, body.asset_model_id):
        raise NotFound("asset model not found")

    now = utcnow()
    s = StockItemORM(
        id=new_id(),
        asset_model_id=body.asset_model_id,
        quantity=body.quantity,
        loaned=0,
        low_stock_threshold=body.low_stock_threshold,
        notes=body.notes,
        created_at=now,
        updated_at=now,
    )
    with unit_of_work(db, commit=commit):
        db.add(s)
        db.flush()
        audit.record_after_commit(db, "CREATE", "stock_items", s.id, new_values=body.model_dump(), actor_id=actor_id)
    return _stock_item_to_schema(s)

def get_stock_item(db: Session, stock_item_id: str) -> Optional[StockItem]:
    row = db.get(StockItemORM, stock_item_id)
    return _stock_item_to_schema(row) if row else None


# ---------- Loan ----------
def load_loan(db: Session, loan_id: str, *, lock: bool = False) -> LoanORM:
    """Fetch a loan row or raise NotFound; ``lock`` takes a row lock.

    A locked loan is re-read from the database, lines included.
    """
    stmt = select(LoanORM).where(LoanORM.id == loan_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    loan = db.execute(stmt).scalar_one_or_none()
    if loan is None:
        raise NotFound(f"loan {loan_id} not found")
    if lock:
        db.expire(loan, ["lines"])
    return loan

def get_loan(db: Session, loan_id: str) -> Optional[Loan]:
    stmt = (
        select(LoanORM)
        .where(LoanORM.id == loan_id)
        .options(
            selectinload(LoanORM.lines).selectinload(LoanLineORM.asset_item),
            selectinload(LoanORM.lines).selectinload(LoanLineORM.stock_item),
        )
        .execution_options(populate_existing=True)
    )
    row = db.execute(stmt).scalar_one_or_none()
    return _loan_to_schema(row) if row else None

def list_loans(db: Session, *, status: Optional[str] = None, employee_id: Optional[str] = None) -> list[Loan]:
    stmt = select(LoanORM).options(
        selectinload(LoanORM.lines).selectinload(LoanLineORM.asset_item),
        selectinload(LoanORM.lines).selectinload(LoanLineORM.stock_item),
    ).execution_options(populate_existing=True)
    if status:
        stmt = stmt.where(LoanORM.status == status)
    if employee_id:
        stmt = stmt.where(LoanORM.employee_id == employee_id)
    stmt = stmt.order_by(LoanORM.opened_at.desc())
    rows = db.execute(stmt).scalars().all()
    return [_loan_to_schema(l) for l in rows]
