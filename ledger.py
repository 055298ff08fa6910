"""Inventory ledger: the only writer of asset item status and stock counters.

Every change is a conditional UPDATE against the locked row, so the
database decides whether a reservation still holds. Two racing
reservations of the same asset item serialize on the row; the loser's
UPDATE matches zero rows and is reported as a conflict.
"""
import logging
from typing import Optional, Union

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

import audit
from crud import _asset_item_to_schema, unit_of_work, utcnow
from errors import InsufficientStock, ItemAlreadyLoaned, NotFound, ValidationError
from models import AssetItem, AssetTarget, StockTarget
from orm import AssetItemORM, LoanLineORM, LoanORM, StockItemORM

logger = logging.getLogger("app.ledger")

SERVICE_STATUSES = {"EN_STOCK", "HS", "REPARATION"}

Item = Union[AssetItemORM, StockItemORM]


def _lock(db: Session, model, item_id: str):
    stmt = select(model).where(model.id == item_id).with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def reserve(db: Session, target: AssetTarget | StockTarget) -> Item:
    """Mark the target unavailable to other loans and return the fresh row."""
    if isinstance(target, AssetTarget):
        return _reserve_asset(db, target.asset_item_id)
    return _reserve_stock(db, target.stock_item_id, target.quantity)


def release(db: Session, target: AssetTarget | StockTarget, *, floor: int = 0) -> Optional[Item]:
    """Undo a reservation. Returns None when the item no longer exists.

    ``floor`` bounds how low a stock counter may drop; it never raises it.
    """
    if isinstance(target, AssetTarget):
        return _release_asset(db, target.asset_item_id)
    return _release_stock(db, target.stock_item_id, target.quantity, floor)


def _reserve_asset(db: Session, asset_item_id: str) -> AssetItemORM:
    item = _lock(db, AssetItemORM, asset_item_id)
    if item is None:
        raise NotFound(f"asset item {asset_item_id} not found")

    result = db.execute(
        update(AssetItemORM)
        .where(AssetItemORM.id == asset_item_id, AssetItemORM.status == "EN_STOCK")
        .values(status="PRETE", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.refresh(item)
    if result.rowcount != 1:
        raise ItemAlreadyLoaned(f"asset item {item.asset_tag} is not available (status={item.status})")

    logger.info("reserved asset_item=%s", asset_item_id)
    return item


def _reserve_stock(db: Session, stock_item_id: str, quantity: int) -> StockItemORM:
    if quantity <= 0:
        raise ValidationError("quantity must be at least 1")

    item = _lock(db, StockItemORM, stock_item_id)
    if item is None:
        raise NotFound(f"stock item {stock_item_id} not found")

    result = db.execute(
        update(StockItemORM)
        .where(
            StockItemORM.id == stock_item_id,
            StockItemORM.quantity - StockItemORM.loaned >= quantity,
        )
        .values(loaned=StockItemORM.loaned + quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.refresh(item)
    if result.rowcount != 1:
        raise InsufficientStock(
            f"only {item.quantity - item.loaned} of {item.quantity} available, {quantity} requested"
        )

    logger.info("reserved stock_item=%s quantity=%s loaned=%s", stock_item_id, quantity, item.loaned)
    return item


def _release_asset(db: Session, asset_item_id: str) -> Optional[AssetItemORM]:
    item = _lock(db, AssetItemORM, asset_item_id)
    if item is None:
        logger.warning("release skipped, asset item missing asset_item=%s", asset_item_id)
        return None

    # HS / REPARATION set while on loan must survive the release
    result = db.execute(
        update(AssetItemORM)
        .where(AssetItemORM.id == asset_item_id, AssetItemORM.status == "PRETE")
        .values(status="EN_STOCK", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.refresh(item)
    if result.rowcount != 1:
        logger.info("release kept status asset_item=%s status=%s", asset_item_id, item.status)
    else:
        logger.info("released asset_item=%s", asset_item_id)
    return item


def _release_stock(db: Session, stock_item_id: str, quantity: int, floor: int = 0) -> Optional[StockItemORM]:
    item = _lock(db, StockItemORM, stock_item_id)
    if item is None:
        logger.warning("release skipped, stock item missing stock_item=%s", stock_item_id)
        return None

    db.execute(
        update(StockItemORM)
        .where(StockItemORM.id == stock_item_id)
        .values(
            loaned=case(
                (StockItemORM.loaned - quantity >= floor, StockItemORM.loaned - quantity),
                (StockItemORM.loaned < floor, StockItemORM.loaned),
                else_=floor,
            ),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(item)
    logger.info("released stock_item=%s quantity=%s loaned=%s", stock_item_id, quantity, item.loaned)
    return item


def has_open_line(db: Session, asset_item_id: str) -> bool:
    stmt = (
        select(LoanLineORM.id)
        .join(LoanORM, LoanORM.id == LoanLineORM.loan_id)
        .where(LoanLineORM.asset_item_id == asset_item_id, LoanORM.status == "OPEN")
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def open_stock_quantity(db: Session, stock_item_id: str) -> int:
    stmt = (
        select(func.coalesce(func.sum(LoanLineORM.quantity), 0))
        .join(LoanORM, LoanORM.id == LoanLineORM.loan_id)
        .where(LoanLineORM.stock_item_id == stock_item_id, LoanORM.status == "OPEN")
    )
    return int(db.execute(stmt).scalar_one())


def set_service_status(
    db: Session,
    asset_item_id: str,
    status: str,
    *,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> AssetItem:
    """Manual status change (out of service, in repair, back in stock).

    PRETE is only ever set by ``reserve``. Returning an item to EN_STOCK is
    refused while an open loan line still holds it.
    """
    if status not in SERVICE_STATUSES:
        raise ValidationError(f"status must be one of {sorted(SERVICE_STATUSES)}")

    with unit_of_work(db, commit=commit):
        item = _lock(db, AssetItemORM, asset_item_id)
        if item is None:
            raise NotFound(f"asset item {asset_item_id} not found")
        if status == "EN_STOCK" and has_open_line(db, asset_item_id):
            raise ValidationError("item is on an open loan; remove the loan line to release it")

        old_status = item.status
        db.execute(
            update(AssetItemORM)
            .where(AssetItemORM.id == asset_item_id)
            .values(status=status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.refresh(item)
        audit.record_after_commit(
            db, "UPDATE", "asset_items", asset_item_id,
            old_values={"status": old_status}, new_values={"status": status}, actor_id=actor_id,
        )
    logger.info("asset_item=%s status %s -> %s", asset_item_id, old_status, status)
    return _asset_item_to_schema(item)


def recount_stock(db: Session, stock_item_id: str, loaned: int) -> Optional[StockItemORM]:
    """Overwrite the loaned counter, clamped to [0, quantity]."""
    item = _lock(db, StockItemORM, stock_item_id)
    if item is None:
        return None
    value = min(max(loaned, 0), item.quantity)
    if value != loaned:
        logger.warning("recount clamped stock_item=%s requested=%s stored=%s", stock_item_id, loaned, value)
    db.execute(
        update(StockItemORM)
        .where(StockItemORM.id == stock_item_id)
        .values(loaned=value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.refresh(item)
    return item
