#!/usr/bin/env python3
# reconcile_inventory.py
"""Compare asset statuses and stock counters with the open loan lines.

    python reconcile_inventory.py            # report only
    python reconcile_inventory.py --fix      # repair through the ledger
"""
import argparse
import logging
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

import ledger
from models import AssetTarget
from orm import AssetItemORM, LoanLineORM, LoanORM, StockItemORM

logger = logging.getLogger("reconcile_inventory")


def _open_asset_line_counts(db: Session) -> dict[str, int]:
    stmt = (
        select(LoanLineORM.asset_item_id, func.count())
        .join(LoanORM, LoanORM.id == LoanLineORM.loan_id)
        .where(LoanORM.status == "OPEN", LoanLineORM.asset_item_id.is_not(None))
        .group_by(LoanLineORM.asset_item_id)
    )
    return {r[0]: int(r[1]) for r in db.execute(stmt).all()}


def _open_stock_sums(db: Session) -> dict[str, int]:
    stmt = (
        select(LoanLineORM.stock_item_id, func.sum(LoanLineORM.quantity))
        .join(LoanORM, LoanORM.id == LoanLineORM.loan_id)
        .where(LoanORM.status == "OPEN", LoanLineORM.stock_item_id.is_not(None))
        .group_by(LoanLineORM.stock_item_id)
    )
    return {r[0]: int(r[1] or 0) for r in db.execute(stmt).all()}


def find_discrepancies(db: Session) -> list[dict]:
    """
    Returns rows like {"kind": ..., "item_id": ..., "expected": ..., "actual": ...}.

    kinds: stale_reservation (PRETE, no open line), missing_reservation
    (open line, EN_STOCK), double_reservation (several open lines),
    stock_counter (loaned differs from the open-line sum).
    """
    found: list[dict] = []

    line_counts = _open_asset_line_counts(db)
    for item in db.execute(select(AssetItemORM).order_by(AssetItemORM.asset_tag)).scalars():
        count = line_counts.get(item.id, 0)
        if item.status == "PRETE" and count == 0:
            found.append({"kind": "stale_reservation", "item_id": item.id, "expected": "EN_STOCK", "actual": item.status})
        elif item.status == "EN_STOCK" and count > 0:
            found.append({"kind": "missing_reservation", "item_id": item.id, "expected": "PRETE", "actual": item.status})
        if count > 1:
            found.append({"kind": "double_reservation", "item_id": item.id, "expected": 1, "actual": count})

    sums = _open_stock_sums(db)
    for item in db.execute(select(StockItemORM)).scalars():
        expected = sums.get(item.id, 0)
        if item.loaned != expected:
            found.append({"kind": "stock_counter", "item_id": item.id, "expected": expected, "actual": item.loaned})

    return found


def repair(db: Session, *, commit: bool = True) -> dict:
    found = find_discrepancies(db)
    fixed = 0
    skipped = 0

    try:
        for d in found:
            if d["kind"] == "stale_reservation":
                ledger.release(db, AssetTarget(asset_item_id=d["item_id"]))
            elif d["kind"] == "missing_reservation":
                ledger.reserve(db, AssetTarget(asset_item_id=d["item_id"]))
            elif d["kind"] == "stock_counter":
                ledger.recount_stock(db, d["item_id"], d["expected"])
            else:
                skipped += 1
                continue
            fixed += 1
        if commit:
            db.commit()
        else:
            db.flush()
    except Exception:
        db.rollback()
        raise

    return {"found": len(found), "fixed": fixed, "skipped": skipped}


def main():
    ap = argparse.ArgumentParser(description="Check inventory state against open loans")
    ap.add_argument("--db", help="Path to SQLite DB (default: the app database)")
    ap.add_argument("--url", help="SQLAlchemy database URL (overrides --db)")
    ap.add_argument("--fix", action="store_true", help="Repair what can be repaired")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    if args.url:
        url = args.url
    elif args.db:
        url = f"sqlite:///{Path(args.db).expanduser().resolve().as_posix()}"
    else:
        from db import DATABASE_URL
        url = DATABASE_URL

    engine = create_engine(url)
    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    db = SessionLocal()
    try:
        if args.fix:
            result = repair(db)
            logger.info("found=%s fixed=%s skipped=%s", result["found"], result["fixed"], result["skipped"])
        else:
            found = find_discrepancies(db)
            for d in found:
                logger.warning("%s item=%s expected=%s actual=%s", d["kind"], d["item_id"], d["expected"], d["actual"])
            logger.info("found=%s", len(found))
    finally:
        db.close()
        engine.dispose()


if __name__ == "__main__":
    main()
