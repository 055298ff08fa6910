import logging
from typing import Optional

from sqlalchemy.orm import Session

import audit
import ledger
from crud import _loan_line_to_schema, load_loan, new_id, unit_of_work, utcnow
from errors import LoanNotOpen, NotFound
from models import AssetTarget, LoanLine, StockTarget
from orm import LoanLineORM

logger = logging.getLogger("app.loan_lines")


def _line_values(line: LoanLineORM) -> dict:
    return {
        "loan_id": line.loan_id,
        "asset_item_id": line.asset_item_id,
        "stock_item_id": line.stock_item_id,
        "quantity": line.quantity,
    }


def add_line(
    db: Session,
    loan_id: str,
    target: AssetTarget | StockTarget,
    *,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> LoanLine:
    with unit_of_work(db, commit=commit):
        loan = load_loan(db, loan_id, lock=True)
        if loan.status != "OPEN":
            raise LoanNotOpen("cannot add items to a closed loan")

        item = ledger.reserve(db, target)

        line = LoanLineORM(
            id=new_id(),
            loan=loan,
            asset_item_id=target.asset_item_id if isinstance(target, AssetTarget) else None,
            stock_item_id=target.stock_item_id if isinstance(target, StockTarget) else None,
            quantity=target.quantity,
            added_at=utcnow(),
        )
        if isinstance(target, AssetTarget):
            line.asset_item = item
        else:
            line.stock_item = item
        db.add(line)
        db.flush()

        audit.record_after_commit(db, "CREATE", "loan_lines", line.id, new_values=_line_values(line), actor_id=actor_id)

    logger.info("line added loan=%s line=%s target=%s", loan_id, line.id, target.kind)
    return _loan_line_to_schema(line)


def remove_line(
    db: Session,
    loan_id: str,
    line_id: str,
    *,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> None:
    with unit_of_work(db, commit=commit):
        loan = load_loan(db, loan_id, lock=True)
        if loan.status != "OPEN":
            raise LoanNotOpen("closed loans cannot be modified")

        line = db.get(LoanLineORM, line_id)
        if line is None or line.loan_id != loan_id:
            raise NotFound(f"loan line {line_id} not found")

        old_values = _line_values(line)
        ledger.release(db, line.target)
        loan.lines.remove(line)
        db.flush()

        audit.record_after_commit(db, "DELETE", "loan_lines", line_id, old_values=old_values, actor_id=actor_id)

    logger.info("line removed loan=%s line=%s", loan_id, line_id)
