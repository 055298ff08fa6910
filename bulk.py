"""All-or-nothing deletion of loans, reverting every reservation they hold."""
import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

import audit
import ledger
import post_commit
from crud import load_loan, loan_snapshot, unit_of_work
from errors import CannotDeleteSignedLoan, ValidationError
from models import MAX_BATCH_DELETE, AssetTarget, StockTarget
from signature_store import SignatureStore, delete_quietly, get_signature_store

logger = logging.getLogger("app.bulk")


def _dedupe(loan_ids: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for loan_id in loan_ids:
        seen.setdefault(loan_id, None)
    return list(seen)


def _release_closed(db: Session, target: AssetTarget | StockTarget) -> None:
    """Release a closed loan's line without taking back what open loans hold."""
    if isinstance(target, AssetTarget):
        if ledger.has_open_line(db, target.asset_item_id):
            logger.info("release skipped, asset_item=%s held by an open loan", target.asset_item_id)
            return
        ledger.release(db, target)
        return
    ledger.release(db, target, floor=ledger.open_stock_quantity(db, target.stock_item_id))


def _delete(
    db: Session,
    loan_ids: list[str],
    *,
    store: Optional[SignatureStore],
    actor_id: Optional[str],
    commit: bool,
    keep_signed_closed: bool,
) -> int:
    store = store or get_signature_store()
    with unit_of_work(db, commit=commit):
        # every id must resolve before anything is written
        loans = [load_loan(db, loan_id, lock=True) for loan_id in loan_ids]
        if keep_signed_closed:
            for loan in loans:
                if loan.status == "CLOSED" and loan.signature_urls:
                    raise CannotDeleteSignedLoan("closed loans with signatures cannot be deleted")

        urls: list[str] = []
        for loan in loans:
            old = loan_snapshot(loan)
            for line in loan.lines:
                if loan.status == "CLOSED":
                    _release_closed(db, line.target)
                else:
                    ledger.release(db, line.target)
            urls.extend(loan.signature_urls)
            db.delete(loan)
            # later loans in the batch must not see this one's lines as open
            db.flush()
            audit.record_after_commit(db, "DELETE", "loans", loan.id, old_values=old, actor_id=actor_id)

        if urls:
            post_commit.after_commit(db, delete_quietly, store, urls)

    logger.info("deleted %s loans, %s signature files queued", len(loans), len(urls))
    return len(loans)


def delete_loans(
    db: Session,
    loan_ids: Iterable[str],
    *,
    store: Optional[SignatureStore] = None,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> int:
    """Delete every loan in ``loan_ids`` or none of them.

    A single unknown id aborts the whole batch. Signature files are removed
    only after the transaction commits, best effort.
    """
    ids = _dedupe(loan_ids)
    if not ids:
        raise ValidationError("select at least one loan")
    if len(ids) > MAX_BATCH_DELETE:
        raise ValidationError(f"cannot delete more than {MAX_BATCH_DELETE} loans at once")
    return _delete(db, ids, store=store, actor_id=actor_id, commit=commit, keep_signed_closed=False)


def delete_loan(
    db: Session,
    loan_id: str,
    *,
    store: Optional[SignatureStore] = None,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> int:
    """Single-loan delete; closed and signed loans are kept for the record."""
    return _delete(db, [loan_id], store=store, actor_id=actor_id, commit=commit, keep_signed_closed=True)
