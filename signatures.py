"""Pickup / return signatures and the gate that Close depends on."""
import logging
from typing import Literal, Optional

from sqlalchemy.orm import Session

import audit
import post_commit
from crud import _loan_to_schema, load_loan, loan_snapshot, unit_of_work, utcnow
from errors import LoanNotOpen, NotFound
from models import Loan
from orm import LoanORM
from signature_store import SignatureStore, delete_quietly, get_signature_store

logger = logging.getLogger("app.signatures")

Kind = Literal["pickup", "return"]


def missing_signatures(loan: LoanORM) -> list[str]:
    missing = []
    if not loan.pickup_signature_url:
        missing.append("pickup")
    if not loan.return_signature_url:
        missing.append("return")
    return missing


def _record(
    db: Session,
    loan_id: str,
    kind: Kind,
    data: bytes,
    content_type: Optional[str],
    store: Optional[SignatureStore],
    actor_id: Optional[str],
    commit: bool,
) -> Loan:
    store = store or get_signature_store()
    url_attr, time_attr = f"{kind}_signature_url", f"{kind}_signed_at"

    # validate the loan before touching the filesystem
    loan = load_loan(db, loan_id)
    if loan.status != "OPEN":
        raise LoanNotOpen("closed loans cannot be signed")

    url = store.save(data, content_type)
    try:
        with unit_of_work(db, commit=commit):
            loan = load_loan(db, loan_id, lock=True)
            if loan.status != "OPEN":
                raise LoanNotOpen("closed loans cannot be signed")

            old = loan_snapshot(loan)
            replaced = getattr(loan, url_attr)
            setattr(loan, url_attr, url)
            setattr(loan, time_attr, utcnow())
            db.flush()

            if replaced:
                post_commit.after_commit(db, delete_quietly, store, [replaced])
            audit.record_after_commit(
                db, "UPDATE", "loans", loan.id, old_values=old, new_values=loan_snapshot(loan), actor_id=actor_id
            )
    except Exception:
        delete_quietly(store, [url])
        raise

    logger.info("%s signature recorded loan=%s", kind, loan_id)
    return _loan_to_schema(loan)


def _remove(
    db: Session,
    loan_id: str,
    kind: Kind,
    store: Optional[SignatureStore],
    actor_id: Optional[str],
    commit: bool,
) -> Loan:
    store = store or get_signature_store()
    url_attr, time_attr = f"{kind}_signature_url", f"{kind}_signed_at"

    with unit_of_work(db, commit=commit):
        loan = load_loan(db, loan_id, lock=True)
        if loan.status != "OPEN":
            raise LoanNotOpen("closed loans cannot be modified")
        url = getattr(loan, url_attr)
        if not url:
            raise NotFound(f"loan {loan_id} has no {kind} signature")

        old = loan_snapshot(loan)
        setattr(loan, url_attr, None)
        setattr(loan, time_attr, None)
        db.flush()

        post_commit.after_commit(db, delete_quietly, store, [url])
        audit.record_after_commit(
            db, "UPDATE", "loans", loan.id, old_values=old, new_values=loan_snapshot(loan), actor_id=actor_id
        )

    logger.info("%s signature removed loan=%s", kind, loan_id)
    return _loan_to_schema(loan)


def record_pickup_signature(
    db: Session,
    loan_id: str,
    data: bytes,
    content_type: Optional[str] = None,
    *,
    store: Optional[SignatureStore] = None,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> Loan:
    return _record(db, loan_id, "pickup", data, content_type, store, actor_id, commit)


def record_return_signature(
    db: Session,
    loan_id: str,
    data: bytes,
    content_type: Optional[str] = None,
    *,
    store: Optional[SignatureStore] = None,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> Loan:
    return _record(db, loan_id, "return", data, content_type, store, actor_id, commit)


def remove_pickup_signature(
    db: Session,
    loan_id: str,
    *,
    store: Optional[SignatureStore] = None,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> Loan:
    return _remove(db, loan_id, "pickup", store, actor_id, commit)


def remove_return_signature(
    db: Session,
    loan_id: str,
    *,
    store: Optional[SignatureStore] = None,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> Loan:
    return _remove(db, loan_id, "return", store, actor_id, commit)
