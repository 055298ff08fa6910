"""Loan state machine: OPEN (initial) -> CLOSED (terminal).

There is no cancelled state; an OPEN loan is abandoned by deleting it.
Closing does not release the items on the loan: being signed as returned
and being checked back into inventory are separate facts.
"""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

import audit
from crud import _loan_to_schema, load_loan, loan_snapshot, new_id, unit_of_work, utcnow
from errors import AlreadyClosed, EmptyLoan, MissingSignature, NotFound
from models import Loan
from orm import EmployeeORM, LoanLineORM, LoanORM
from signatures import missing_signatures

logger = logging.getLogger("app.lifecycle")


def create_loan(
    db: Session,
    employee_id: str,
    created_by_id: str,
    *,
    commit: bool = True,
) -> Loan:
    with unit_of_work(db, commit=commit):
        if db.get(EmployeeORM, employee_id) is None:
            raise NotFound(f"employee {employee_id} not found")

        loan = LoanORM(
            id=new_id(),
            employee_id=employee_id,
            created_by_id=created_by_id,
            status="OPEN",
            opened_at=utcnow(),
        )
        db.add(loan)
        db.flush()
        audit.record_after_commit(db, "CREATE", "loans", loan.id, new_values=loan_snapshot(loan), actor_id=created_by_id)

    logger.info("loan opened loan=%s employee=%s", loan.id, employee_id)
    return _loan_to_schema(loan)


def close_loan(
    db: Session,
    loan_id: str,
    *,
    actor_id: Optional[str] = None,
    commit: bool = True,
) -> Loan:
    with unit_of_work(db, commit=commit):
        loan = load_loan(db, loan_id, lock=True)
        if loan.status == "CLOSED":
            raise AlreadyClosed(f"loan {loan_id} is already closed")

        line_count = db.execute(
            select(func.count()).select_from(LoanLineORM).where(LoanLineORM.loan_id == loan_id)
        ).scalar_one()
        if int(line_count) == 0:
            raise EmptyLoan("a loan needs at least one line before it can close")

        missing = missing_signatures(loan)
        if missing:
            raise MissingSignature(f"missing {' and '.join(missing)} signature")

        old = loan_snapshot(loan)
        loan.status = "CLOSED"
        loan.closed_at = utcnow()
        db.flush()
        audit.record_after_commit(
            db, "UPDATE", "loans", loan.id, old_values=old, new_values=loan_snapshot(loan), actor_id=actor_id
        )

    logger.info("loan closed loan=%s", loan_id)
    return _loan_to_schema(loan)
