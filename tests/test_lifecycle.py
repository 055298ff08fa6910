import pytest

import lifecycle
import loan_lines
from errors import AlreadyClosed, EmptyLoan, MissingSignature, NotFound
from models import AssetTarget
from orm import AssetItemORM, LoanORM


def _sign(db, loan_id, pickup=True, ret=True):
    row = db.get(LoanORM, loan_id)
    if pickup:
        row.pickup_signature_url = "/uploads/signatures/pickup.png"
    if ret:
        row.return_signature_url = "/uploads/signatures/return.png"
    db.commit()


def test_create_loan_starts_open_and_empty(db_session, make_employee):
    employee = make_employee()
    loan = lifecycle.create_loan(db_session, employee.id, created_by_id="manager-1")

    assert loan.status == "OPEN"
    assert loan.lines == []
    assert loan.closed_at is None
    assert loan.created_by_id == "manager-1"


def test_create_loan_unknown_employee(db_session):
    with pytest.raises(NotFound):
        lifecycle.create_loan(db_session, "nobody", created_by_id="manager-1")


def test_close_empty_loan(db_session, make_loan, fresh):
    loan = make_loan()
    _sign(db_session, loan.id)

    with pytest.raises(EmptyLoan):
        lifecycle.close_loan(db_session, loan.id)
    assert fresh(LoanORM, loan.id).status == "OPEN"


def test_close_empty_unsigned_loan_reports_empty_first(db_session, make_loan):
    loan = make_loan()
    with pytest.raises(EmptyLoan):
        lifecycle.close_loan(db_session, loan.id)


@pytest.mark.parametrize("pickup, ret", [(False, False), (False, True), (True, False)])
def test_close_requires_both_signatures(db_session, make_loan, make_asset_item, fresh, pickup, ret):
    loan = make_loan()
    item = make_asset_item()
    loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=item.id))
    _sign(db_session, loan.id, pickup=pickup, ret=ret)

    with pytest.raises(MissingSignature):
        lifecycle.close_loan(db_session, loan.id)

    row = fresh(LoanORM, loan.id)
    assert row.status == "OPEN"
    assert row.closed_at is None


def test_close_signed_loan(db_session, make_loan, make_asset_item, fresh):
    loan = make_loan()
    item = make_asset_item()
    loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=item.id))
    _sign(db_session, loan.id)

    closed = lifecycle.close_loan(db_session, loan.id)

    assert closed.status == "CLOSED"
    assert closed.closed_at is not None
    assert len(closed.lines) == 1
    # closing does not check items back into stock
    assert fresh(AssetItemORM, item.id).status == "PRETE"


def test_close_twice_fails(db_session, make_loan, make_asset_item, fresh):
    loan = make_loan()
    item = make_asset_item()
    loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=item.id))
    _sign(db_session, loan.id)
    lifecycle.close_loan(db_session, loan.id)

    with pytest.raises(AlreadyClosed):
        lifecycle.close_loan(db_session, loan.id)
    row = fresh(LoanORM, loan.id)
    assert row.status == "CLOSED"
    assert row.closed_at is not None


def test_close_unknown_loan(db_session):
    with pytest.raises(NotFound):
        lifecycle.close_loan(db_session, "missing")
