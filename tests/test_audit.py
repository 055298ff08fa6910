import pytest
from sqlalchemy import select

import audit
import loan_lines
from errors import ItemAlreadyLoaned
from models import AssetTarget
from orm import AssetItemORM, AuditLogORM, LoanLineORM


class RecordingRecorder:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


class BrokenRecorder:
    def record(self, event):
        raise RuntimeError("audit store unavailable")


def _rows(db, table_name):
    db.expire_all()
    return db.execute(
        select(AuditLogORM).where(AuditLogORM.table_name == table_name).order_by(AuditLogORM.created_at)
    ).scalars().all()


def test_add_and_remove_line_are_audited(db_session, make_loan, make_asset_item):
    loan = make_loan()
    item = make_asset_item()
    line = loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=item.id), actor_id="manager-7")
    loan_lines.remove_line(db_session, loan.id, line.id, actor_id="manager-7")

    rows = _rows(db_session, "loan_lines")
    assert [r.action for r in rows] == ["CREATE", "DELETE"]
    assert all(r.record_id == line.id for r in rows)
    assert all(r.user_id == "manager-7" for r in rows)
    assert rows[0].new_values["asset_item_id"] == item.id
    assert rows[1].old_values["asset_item_id"] == item.id


def test_failed_operation_writes_no_audit(db_session, make_loan, make_asset_item):
    first, second = make_loan(), make_loan()
    item = make_asset_item()
    loan_lines.add_line(db_session, first.id, AssetTarget(asset_item_id=item.id))

    recorder = RecordingRecorder()
    audit.set_recorder(recorder)
    with pytest.raises(ItemAlreadyLoaned):
        loan_lines.add_line(db_session, second.id, AssetTarget(asset_item_id=item.id))

    assert recorder.events == []


def test_broken_recorder_does_not_fail_the_operation(db_session, make_loan, make_asset_item, fresh):
    loan = make_loan()
    item = make_asset_item()
    audit.set_recorder(BrokenRecorder())

    line = loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=item.id))

    assert line.asset_item.status == "PRETE"
    assert fresh(AssetItemORM, item.id).status == "PRETE"
    assert fresh(LoanLineORM, line.id) is not None


def test_default_actor_is_system(db_session):
    recorder = RecordingRecorder()
    audit.set_recorder(recorder)

    audit.record_after_commit(db_session, "UPDATE", "loans", "loan-1", new_values={"status": "CLOSED"})
    assert recorder.events == []
    db_session.execute(select(AuditLogORM.id).limit(1))
    db_session.commit()

    assert len(recorder.events) == 1
    assert recorder.events[0].actor_id == audit.DEFAULT_ACTOR


def test_sanitize_redacts_sensitive_fields():
    from datetime import datetime, timezone

    at = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    clean = audit.sanitize({"password": "hunter2", "token": "abc", "status": "OPEN", "closed_at": at})

    assert clean == {
        "password": "[REDACTED]",
        "token": "[REDACTED]",
        "status": "OPEN",
        "closed_at": at.isoformat(),
    }
    assert audit.sanitize(None) is None
