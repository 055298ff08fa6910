import loan_lines
import reconcile_inventory
from models import AssetTarget, StockTarget
from orm import AssetItemORM, StockItemORM


def _kinds(found):
    return sorted((d["kind"], d["item_id"]) for d in found)


def test_consistent_inventory_has_no_discrepancies(db_session, make_loan, make_asset_item, make_stock_item):
    loan = make_loan()
    item = make_asset_item()
    stock = make_stock_item(quantity=5)
    loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=item.id))
    loan_lines.add_line(db_session, loan.id, StockTarget(stock_item_id=stock.id, quantity=2))

    assert reconcile_inventory.find_discrepancies(db_session) == []


def test_find_and_repair(db_session, make_loan, make_asset_item, make_stock_item, fresh):
    loan = make_loan()
    stale = make_asset_item()
    missing = make_asset_item()
    stock = make_stock_item(quantity=5)
    loan_lines.add_line(db_session, loan.id, AssetTarget(asset_item_id=missing.id))
    loan_lines.add_line(db_session, loan.id, StockTarget(stock_item_id=stock.id, quantity=2))

    # drift written behind the ledger's back
    db_session.expire_all()
    db_session.get(AssetItemORM, stale.id).status = "PRETE"
    db_session.get(AssetItemORM, missing.id).status = "EN_STOCK"
    db_session.get(StockItemORM, stock.id).loaned = 4
    db_session.commit()

    found = reconcile_inventory.find_discrepancies(db_session)
    assert _kinds(found) == sorted(
        [
            ("stale_reservation", stale.id),
            ("missing_reservation", missing.id),
            ("stock_counter", stock.id),
        ]
    )
    counter = next(d for d in found if d["kind"] == "stock_counter")
    assert (counter["expected"], counter["actual"]) == (2, 4)

    result = reconcile_inventory.repair(db_session)
    assert result == {"found": 3, "fixed": 3, "skipped": 0}

    assert fresh(AssetItemORM, stale.id).status == "EN_STOCK"
    assert fresh(AssetItemORM, missing.id).status == "PRETE"
    assert fresh(StockItemORM, stock.id).loaned == 2
    assert reconcile_inventory.find_discrepancies(db_session) == []


def test_repair_commit_false_rollback(db_session, make_asset_item, fresh):
    item = make_asset_item()
    fresh(AssetItemORM, item.id).status = "PRETE"
    db_session.commit()

    result = reconcile_inventory.repair(db_session, commit=False)
    assert result["fixed"] == 1
    db_session.rollback()

    assert fresh(AssetItemORM, item.id).status == "PRETE"
