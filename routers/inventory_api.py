from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import crud
import ledger
from dependencies import get_actor_id, get_db
from errors import NotFound
from models import (
    AssetItem,
    AssetItemIn,
    AssetItemStatusUpdate,
    AssetModel,
    AssetModelIn,
    Employee,
    EmployeeIn,
    Envelope,
    StockItem,
    StockItemIn,
)

router = APIRouter(tags=["inventory"])


@router.post("/employees", response_model=Envelope[Employee], status_code=201)
def create_employee_api(
    body: EmployeeIn,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return Envelope(data=crud.create_employee(db, body, actor_id=actor_id))


@router.get("/employees/{employee_id}", response_model=Envelope[Employee])
def get_employee_api(employee_id: str, db: Session = Depends(get_db)):
    employee = crud.get_employee(db, employee_id)
    if not employee:
        raise NotFound("employee not found")
    return Envelope(data=employee)


@router.post("/asset-models", response_model=Envelope[AssetModel], status_code=201)
def create_asset_model_api(body: AssetModelIn, db: Session = Depends(get_db)):
    return Envelope(data=crud.create_asset_model(db, body))


@router.post("/asset-items", response_model=Envelope[AssetItem], status_code=201)
def create_asset_item_api(
    body: AssetItemIn,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return Envelope(data=crud.create_asset_item(db, body, actor_id=actor_id))


@router.get("/asset-items/{asset_item_id}", response_model=Envelope[AssetItem])
def get_asset_item_api(asset_item_id: str, db: Session = Depends(get_db)):
    item = crud.get_asset_item(db, asset_item_id)
    if not item:
        raise NotFound("asset item not found")
    return Envelope(data=item)


@router.patch("/asset-items/{asset_item_id}/status", response_model=Envelope[AssetItem])
def update_asset_item_status_api(
    asset_item_id: str,
    body: AssetItemStatusUpdate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    item = ledger.set_service_status(db, asset_item_id, body.status, actor_id=actor_id)
    return Envelope(data=item)


@router.post("/stock-items", response_model=Envelope[StockItem], status_code=201)
def create_stock_item_api(
    body: StockItemIn,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return Envelope(data=crud.create_stock_item(db, body, actor_id=actor_id))


@router.get("/stock-items/{stock_item_id}", response_model=Envelope[StockItem])
def get_stock_item_api(stock_item_id: str, db: Session = Depends(get_db)):
    item = crud.get_stock_item(db, stock_item_id)
    if not item:
        raise NotFound("stock item not found")
    return Envelope(data=item)
