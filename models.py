from pydantic import BaseModel, Field
from typing import Annotated, Any, Generic, Literal, Optional, TypeVar, Union
from datetime import datetime

from errors import ValidationError

AssetStatus = Literal["EN_STOCK", "PRETE", "HS", "REPARATION"]
ServiceStatus = Literal["EN_STOCK", "HS", "REPARATION"]
LoanStatus = Literal["OPEN", "CLOSED"]

MAX_BATCH_DELETE = 100

T = TypeVar("T")


# ---------- Line targets ----------
class AssetTarget(BaseModel):
    kind: Literal["asset"] = "asset"
    asset_item_id: str

    @property
    def quantity(self) -> int:
        return 1


class StockTarget(BaseModel):
    kind: Literal["stock"] = "stock"
    stock_item_id: str
    quantity: int = 1


LineTarget = Annotated[Union[AssetTarget, StockTarget], Field(discriminator="kind")]


class LoanLineIn(BaseModel):
    asset_item_id: Optional[str] = None
    stock_item_id: Optional[str] = None
    quantity: Optional[int] = None

    def to_target(self) -> AssetTarget | StockTarget:
        """Turn the flat request body into a LineTarget, exactly one item set."""
        if self.asset_item_id and self.stock_item_id:
            raise ValidationError("specify either asset_item_id or stock_item_id, not both")
        if not self.asset_item_id and not self.stock_item_id:
            raise ValidationError("specify either asset_item_id or stock_item_id")
        if self.quantity is not None and self.quantity <= 0:
            raise ValidationError("quantity must be at least 1")

        if self.asset_item_id:
            if self.quantity not in (None, 1):
                raise ValidationError("asset lines always have quantity 1")
            return AssetTarget(asset_item_id=self.asset_item_id)
        return StockTarget(stock_item_id=self.stock_item_id, quantity=self.quantity or 1)


# ---------- Inventory ----------
class EmployeeIn(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None
    dept: Optional[str] = None

class Employee(EmployeeIn):
    id: str
    created_at: datetime
    updated_at: datetime

class AssetModelIn(BaseModel):
    type: str
    brand: str
    model_name: str

class AssetModel(AssetModelIn):
    id: str
    created_at: datetime

class AssetItemIn(BaseModel):
    asset_tag: str
    asset_model_id: str
    serial: Optional[str] = None
    notes: Optional[str] = None

class AssetItem(AssetItemIn):
    id: str
    status: AssetStatus = "EN_STOCK"
    created_at: datetime
    updated_at: datetime

class AssetItemStatusUpdate(BaseModel):
    status: ServiceStatus

class StockItemIn(BaseModel):
    asset_model_id: str
    quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(0, ge=0)
    notes: Optional[str] = None

class StockItem(StockItemIn):
    id: str
    loaned: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def available(self) -> int:
        return self.quantity - self.loaned


# ---------- Loan ----------
class LoanIn(BaseModel):
    employee_id: str

class LoanLine(BaseModel):
    id: str
    loan_id: str
    target: LineTarget
    asset_item_id: Optional[str] = None
    stock_item_id: Optional[str] = None
    quantity: int = 1
    added_at: datetime
    asset_item: Optional[AssetItem] = None
    stock_item: Optional[StockItem] = None

class Loan(BaseModel):
    id: str
    employee_id: str
    created_by_id: str
    status: LoanStatus = "OPEN"
    opened_at: datetime
    closed_at: Optional[datetime] = None
    pickup_signature_url: Optional[str] = None
    pickup_signed_at: Optional[datetime] = None
    return_signature_url: Optional[str] = None
    return_signed_at: Optional[datetime] = None
    lines: list[LoanLine] = []

class BatchDeleteIn(BaseModel):
    ids: list[str]

class DeleteResult(BaseModel):
    count: int


# ---------- Envelopes ----------
class ErrorBody(BaseModel):
    kind: str
    message: str

class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T

class ErrorEnvelope(BaseModel):
    success: bool = False
    error: ErrorBody

class AuditEvent(BaseModel):
    action: Literal["CREATE", "UPDATE", "DELETE"]
    table_name: str
    record_id: str
    actor_id: str
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
