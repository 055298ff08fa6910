from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db import Base
from models import AssetTarget, StockTarget


class EmployeeORM(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    dept: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AssetModelORM(Base):
    __tablename__ = "asset_models"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    brand: Mapped[str] = mapped_column(String, nullable=False)
    model_name: Mapped[str] = mapped_column(String, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AssetItemORM(Base):
    __tablename__ = "asset_items"
    __table_args__ = (
        CheckConstraint(
            "status IN ('EN_STOCK', 'PRETE', 'HS', 'REPARATION')",
            name="ck_asset_items_status",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    asset_tag: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    serial: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="EN_STOCK", index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    asset_model_id: Mapped[str] = mapped_column(
        String, ForeignKey("asset_models.id"), nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class StockItemORM(Base):
    __tablename__ = "stock_items"
    __table_args__ = (
        CheckConstraint("loaned >= 0 AND loaned <= quantity", name="ck_stock_items_loaned"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    asset_model_id: Mapped[str] = mapped_column(
        String, ForeignKey("asset_models.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loaned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class LoanORM(Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("status IN ('OPEN', 'CLOSED')", name="ck_loans_status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    employee_id: Mapped[str] = mapped_column(
        String, ForeignKey("employees.id"), nullable=False, index=True
    )
    created_by_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="OPEN", index=True)

    opened_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    pickup_signature_url: Mapped[str | None] = mapped_column(String, nullable=True)
    pickup_signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    return_signature_url: Mapped[str | None] = mapped_column(String, nullable=True)
    return_signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    lines: Mapped[list["LoanLineORM"]] = relationship(
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="LoanLineORM.added_at",
        passive_deletes=True,
    )

    @property
    def signature_urls(self) -> list[str]:
        return [u for u in (self.pickup_signature_url, self.return_signature_url) if u]


class LoanLineORM(Base):
    __tablename__ = "loan_lines"
    __table_args__ = (
        CheckConstraint(
            "(asset_item_id IS NULL) <> (stock_item_id IS NULL)",
            name="ck_loan_lines_single_target",
        ),
        CheckConstraint("quantity > 0", name="ck_loan_lines_quantity"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    loan_id: Mapped[str] = mapped_column(
        String, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_item_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("asset_items.id"), nullable=True, index=True
    )
    stock_item_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("stock_items.id"), nullable=True, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    added_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    loan: Mapped[LoanORM] = relationship(back_populates="lines")
    asset_item: Mapped[AssetItemORM | None] = relationship()
    stock_item: Mapped[StockItemORM | None] = relationship()

    @property
    def target(self) -> AssetTarget | StockTarget:
        if self.asset_item_id is not None:
            return AssetTarget(asset_item_id=self.asset_item_id)
        return StockTarget(stock_item_id=self.stock_item_id, quantity=self.quantity)


class AuditLogORM(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    table_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
