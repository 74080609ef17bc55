from __future__ import annotations

import datetime as dt
from datetime import datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.arsd.models import Base, User
from app.arsd.modules.projects.models import Project


class IpowItem(Base):
    """Planned quantity for one work item, imported from a report's IPOW sheet."""

    __tablename__ = "ipow_items"
    __table_args__ = (Index("idx_ipow_items_project_wbs", "project_id", "wbs"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    wbs: Mapped[str] = mapped_column(String(64), nullable=False)
    item_description: Mapped[str] = mapped_column(Text, nullable=False)
    resource: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    latest_ipow_qty: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "wbs": self.wbs,
            "item_description": self.item_description,
            "resource": self.resource,
            "type": self.type,
            "unit": self.unit,
            "latest_ipow_qty": self.latest_ipow_qty,
            "unit_cost": self.unit_cost,
            "total_cost": self.total_cost,
        }


class DeliveryReceipt(Base):
    __tablename__ = "delivery_receipts"
    __table_args__ = (
        Index("idx_delivery_receipts_project_date", "project_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    dr_no: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    supplier: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time: Mapped[str | None] = mapped_column(String(16), nullable=True)
    warehouseman: Mapped[str] = mapped_column(String(255), nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    dr_photo_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    po_photo_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    project: Mapped[Project] = relationship(Project, lazy="selectin")
    created_by: Mapped[User | None] = relationship(User, lazy="selectin")
    items: Mapped[list["DrItem"]] = relationship(
        back_populates="delivery_receipt",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DrItem.sort_order",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "dr_no": self.dr_no,
            "project_id": self.project_id,
            "project_name": self.project.project_name if self.project else None,
            "supplier": self.supplier,
            "date": self.date.isoformat() if self.date else None,
            "time": self.time,
            "warehouseman": self.warehouseman,
            "locked": self.locked,
            "dr_photo_key": self.dr_photo_key,
            "po_photo_key": self.po_photo_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "items": [i.to_dict() for i in self.items],
        }


class DrItem(Base):
    __tablename__ = "dr_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    dr_id: Mapped[int] = mapped_column(ForeignKey("delivery_receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    item_description: Mapped[str] = mapped_column(Text, nullable=False)
    wbs: Mapped[str | None] = mapped_column(String(64), nullable=True)
    qty_in_dr: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    qty_in_po: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    delivery_receipt: Mapped[DeliveryReceipt] = relationship(back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_description": self.item_description,
            "wbs": self.wbs,
            "qty_in_dr": self.qty_in_dr,
            "qty_in_po": self.qty_in_po,
            "unit": self.unit,
            "sort_order": self.sort_order,
        }


class ReleaseForm(Base):
    __tablename__ = "release_forms"
    __table_args__ = (
        Index("idx_release_forms_project_date", "project_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    release_no: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    received_by: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    warehouseman: Mapped[str | None] = mapped_column(String(255), nullable=True)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    attachment_key: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    project: Mapped[Project] = relationship(Project, lazy="selectin")
    created_by: Mapped[User | None] = relationship(User, lazy="selectin")
    items: Mapped[list["ReleaseItem"]] = relationship(
        back_populates="release_form",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ReleaseItem.sort_order",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "release_no": self.release_no,
            "project_id": self.project_id,
            "project_name": self.project.project_name if self.project else None,
            "received_by": self.received_by,
            "date": self.date.isoformat() if self.date else None,
            "warehouseman": self.warehouseman,
            "purpose": self.purpose,
            "locked": self.locked,
            "attachment_key": self.attachment_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "items": [i.to_dict() for i in self.items],
        }


class ReleaseItem(Base):
    __tablename__ = "release_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    release_id: Mapped[int] = mapped_column(ForeignKey("release_forms.id", ondelete="CASCADE"), nullable=False, index=True)
    item_description: Mapped[str] = mapped_column(Text, nullable=False)
    wbs: Mapped[str | None] = mapped_column(String(64), nullable=True)
    qty: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    release_form: Mapped[ReleaseForm] = relationship(back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_description": self.item_description,
            "wbs": self.wbs,
            "qty": self.qty,
            "unit": self.unit,
            "sort_order": self.sort_order,
        }


class StockPoOverride(Base):
    """PO quantity typed in by material control; wins over the DR-derived value."""

    __tablename__ = "stock_po_overrides"
    __table_args__ = (
        UniqueConstraint("project_id", "wbs", "item_description", name="uq_stock_po_overrides_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    # Empty string (not NULL) when the stock row has no WBS, so the unique key holds.
    wbs: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    # Stored trimmed and lowercased, the same key stock rows are matched on.
    item_description: Mapped[str] = mapped_column(String(512), nullable=False)
    po: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
