from __future__ import annotations

import datetime as dt
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.arsd.models import Base, User
from app.arsd.modules.projects.models import Project


class AccomplishmentReport(Base):
    __tablename__ = "accomplishment_reports"
    __table_args__ = (
        UniqueConstraint("project_id", "week_ending_date", name="uq_accomplishment_reports_project_week"),
        Index("idx_accomplishment_reports_status", "status"),
        Index("idx_accomplishment_reports_week", "week_ending_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # Cleared once the stored file is removed by the storage cleanup job.
    storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    week_ending_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    parsed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    parsed_status: Mapped[str | None] = mapped_column(String(16), nullable=True)  # success | failed
    parse_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    project: Mapped[Project] = relationship(Project, back_populates="reports", lazy="selectin")
    uploaded_by: Mapped[User | None] = relationship(User, foreign_keys=[uploaded_by_user_id], lazy="selectin")
    reviewed_by: Mapped[User | None] = relationship(User, foreign_keys=[reviewed_by_user_id], lazy="selectin")

    project_details: Mapped[list["ProjectDetail"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )
    project_costs: Mapped[list["ProjectCost"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )
    man_hours: Mapped[list["ManHour"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True, order_by="ManHour.date"
    )
    cost_items: Mapped[list["CostItem"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )
    cost_items_secondary: Mapped[list["CostItemSecondary"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )
    monthly_costs: Mapped[list["MonthlyCost"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True, order_by="MonthlyCost.month"
    )
    materials: Mapped[list["Material"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )
    purchase_orders: Mapped[list["PurchaseOrder"]] = relationship(
        back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def has_file(self) -> bool:
        return bool(self.storage_key) and self.file_deleted_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_code": self.project.project_code if self.project else None,
            "project_name": self.project.project_name if self.project else None,
            "uploaded_by": self.uploaded_by.label if self.uploaded_by else None,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "upload_date": self.upload_date.isoformat() if self.upload_date else None,
            "week_ending_date": self.week_ending_date.isoformat() if self.week_ending_date else None,
            "status": self.status,
            "notes": self.notes,
            "parsed_at": self.parsed_at.isoformat() if self.parsed_at else None,
            "parsed_status": self.parsed_status,
            "parse_error": self.parse_error,
            "file_deleted_at": self.file_deleted_at.isoformat() if self.file_deleted_at else None,
        }


def _report_fk() -> Mapped[int]:
    return mapped_column(ForeignKey("accomplishment_reports.id", ondelete="CASCADE"), nullable=False, index=True)


class ProjectDetail(Base):
    __tablename__ = "project_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    project_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contractor_license: Mapped[str | None] = mapped_column(String(128), nullable=True)
    project_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contract_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    direct_contract_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    planned_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    calendar_days: Mapped[float | None] = mapped_column(Float, nullable=True)
    working_days: Mapped[float | None] = mapped_column(Float, nullable=True)
    pm_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    site_engineer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    priority_level: Mapped[str | None] = mapped_column(String(64), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="project_details")


class ProjectCost(Base):
    __tablename__ = "project_costs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    target_cost_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    swa_cost_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    billed_cost_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    direct_cost_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    balance: Mapped[float | None] = mapped_column(Float, nullable=True)
    collectibles: Mapped[float | None] = mapped_column(Float, nullable=True)
    direct_cost_savings: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Fraction (0..1) of the contract expected to be done by the report week.
    target_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    received_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    utilization_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_pos: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="project_costs")


class ManHour(Base):
    __tablename__ = "man_hours"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    actual_man_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    projected_man_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="man_hours")


class CostItem(Base):
    __tablename__ = "cost_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    item_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    wbs: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="cost_items")


class CostItemSecondary(Base):
    __tablename__ = "cost_items_secondary"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    item_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="cost_items_secondary")


class MonthlyCost(Base):
    __tablename__ = "monthly_costs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    month: Mapped[date | None] = mapped_column(Date, nullable=True)
    target_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    swa_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    billed_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    direct_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="monthly_costs")


class Material(Base):
    __tablename__ = "materials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    material: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sum_qty: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="materials")


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    accomplishment_report_id: Mapped[int] = _report_fk()
    project_code: Mapped[str] = mapped_column(String(128), nullable=False)
    po_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    date_requested: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    materials_requested: Mapped[str | None] = mapped_column(Text, nullable=True)
    qty: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    priority_level: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    report: Mapped[AccomplishmentReport] = relationship(back_populates="purchase_orders")


PARSED_MODELS = {
    "project_details": ProjectDetail,
    "project_costs": ProjectCost,
    "man_hours": ManHour,
    "cost_items": CostItem,
    "cost_items_secondary": CostItemSecondary,
    "monthly_costs": MonthlyCost,
    "materials": Material,
    "purchase_orders": PurchaseOrder,
}
