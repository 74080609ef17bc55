from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.arsd.models import Base, User

if TYPE_CHECKING:
    from app.arsd.modules.accomplishment_reports.models import AccomplishmentReport


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = (
        Index("idx_projects_status", "status"),
        Index("idx_projects_manager", "project_manager_id"),
        Index("idx_projects_inspector", "project_inspector_id"),
        Index("idx_projects_warehouseman", "warehouseman_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # System code, e.g. PRJ-2025-0001
    project_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    # Project id as written in the accomplishment report DATA SHEET, e.g. BCDDB-2025-001
    parsed_project_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="in_planning")

    project_manager_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    project_inspector_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    warehouseman_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    latest_accomplishment_update: Mapped[date | None] = mapped_column(Date, nullable=True)
    has_parsed_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    project_manager: Mapped[User | None] = relationship(User, foreign_keys=[project_manager_id], lazy="selectin")
    project_inspector: Mapped[User | None] = relationship(User, foreign_keys=[project_inspector_id], lazy="selectin")
    warehouseman: Mapped[User | None] = relationship(User, foreign_keys=[warehouseman_id], lazy="selectin")

    reports: Mapped[list["AccomplishmentReport"]] = relationship(
        "AccomplishmentReport",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def is_assigned(self, user: User | None) -> bool:
        if not user:
            return False
        return user.id in (self.project_manager_id, self.project_inspector_id, self.warehouseman_id)

    def to_dict(self) -> dict:
        def _person(u: User | None) -> dict | None:
            if not u:
                return None
            return {"user_id": u.id, "display_name": u.label, "email": u.email}

        return {
            "id": self.id,
            "project_id": self.project_code,
            "parsed_project_id": self.parsed_project_id,
            "project_name": self.project_name,
            "client": self.client,
            "location": self.location,
            "status": self.status,
            "project_manager": _person(self.project_manager),
            "project_inspector": _person(self.project_inspector),
            "warehouseman": _person(self.warehouseman),
            "latest_accomplishment_update": (
                self.latest_accomplishment_update.isoformat() if self.latest_accomplishment_update else None
            ),
            "has_parsed_data": self.has_parsed_data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
