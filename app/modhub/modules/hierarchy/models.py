from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.modhub.models import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class CatalogModule(Base):
    """A module the application offers; source of the "available" catalog."""

    __tablename__ = "catalog_modules"
    __table_args__ = (
        Index("idx_catalog_modules_sort_order", "sort_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # canonical key, e.g. "payments"
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    href: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Identifiers older clients persisted for this module
    legacy_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True, default=list)

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class ModuleAssignment(Base):
    """A grant of one module to one user; source of the "assigned" catalog."""

    __tablename__ = "module_assignments"
    __table_args__ = (
        Index("idx_module_assignments_module_key", "module_key"),
        Index("idx_module_assignments_assigned_user_id", "assigned_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_key: Mapped[str] = mapped_column(String(128), nullable=False)
    module_name: Mapped[str] = mapped_column(String(255), nullable=False)

    assigned_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    assigned_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class HierarchyState(Base):
    """Remote copy of one owner's forest for one hierarchy type."""

    __tablename__ = "module_hierarchy_states"
    __table_args__ = (
        UniqueConstraint("owner_user_id", "type", name="uq_module_hierarchy_states_owner_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # "available" | "assigned"

    hierarchy: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    custom_names: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
