"""
Tenant and branch models.

A tenant is an isolated organization; a branch is a sub-unit of it (a physical
location). Only the fields other features rely on are modelled here.
"""
from sqlalchemy import String, ForeignKey, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from community_hub.core.database.base import Base, TimestampMixin, generate_ulid


class Tenant(Base, TimestampMixin):
    """Top-level organization. All data is scoped by tenant id."""
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    logo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name!r})>"


class Branch(Base, TimestampMixin):
    """Sub-unit of a tenant; communities and members may be scoped to one."""
    __tablename__ = "branches"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tenant_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, tenant_id={self.tenant_id}, name={self.name!r})>"
