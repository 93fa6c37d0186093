"""
Member model.

A member is a person on a tenant's roll. location, date_of_birth, profession and
gender drive automatic community placement; changing any of them re-syncs the
member's communities.
"""
import enum
from datetime import date
from sqlalchemy import String, ForeignKey, Boolean, Date, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from community_hub.core.database.base import Base, TimestampMixin, generate_ulid


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class Member(Base, TimestampMixin):
    """Tenant member profile."""
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    tenant_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    branch_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    # Login account, when the member has one
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Community placement attributes
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    profession: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gender: Mapped[Gender | None] = mapped_column(SQLEnum(Gender), nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, name={self.full_name!r})>"
