"""
Community and community membership models.

Typed communities (CELL, TRIBE, PROFESSION, MINISTRY) are unique per
(tenant, branch, type) and their distinguishing attribute; the uniqueness rules
live in strategies.py and are enforced by the resolver before insert.
"""
import enum
from datetime import datetime
from sqlalchemy import String, ForeignKey, Text, DateTime, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from community_hub.core.database.base import Base, TimestampMixin, generate_ulid, utcnow
from community_hub.features.members.models import Gender


class CommunityType(str, enum.Enum):
    CELL = "CELL"
    TRIBE = "TRIBE"
    PROFESSION = "PROFESSION"
    MINISTRY = "MINISTRY"
    INTEREST = "INTEREST"
    OTHER = "OTHER"


class CommunityStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class CommunityRole(str, enum.Enum):
    MEMBER = "MEMBER"
    LEADER = "LEADER"
    ASSISTANT_LEADER = "ASSISTANT_LEADER"


class CommunityMemberStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class Month(str, enum.Enum):
    JANUARY = "JANUARY"
    FEBRUARY = "FEBRUARY"
    MARCH = "MARCH"
    APRIL = "APRIL"
    MAY = "MAY"
    JUNE = "JUNE"
    JULY = "JULY"
    AUGUST = "AUGUST"
    SEPTEMBER = "SEPTEMBER"
    OCTOBER = "OCTOBER"
    NOVEMBER = "NOVEMBER"
    DECEMBER = "DECEMBER"


class Community(Base, TimestampMixin):
    """
    Typed affinity grouping of members.

    Only the attribute matching ``type`` is stored: location/country for CELL,
    month for TRIBE, profession for PROFESSION, gender for MINISTRY.
    """
    __tablename__ = "communities"
    __table_args__ = (
        Index("ix_communities_scope", "tenant_id", "branch_id", "type"),
    )

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

    type: Mapped[CommunityType] = mapped_column(SQLEnum(CommunityType), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[CommunityStatus] = mapped_column(
        SQLEnum(CommunityStatus),
        default=CommunityStatus.ACTIVE,
        nullable=False
    )

    # Type-specific attributes
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    month: Mapped[Month | None] = mapped_column(SQLEnum(Month), nullable=True)
    profession: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gender: Mapped[Gender | None] = mapped_column(SQLEnum(Gender), nullable=True)

    # Designated leaders, by member id
    leader_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True
    )
    assistant_leader_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True
    )
    creator_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Community(id={self.id}, type={self.type}, name={self.name!r})>"


class CommunityMember(Base, TimestampMixin):
    """
    Membership row, keyed by (community_id, member_id).

    Removal hard-deletes the row; setting left_at records a departure while
    keeping it.
    """
    __tablename__ = "community_members"

    community_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("communities.id"),
        primary_key=True
    )
    member_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("members.id"),
        primary_key=True,
        index=True
    )

    role: Mapped[CommunityRole] = mapped_column(
        SQLEnum(CommunityRole),
        default=CommunityRole.MEMBER,
        nullable=False
    )
    status: Mapped[CommunityMemberStatus] = mapped_column(
        SQLEnum(CommunityMemberStatus),
        default=CommunityMemberStatus.ACTIVE,
        nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CommunityMember(community_id={self.community_id}, member_id={self.member_id}, role={self.role})>"
