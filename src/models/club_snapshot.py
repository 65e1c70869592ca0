"""Club snapshot ORM model: one JSON blob per club and data kind."""

from enum import Enum
from typing import Any

from sqlalchemy import JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.models import Base, BaseModel


class SnapshotKind(str, Enum):
    """Kind of club-scoped aggregate stored in a snapshot row."""

    DUES = "dues"
    LEDGER = "ledger"


class ClubSnapshot(Base, BaseModel):
    """Persisted club-scoped aggregate.

    Each club owns at most one row per kind. The whole payload is replaced on
    every write so readers never observe a partially updated aggregate.
    """

    __tablename__ = "club_snapshots"
    __table_args__ = (UniqueConstraint("club_code", "kind", name="uq_club_snapshots_club_kind"),)

    club_code: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Normalized (upper-case) club code",
    )
    kind: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Aggregate kind: dues or ledger",
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Serialized snapshot document",
    )

    def __repr__(self) -> str:
        return f"<ClubSnapshot(id={self.id}, club_code={self.club_code}, kind={self.kind})>"


__all__ = ["ClubSnapshot", "SnapshotKind"]
