from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base


class Packet(Base):
    __tablename__ = "packets"
    __table_args__ = (
        Index("idx_packets_user_status", "user_id", "status"),
        Index("idx_packets_status_updated", "status", "updated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Owner is fixed at creation; deleting the user removes their packets.
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    packet_type: Mapped[str] = mapped_column(String(32), nullable=False)

    # DRAFT -> PUBLISHED <-> UNPUBLISHED, any of them -> ARCHIVED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")
    # Bumped on content changes only; also the optimistic-concurrency token.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    coach_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # NULL means render pending.
    rendered_artifact_ref: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Most recent publish event; kept when the packet is unpublished.
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    published_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    last_modified_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def to_dict(self, *, include_content: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "packet_type": self.packet_type,
            "status": self.status,
            "version": self.version,
            "coach_notes": self.coach_notes,
            "rendered_artifact_ref": self.rendered_artifact_ref,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "published_at": _iso(self.published_at),
            "published_by_user_id": self.published_by_user_id,
            "last_modified_by_user_id": self.last_modified_by_user_id,
        }
        if include_content:
            out["content"] = self.content
        return out


class PacketVersion(Base):
    """
    Immutable content snapshot. Rows are only ever inserted.
    """

    __tablename__ = "packet_versions"
    __table_args__ = (
        UniqueConstraint("packet_id", "version", name="uq_packet_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    packet_id: Mapped[int] = mapped_column(ForeignKey("packets.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    author_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # Set when this version was produced by restoring an older one.
    restore_of: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "packet_id": self.packet_id,
            "version": self.version,
            "content": self.content,
            "author_user_id": self.author_user_id,
            "created_at": _iso(self.created_at),
            "restore_of": self.restore_of,
        }


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None
