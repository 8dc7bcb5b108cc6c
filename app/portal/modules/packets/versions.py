"""
Append-only log of packet content snapshots.

Version numbers are per packet, start at 1 and increase by one on every
append. The store never updates or deletes rows; restoring an old version is
done by the lifecycle engine, which appends a copy marked with ``restore_of``.
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.portal.errors import NotFound

from .models import Packet, PacketVersion


class VersionStore:
    def __init__(self, s: Session, *, clock: Callable[[], datetime] = datetime.utcnow) -> None:
        self.s = s
        self.clock = clock

    def latest_version(self, packet_id: int) -> int:
        """Highest stored version number, 0 when nothing has been appended yet."""
        q = select(func.max(PacketVersion.version)).where(PacketVersion.packet_id == packet_id)
        return self.s.execute(q).scalar_one_or_none() or 0

    def append(
        self,
        packet_id: int,
        snapshot: dict[str, Any],
        author_id: int | None,
        *,
        restore_of: int | None = None,
    ) -> int:
        if self.s.get(Packet, packet_id) is None:
            raise NotFound("Packet not found.", packet_id=packet_id)
        number = self.latest_version(packet_id) + 1
        self.s.add(
            PacketVersion(
                packet_id=packet_id,
                version=number,
                content=snapshot,
                author_user_id=author_id,
                created_at=self.clock(),
                restore_of=restore_of,
            )
        )
        # Flush so a concurrent append of the same number trips uq_packet_version here.
        self.s.flush()
        return number

    def list_versions(self, packet_id: int) -> list[PacketVersion]:
        """Newest first. Each call runs a fresh query, so the listing is restartable."""
        q = (
            select(PacketVersion)
            .where(PacketVersion.packet_id == packet_id)
            .order_by(PacketVersion.version.desc())
        )
        return list(self.s.execute(q).scalars().all())

    def get_version(self, packet_id: int, version: int) -> PacketVersion:
        q = select(PacketVersion).where(PacketVersion.packet_id == packet_id, PacketVersion.version == version)
        row = self.s.execute(q).scalar_one_or_none()
        if row is None:
            raise NotFound("Version not found.", packet_id=packet_id, version=version)
        return row
