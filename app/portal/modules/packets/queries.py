from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.portal.cache import CacheDomain, CacheKey, CacheTTL, TTLCache
from app.portal.constants import PacketStatus

from .models import Packet

REVIEW_STATUSES = (PacketStatus.DRAFT, PacketStatus.UNPUBLISHED)


def list_packets_for_review(
    s: Session,
    cache: TTLCache,
    *,
    statuses: Iterable[PacketStatus | str] = REVIEW_STATUSES,
    user_id: int | None = None,
    packet_type: str | None = None,
) -> list[dict]:
    """
    Staff review queue, newest edits first. Cached as plain dicts so cached
    values never hold on to a closed session.
    """
    wanted = sorted({PacketStatus(str(x).upper()).value for x in statuses})
    ptype = (packet_type or "").strip().upper() or None
    key = CacheKey.of(CacheDomain.PACKET_LISTS, "review", ",".join(wanted), user_id or "*", ptype or "*")

    def produce() -> list[dict]:
        q = select(Packet).where(Packet.status.in_(wanted))
        if user_id is not None:
            q = q.where(Packet.user_id == user_id)
        if ptype:
            q = q.where(Packet.packet_type == ptype)
        q = q.order_by(Packet.updated_at.desc(), Packet.id.desc())
        return [p.to_dict(include_content=False) for p in s.execute(q).scalars().all()]

    return cache.with_cache(key, produce, ttl=CacheTTL.TEN_MINUTES)


def list_published_packets_for_user(s: Session, cache: TTLCache, user_id: int) -> list[dict]:
    """What a client sees: only their own PUBLISHED packets."""
    key = CacheKey.of(CacheDomain.CLIENT_PACKETS, user_id)

    def produce() -> list[dict]:
        q = (
            select(Packet)
            .where(Packet.user_id == user_id, Packet.status == PacketStatus.PUBLISHED.value)
            .order_by(Packet.published_at.desc(), Packet.id.desc())
        )
        return [p.to_dict() for p in s.execute(q).scalars().all()]

    return cache.with_cache(key, produce, ttl=CacheTTL.FIVE_MINUTES)


def get_published_packet_for_user(s: Session, user_id: int, packet_id: int) -> Packet | None:
    packet = s.get(Packet, packet_id)
    if packet is None or packet.user_id != user_id or packet.status != PacketStatus.PUBLISHED.value:
        return None
    return packet
