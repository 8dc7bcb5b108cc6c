from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.portal.audit import record_event
from app.portal.cache import CacheDomain, CacheKey, CacheTTL, TTLCache
from app.portal.constants import STAFF_ROLES, Population
from app.portal.errors import InvalidInput, NotFound, OperationResult, PortalError, Unauthorized
from app.portal.models import User
from app.portal.rbac import actor_has_role

from .routing import all_populations, parse_population

logger = logging.getLogger(__name__)

Authorizer = Callable[[int | None, Iterable[str]], bool]


def list_populations(s: Session, cache: TTLCache) -> list[dict[str, Any]]:
    """Every population with its assessment requirements and how many clients it holds."""

    def produce() -> list[dict[str, Any]]:
        counts = dict(
            s.execute(
                select(User.population, func.count(User.id))
                .where(User.population.is_not(None))
                .group_by(User.population)
            ).all()
        )
        rows = all_populations()
        for row in rows:
            row["client_count"] = int(counts.get(row["value"], 0))
        return rows

    return cache.with_cache(CacheKey.of(CacheDomain.POPULATIONS, "all"), produce, ttl=CacheTTL.ONE_HOUR)


def assign_population(
    s: Session,
    *,
    actor_id: int | None,
    user_id: int,
    population: Population | str,
    reason: str | None = None,
    cache: TTLCache | None = None,
    authorizer: Authorizer | None = None,
) -> OperationResult[User]:
    """
    Set a client's population. Staff only; audited with the previous value.
    """
    allowed = authorizer or (lambda aid, roles: actor_has_role(s, aid, roles))
    try:
        if not allowed(actor_id, STAFF_ROLES):
            raise Unauthorized("Not allowed to assign populations.", actor_id=actor_id)
        target = population if isinstance(population, Population) else parse_population(population)
        if target is None:
            raise InvalidInput(f"Unknown population {population!r}.")
        user = s.get(User, user_id)
        if user is None:
            raise NotFound("User not found.", user_id=user_id)

        previous = user.population
        user.population = target.value
        actor = s.get(User, actor_id) if actor_id is not None else None
        record_event(
            s,
            actor=actor,
            action="population.assign",
            entity_type="User",
            entity_id=str(user.id),
            reason=reason,
            metadata={"previous_population": previous, "new_population": target.value},
        )
        s.commit()
    except PortalError as e:
        s.rollback()
        logger.warning("population assign rejected user_id=%s: %s: %s", user_id, e.code, e.message)
        return OperationResult.failure(e)
    except Exception:
        s.rollback()
        raise

    if cache is not None:
        cache.invalidate(CacheDomain.POPULATIONS)
    logger.info("Population assigned user_id=%s %s -> %s", user.id, previous, target.value)
    return OperationResult.success(user)
