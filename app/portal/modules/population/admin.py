from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.portal.cache import current_cache
from app.portal.db import db_session
from app.portal.rbac import require_permission

from .routing import IntakeFacts, classify_population, parse_population, population_info
from .service import assign_population, list_populations

bp = Blueprint("population_admin", __name__)


@bp.get("/")
@require_permission("population.view")
def populations_list():
    return jsonify({"ok": True, "data": list_populations(db_session(), current_cache())})


@bp.post("/classify")
@require_permission("population.view")
def populations_classify():
    """Classify discovery-form facts and return the resulting assessment plan. Nothing is stored."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"ok": False, "error": "bad_request", "message": "Expected a JSON object."}), 400
    population = classify_population(IntakeFacts.from_mapping(data))
    return jsonify({"ok": True, "data": population_info(population)})


@bp.post("/users/<int:user_id>")
@require_permission("population.view")
def populations_assign(user_id: int):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict) or not data.get("population"):
        return jsonify({"ok": False, "error": "bad_request", "message": "population is required."}), 400
    population = parse_population(str(data["population"]))
    if population is None:
        return jsonify({"ok": False, "error": "bad_request", "message": f"Unknown population {data['population']!r}."}), 400
    actor = getattr(g, "current_user", None)
    result = assign_population(
        db_session(),
        actor_id=actor.id if actor else None,
        user_id=user_id,
        population=population,
        reason=str(data.get("reason") or "").strip() or None,
        cache=current_cache(),
    )
    if not result.ok:
        return jsonify(result.error.to_dict()), result.error.http_status
    user = result.value
    return jsonify({"ok": True, "data": {"user_id": user.id, "population": user.population}})
