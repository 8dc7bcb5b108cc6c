"""
Client-facing population route: the signed-in user's own classification.
"""
from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.portal.rbac import require_login

from .routing import parse_population, population_info

bp = Blueprint("population_client", __name__)


@bp.get("/me")
@require_login
def my_population():
    population = parse_population(g.current_user.population)
    if population is None:
        return jsonify({"ok": True, "data": {"value": None, "status": "unclassified"}})
    return jsonify({"ok": True, "data": {**population_info(population), "status": "classified"}})
