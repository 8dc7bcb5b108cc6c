"""
Packet admin routes (JSON).

Staff review queue, content edits, status changes, version history and
rendering. Mutations go through PacketLifecycleEngine, which runs its own role
check; the view decorators only gate read access.
"""
from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, g, jsonify, request

from app.portal.cache import current_cache
from app.portal.db import db_session
from app.portal.errors import ContentShapeMismatch, OperationResult
from app.portal.rbac import require_permission

from .content import list_exercises, parse_content
from .lifecycle import PacketLifecycleEngine
from .models import Packet
from .queries import REVIEW_STATUSES, list_packets_for_review

bp = Blueprint("packets_admin", __name__)


def engine_for_request() -> PacketLifecycleEngine:
    return PacketLifecycleEngine(
        db_session(),
        notifier=current_app.extensions["portal_notifier"],
        renderer=current_app.extensions["portal_renderer"],
        cache=current_cache(),
    )


def _actor_id() -> int | None:
    user = getattr(g, "current_user", None)
    return user.id if user else None


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _bad_request(message: str):
    return jsonify({"ok": False, "error": "bad_request", "message": message}), 400


def _reason(data: dict[str, Any]) -> str | None:
    return str(data.get("reason") or "").strip() or None


def _expected_version(data: dict[str, Any]) -> int | None:
    try:
        return int(data["expected_version"])
    except (KeyError, TypeError, ValueError):
        return None


def _respond(result: OperationResult, *, status: int = 200):
    if not result.ok:
        err = result.error
        return jsonify(err.to_dict()), err.http_status
    value = result.value
    if isinstance(value, list):
        body: Any = [v.to_dict() for v in value]
    else:
        body = value.to_dict()
    out: dict[str, Any] = {"ok": True, "data": body}
    if result.warnings:
        out["warnings"] = [w.to_dict() for w in result.warnings]
    return jsonify(out), status


# ─────────────────────────────────────────────────────────────────────────────
# Review queue / detail
# ─────────────────────────────────────────────────────────────────────────────


@bp.get("/")
@require_permission("packets.view")
def packets_list():
    raw_status = (request.args.get("status") or "").strip()
    statuses = [x for x in raw_status.split(",") if x.strip()] if raw_status else list(REVIEW_STATUSES)
    user_id = request.args.get("user_id", type=int)
    packet_type = (request.args.get("type") or "").strip() or None
    try:
        rows = list_packets_for_review(
            db_session(),
            current_cache(),
            statuses=[x.strip() for x in statuses],
            user_id=user_id,
            packet_type=packet_type,
        )
    except ValueError:
        return _bad_request("Unknown status filter.")
    return jsonify({"ok": True, "data": rows})


@bp.get("/<int:packet_id>")
@require_permission("packets.view")
def packet_detail(packet_id: int):
    packet = db_session().get(Packet, packet_id)
    if not packet:
        return jsonify({"ok": False, "error": "not_found", "message": "Packet not found."}), 404
    return jsonify({"ok": True, "data": packet.to_dict()})


@bp.post("/")
@require_permission("packets.view")
def packet_create():
    data = _payload()
    try:
        user_id = int(data["user_id"])
    except (KeyError, TypeError, ValueError):
        return _bad_request("user_id is required.")
    content = data.get("content")
    if not isinstance(content, dict):
        return _bad_request("content must be an object.")
    result = engine_for_request().create_packet(
        actor_id=_actor_id(),
        user_id=user_id,
        packet_type=str(data.get("packet_type") or content.get("packet_type") or ""),
        content=content,
    )
    return _respond(result, status=201)


# ─────────────────────────────────────────────────────────────────────────────
# Content edits
# ─────────────────────────────────────────────────────────────────────────────


@bp.post("/<int:packet_id>/content")
@require_permission("packets.view")
def packet_update_content(packet_id: int):
    data = _payload()
    expected = _expected_version(data)
    updates = data.get("updates")
    if expected is None or not isinstance(updates, dict):
        return _bad_request("expected_version and updates are required.")
    result = engine_for_request().update_content(packet_id, updates, actor_id=_actor_id(), expected_version=expected)
    return _respond(result)


@bp.get("/<int:packet_id>/exercises")
@require_permission("packets.view")
def packet_exercises(packet_id: int):
    """Exercises available for parameter edits and swaps, addressed by index. Phased packets need ?phase=."""
    packet = db_session().get(Packet, packet_id)
    if not packet:
        return jsonify({"ok": False, "error": "not_found", "message": "Packet not found."}), 404
    try:
        exercises = list_exercises(
            parse_content(packet.packet_type, packet.content),
            phase_index=request.args.get("phase", type=int),
        )
    except ContentShapeMismatch as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"ok": True, "data": [x.model_dump(mode="json") for x in exercises]})


@bp.post("/<int:packet_id>/exercises/<int:index>")
@require_permission("packets.view")
def packet_update_exercise(packet_id: int, index: int):
    data = _payload()
    expected = _expected_version(data)
    updates = data.get("updates")
    if expected is None or not isinstance(updates, dict):
        return _bad_request("expected_version and updates are required.")
    result = engine_for_request().update_exercise_parameter(
        packet_id,
        index,
        updates,
        actor_id=_actor_id(),
        expected_version=expected,
        phase_index=request.args.get("phase", type=int),
    )
    return _respond(result)


@bp.post("/<int:packet_id>/exercises/<int:index>/swap")
@require_permission("packets.view")
def packet_swap_exercise(packet_id: int, index: int):
    data = _payload()
    expected = _expected_version(data)
    replacement = data.get("exercise")
    if expected is None or not isinstance(replacement, dict):
        return _bad_request("expected_version and exercise are required.")
    result = engine_for_request().swap_exercise(
        packet_id,
        index,
        replacement,
        actor_id=_actor_id(),
        expected_version=expected,
        phase_index=request.args.get("phase", type=int),
    )
    return _respond(result)


@bp.post("/<int:packet_id>/nutrition/<int:index>")
@require_permission("packets.view")
def packet_update_nutrition(packet_id: int, index: int):
    data = _payload()
    expected = _expected_version(data)
    updates = data.get("updates")
    if expected is None or not isinstance(updates, dict):
        return _bad_request("expected_version and updates are required.")
    result = engine_for_request().update_nutrition_item(
        packet_id, index, updates, actor_id=_actor_id(), expected_version=expected
    )
    return _respond(result)


@bp.post("/<int:packet_id>/coach-notes")
@require_permission("packets.view")
def packet_coach_notes(packet_id: int):
    data = _payload()
    expected = _expected_version(data)
    if expected is None:
        return _bad_request("expected_version is required.")
    notes = str(data.get("notes") or "")
    result = engine_for_request().add_coach_notes(packet_id, notes, actor_id=_actor_id(), expected_version=expected)
    return _respond(result)


# ─────────────────────────────────────────────────────────────────────────────
# Status transitions
# ─────────────────────────────────────────────────────────────────────────────


@bp.post("/<int:packet_id>/status/<action>")
@require_permission("packets.view")
def packet_change_status(packet_id: int, action: str):
    data = _payload()
    expected = _expected_version(data)
    if expected is None:
        return _bad_request("expected_version is required.")
    engine = engine_for_request()
    handlers = {"publish": engine.publish, "unpublish": engine.unpublish, "archive": engine.archive}
    handler = handlers.get(action)
    if handler is None:
        return _bad_request(f"Unknown action {action!r}.")
    reason = _reason(data)
    return _respond(handler(packet_id, actor_id=_actor_id(), expected_version=expected, reason=reason))


# ─────────────────────────────────────────────────────────────────────────────
# Versions / rendering
# ─────────────────────────────────────────────────────────────────────────────


@bp.get("/<int:packet_id>/versions")
@require_permission("packets.view")
def packet_versions(packet_id: int):
    return _respond(engine_for_request().list_versions(packet_id, actor_id=_actor_id()))


@bp.post("/<int:packet_id>/versions/<int:version>/restore")
@require_permission("packets.view")
def packet_restore(packet_id: int, version: int):
    data = _payload()
    expected = _expected_version(data)
    if expected is None:
        return _bad_request("expected_version is required.")
    result = engine_for_request().restore_version(packet_id, version, actor_id=_actor_id(), expected_version=expected)
    return _respond(result, status=201)


@bp.post("/<int:packet_id>/render")
@require_permission("packets.view")
def packet_render(packet_id: int):
    return _respond(engine_for_request().regenerate_artifact(packet_id, actor_id=_actor_id()))


@bp.post("/<int:packet_id>/artifact/clear")
@require_permission("packets.view")
def packet_clear_artifact(packet_id: int):
    result = engine_for_request().clear_artifact(packet_id, actor_id=_actor_id(), reason=_reason(_payload()))
    return _respond(result)
