"""
Client-facing packet routes. A client only ever sees their own PUBLISHED packets.
"""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, send_file

from app.portal.cache import current_cache
from app.portal.db import db_session
from app.portal.rbac import require_login
from app.portal.storage import StorageError, storage_from_config

from .queries import get_published_packet_for_user, list_published_packets_for_user

bp = Blueprint("packets_client", __name__)


def _not_found():
    return jsonify({"ok": False, "error": "not_found", "message": "Packet not found."}), 404


@bp.get("/")
@require_login
def my_packets():
    rows = list_published_packets_for_user(db_session(), current_cache(), g.current_user.id)
    return jsonify({"ok": True, "data": rows})


@bp.get("/<int:packet_id>")
@require_login
def my_packet(packet_id: int):
    packet = get_published_packet_for_user(db_session(), g.current_user.id, packet_id)
    if packet is None:
        return _not_found()
    return jsonify({"ok": True, "data": packet.to_dict()})


@bp.get("/<int:packet_id>/artifact")
@require_login
def my_packet_artifact(packet_id: int):
    packet = get_published_packet_for_user(db_session(), g.current_user.id, packet_id)
    if packet is None or not packet.rendered_artifact_ref:
        return _not_found()
    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(packet.rendered_artifact_ref)
    except (OSError, StorageError) as e:
        current_app.logger.error("Artifact download failed packet_id=%s: %s", packet_id, e)
        return _not_found()
    filename = packet.rendered_artifact_ref.rsplit("/", 1)[-1]
    return send_file(fobj, mimetype="application/json", as_attachment=True, download_name=filename)
