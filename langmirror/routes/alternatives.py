import logging
from dataclasses import asdict

from flask import Blueprint, jsonify, request

from langmirror.app_state import get_services
from langmirror.clients.jellyfin_client import HostApiError

logger = logging.getLogger(__name__)

alternatives_bp = Blueprint("alternatives", __name__)


@alternatives_bp.route("/api/alternatives", methods=["GET"])
def alternatives_list():
    alternatives = get_services().mirrors.list_alternatives()
    return jsonify({"status": "ok", "alternatives": [asdict(a) for a in alternatives]})


@alternatives_bp.route("/api/alternatives", methods=["POST"])
def alternatives_create():
    data = request.get_json(silent=True) or {}
    try:
        alt = get_services().mirrors.create_alternative(
            name=data.get("name", ""),
            language_code=data.get("language_code", ""),
            destination_base_path=data.get("destination_base_path", ""),
            metadata_language=data.get("metadata_language"),
            metadata_country=data.get("metadata_country"),
        )
    except ValueError as e:
        return jsonify({"status": "error", "message": str(e)}), 400
    return jsonify({"status": "ok", "alternative": asdict(alt)})


@alternatives_bp.route("/api/alternatives/<alternative_id>", methods=["DELETE"])
def alternatives_delete(alternative_id):
    if not get_services().mirrors.delete_alternative(alternative_id):
        return jsonify({"status": "error", "message": "Language alternative not found"}), 404
    return jsonify({"status": "ok"})


@alternatives_bp.route("/api/alternatives/<alternative_id>/mirrors", methods=["POST"])
def mirrors_add(alternative_id):
    data = request.get_json(silent=True) or {}
    source_library_id = (data.get("source_library_id") or "").strip()
    if not source_library_id:
        return jsonify({"status": "error", "message": "source_library_id is required"}), 400
    try:
        mirror = get_services().mirrors.add_mirror(
            alternative_id, source_library_id, target_library_name=data.get("target_library_name"),
        )
    except ValueError as e:
        return jsonify({"status": "error", "message": str(e)}), 400
    except HostApiError as e:
        logger.warning("add mirror failed: %s", e)
        return jsonify({"status": "error", "message": str(e)}), 502
    return jsonify({"status": "ok", "mirror": asdict(mirror)})


@alternatives_bp.route("/api/alternatives/<alternative_id>/mirrors/<mirror_id>", methods=["DELETE"])
def mirrors_remove(alternative_id, mirror_id):
    if not get_services().mirrors.remove_mirror(alternative_id, mirror_id):
        return jsonify({"status": "error", "message": "Mirror not found"}), 404
    return jsonify({"status": "ok"})


@alternatives_bp.route("/api/libraries", methods=["GET"])
def libraries_list():
    """Server libraries, flagged when they are mirror targets."""
    services = get_services()
    try:
        libraries = services.host.list_libraries()
    except HostApiError as e:
        return jsonify({"status": "error", "message": str(e)}), 502
    targets = services.store.read(
        lambda c: {m.target_library_id for m in c.all_mirrors() if m.target_library_id}
    )
    return jsonify({"status": "ok", "libraries": [
        {**asdict(lib), "is_mirror": lib.id in targets} for lib in libraries
    ]})
