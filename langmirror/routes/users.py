import logging
from dataclasses import asdict

from flask import Blueprint, jsonify, request

from langmirror.app_state import get_services
from langmirror.clients.adapters import norm_id
from langmirror.clients.jellyfin_client import HostApiError

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__)


@users_bp.url_value_preprocessor
def _normalize_user_id(endpoint, values):
    if values and "user_id" in values:
        values["user_id"] = norm_id(values["user_id"])


def _apply(services, user_id: str) -> dict:
    """Reconcile access and push language preferences after an assignment change."""
    report = services.access.reconcile_user_access(user_id)
    services.access.sync_user_language_preferences(user_id)
    return report.to_dict()


@users_bp.route("/api/users", methods=["GET"])
def users_list():
    services = get_services()
    try:
        host_users = services.host.list_users()
    except HostApiError as e:
        return jsonify({"status": "error", "message": str(e)}), 502
    assignments = {a.user_id: a for a in services.languages.list_assignments()}
    users = []
    for u in host_users:
        a = assignments.get(u.id)
        users.append({"id": u.id, "name": u.name, "assignment": asdict(a) if a else None})
    return jsonify({"status": "ok", "users": users})


@users_bp.route("/api/users/<user_id>/language", methods=["GET"])
def user_language_get(user_id):
    a = get_services().languages.get_assignment(user_id)
    return jsonify({"status": "ok", "assignment": asdict(a) if a else None})


@users_bp.route("/api/users/<user_id>/language", methods=["PUT"])
def user_language_set(user_id):
    data = request.get_json(silent=True) or {}
    services = get_services()
    try:
        a = services.languages.assign_language(
            user_id,
            data.get("language_alternative_id") or None,
            is_plugin_managed=bool(data.get("is_plugin_managed", True)),
            set_by=data.get("set_by") or "admin",
        )
    except ValueError as e:
        return jsonify({"status": "error", "message": str(e)}), 400
    return jsonify({"status": "ok", "assignment": asdict(a), "access": _apply(services, user_id)})


@users_bp.route("/api/users/<user_id>/language/manual", methods=["DELETE"])
def user_language_clear_manual(user_id):
    """Hand the user back to automatic resolution."""
    services = get_services()
    if not services.languages.clear_manual(user_id):
        return jsonify({"status": "error", "message": "No manual assignment for this user"}), 404
    a = services.languages.resolve_user_language(user_id, request.args.get("username"))
    return jsonify({"status": "ok", "assignment": asdict(a) if a else None,
                    "access": _apply(services, user_id)})


@users_bp.route("/api/users/<user_id>/expected-access", methods=["GET"])
def user_expected_access(user_id):
    try:
        expected = get_services().access.get_expected_library_access(user_id)
    except HostApiError as e:
        return jsonify({"status": "error", "message": str(e)}), 502
    return jsonify({"status": "ok", "library_ids": sorted(expected)})


@users_bp.route("/api/users/<user_id>/reconcile", methods=["POST"])
def user_reconcile(user_id):
    report = get_services().access.reconcile_user_access(user_id)
    status = "error" if report.errors else "ok"
    return jsonify({"status": status, "report": report.to_dict()})
