from dataclasses import asdict

from flask import Blueprint, jsonify, request

from langmirror.app_state import get_services

ldap_bp = Blueprint("ldap", __name__)


@ldap_bp.route("/api/ldap/mappings", methods=["GET"])
def ldap_mappings_list():
    mappings = get_services().languages.list_ldap_mappings()
    return jsonify({"status": "ok", "mappings": [asdict(m) for m in mappings]})


@ldap_bp.route("/api/ldap/mappings", methods=["POST"])
def ldap_mappings_add():
    data = request.get_json(silent=True) or {}
    try:
        priority = int(data.get("priority") or 0)
    except (TypeError, ValueError):
        return jsonify({"status": "error", "message": "priority must be an integer"}), 400
    try:
        mapping = get_services().languages.add_ldap_mapping(
            data.get("ldap_group_dn", ""),
            data.get("language_alternative_id", ""),
            priority=priority,
        )
    except ValueError as e:
        return jsonify({"status": "error", "message": str(e)}), 400
    return jsonify({"status": "ok", "mapping": asdict(mapping)})


@ldap_bp.route("/api/ldap/mappings/<mapping_id>", methods=["DELETE"])
def ldap_mappings_remove(mapping_id):
    if not get_services().languages.remove_ldap_mapping(mapping_id):
        return jsonify({"status": "error", "message": "Mapping not found"}), 404
    return jsonify({"status": "ok"})
