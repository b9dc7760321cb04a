import logging

from flask import Blueprint, jsonify, request

from langmirror import config
from langmirror.app_state import get_services
from langmirror.models import PluginConfiguration

logger = logging.getLogger(__name__)

settings_bp = Blueprint("settings", __name__)

_BOOL_KEYS = {
    "auto_manage_new_users",
    "enable_ldap_integration",
    "sync_user_audio_language",
    "sync_user_subtitle_language",
}
_INTERVAL_KEYS = {"mirror_sync_interval_hours", "user_sync_interval_hours"}


def _settings_dict(c: PluginConfiguration) -> dict:
    return {
        "default_language_alternative_id": c.default_language_alternative_id,
        "auto_manage_new_users": c.auto_manage_new_users,
        "enable_ldap_integration": c.enable_ldap_integration,
        "mirror_sync_interval_hours": c.mirror_sync_interval_hours,
        "user_sync_interval_hours": c.user_sync_interval_hours,
        "sync_user_audio_language": c.sync_user_audio_language,
        "sync_user_subtitle_language": c.sync_user_subtitle_language,
        "config_version": c.config_version,
    }


@settings_bp.route("/api/settings", methods=["GET"])
def settings_get():
    services = get_services()
    # Non-secret settings only; never return the API key
    return jsonify({
        "status": "ok",
        "settings": services.store.read(_settings_dict),
        "jellyfin_url": config.JELLYFIN_URL,
        "jellyfin_configured": bool(config.JELLYFIN_URL and config.JELLYFIN_API_KEY),
        "jellyfin_version": getattr(services.host, "version", "unknown"),
    })


@settings_bp.route("/api/settings", methods=["PUT"])
def settings_save():
    data = request.get_json(silent=True) or {}
    updates = {}
    for key, value in data.items():
        if key in _BOOL_KEYS:
            updates[key] = bool(value)
        elif key in _INTERVAL_KEYS:
            try:
                hours = int(value)
            except (TypeError, ValueError):
                return jsonify({"status": "error", "message": f"{key} must be an integer"}), 400
            if hours < 1:
                return jsonify({"status": "error", "message": f"{key} must be at least 1"}), 400
            updates[key] = hours
        elif key == "default_language_alternative_id":
            updates[key] = value or None

    def _mutate(c: PluginConfiguration) -> bool:
        default_id = updates.get("default_language_alternative_id")
        if default_id and c.find_alternative(default_id) is None:
            raise ValueError("Language alternative not found")
        for key, value in updates.items():
            setattr(c, key, value)
        return bool(updates)

    services = get_services()
    try:
        services.store.update_if(_mutate)
    except ValueError as e:
        return jsonify({"status": "error", "message": str(e)}), 400
    if updates:
        logger.info("Settings updated: %s", ", ".join(sorted(updates)))
    return jsonify({"status": "ok", "settings": services.store.read(_settings_dict)})


@settings_bp.route("/api/settings/test-jellyfin", methods=["POST"])
def settings_test_jellyfin():
    client = getattr(get_services().host, "client", None)
    if client is None:
        return jsonify({"connected": False, "message": "No Jellyfin client configured"})
    result = client.test_connection()
    ok = result.get("status") == "ok"
    msg = result.get("server_name") if ok else result.get("message", "Connection failed")
    return jsonify({"connected": ok, "message": msg, "version": result.get("version")})
