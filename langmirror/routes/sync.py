import logging
import threading

from flask import Blueprint, jsonify, request

from langmirror.app_state import get_services
from langmirror.clients.adapters import norm_id

logger = logging.getLogger(__name__)

sync_bp = Blueprint("sync", __name__)


def _in_background(target, *args, name: str):
    t = threading.Thread(target=target, args=args, daemon=True, name=name)
    t.start()
    return t


def _safe_event(handler, *args):
    try:
        handler(*args)
    except Exception:
        logger.exception("User event handler %s failed", getattr(handler, "__name__", handler))


@sync_bp.route("/api/sync/status", methods=["GET"])
def sync_status():
    return jsonify({"status": "ok", **get_services().scheduler.get_status()})


@sync_bp.route("/api/sync/run-now", methods=["POST"])
def sync_run_now():
    scheduler = get_services().scheduler
    if scheduler.get_status()["is_running"]:
        return jsonify({"status": "error", "message": "A sync cycle is already running"}), 409
    data = request.get_json(silent=True) or {}
    mirrors = bool(data.get("mirrors", True))
    users = bool(data.get("users", True))
    # Run in background so the request returns immediately; client polls /status
    t = threading.Thread(
        target=scheduler.run_cycle,
        kwargs={"mirrors": mirrors, "users": users},
        daemon=True,
        name="langmirror-manual-run",
    )
    t.start()
    return jsonify({"status": "ok", "message": "cycle_started", "mirrors": mirrors, "users": users})


# Jellyfin webhook plugin sends UserId / NotificationUsername
@sync_bp.route("/api/events/user-created", methods=["POST"])
def event_user_created():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id") or data.get("UserId")
    username = data.get("username") or data.get("NotificationUsername") or data.get("Username")
    if not user_id:
        return jsonify({"status": "error", "message": "user_id is required"}), 400
    _in_background(_safe_event, get_services().events.on_user_created, norm_id(user_id), username,
                   name="langmirror-user-created")
    return jsonify({"status": "ok", "message": "accepted"})


@sync_bp.route("/api/events/user-deleted", methods=["POST"])
def event_user_deleted():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id") or data.get("UserId")
    if not user_id:
        return jsonify({"status": "error", "message": "user_id is required"}), 400
    _in_background(_safe_event, get_services().events.on_user_deleted, norm_id(user_id),
                   name="langmirror-user-deleted")
    return jsonify({"status": "ok", "message": "accepted"})


@sync_bp.route("/api/debug/report", methods=["GET"])
def debug_report():
    private = request.args.get("private", "true").lower() not in ("0", "false", "no")
    entries = get_services().debug_log.report(private=private)
    return jsonify({"status": "ok", "private": private, "entries": entries})
