"""
scheduler.py - background sync cycle runner.

Threading-based: one daemon thread wakes every SCHEDULER_TICK_SECONDS and
runs whatever is due. The is_running flag guards against overlapping cycles
(scheduled vs. "run now").

Cycle:
  1. Mirror sync (when the mirror interval elapsed, or forced)
  2. User pass: prune assignments of users gone from the server, resolve
     each user's language, reconcile library access

Mirror sync always completes before access reconciliation so newly active
mirrors are visible to the user pass. stop() sets the event that also
cancels an in-flight mirror pass between mirrors.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone

from langmirror.clients.adapters import HostPlatform
from langmirror.clients.jellyfin_client import HostApiError
from langmirror.core.debug_log import DebugLog
from langmirror.core.log_entities import LogError, LogValue
from langmirror.db.config_store import ConfigurationStore
from langmirror.services.library_access import LibraryAccessService
from langmirror.services.mirror import MirrorService
from langmirror.services.user_language import UserLanguageService

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(self, store: ConfigurationStore, host: HostPlatform, mirrors: MirrorService,
                 languages: UserLanguageService, access: LibraryAccessService,
                 debug_log: DebugLog | None = None, tick_seconds: int = 300, enabled: bool = True):
        self.store = store
        self.host = host
        self.mirrors = mirrors
        self.languages = languages
        self.access = access
        self.debug_log = debug_log or DebugLog(maxlen=0)
        self.tick_seconds = tick_seconds
        self.enabled = enabled

        self.is_running = False
        self.last_run: datetime | None = None
        self.last_mirror_sync: datetime | None = None
        self.last_user_sync: datetime | None = None
        self.last_result: dict = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def get_status(self) -> dict:
        return {
            "is_running": self.is_running,
            "enabled": self.enabled,
            "tick_seconds": self.tick_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_mirror_sync": self.last_mirror_sync.isoformat() if self.last_mirror_sync else None,
            "last_user_sync": self.last_user_sync.isoformat() if self.last_user_sync else None,
            "last_result": self.last_result,
        }

    def run_cycle(self, mirrors: bool = True, users: bool = True) -> dict:
        """Run one cycle now. Returns a result summary dict."""
        if self.is_running:
            logger.warning("Sync cycle already running, skipping")
            return {"status": "skipped", "reason": "already_running"}

        self.is_running = True
        self.last_run = datetime.now(timezone.utc)
        try:
            result = self._execute_cycle(mirrors=mirrors, users=users)
            self.last_result = result
            return result
        except Exception as e:
            logger.exception("Sync cycle failed: %s", e)
            self.last_result = {"status": "error", "message": str(e)}
            return self.last_result
        finally:
            self.is_running = False

    def _execute_cycle(self, mirrors: bool = True, users: bool = True) -> dict:
        result: dict = {"status": "ok"}

        if mirrors:
            report = self.mirrors.run_mirror_sync(cancel_event=self._stop_event)
            self.last_mirror_sync = datetime.now(timezone.utc)
            result["mirrors"] = report.to_dict()
            if report.cancelled:
                result["status"] = "cancelled"
                return result

        if users:
            result["users"] = self._user_pass()
            self.last_user_sync = datetime.now(timezone.utc)
        return result

    def _user_pass(self) -> dict:
        try:
            host_users = self.host.list_users()
        except HostApiError as e:
            self.debug_log.error(logger, "User pass: cannot list users: %s", LogError(e))
            return {"error": str(e)}

        known = {u.id for u in host_users}
        pruned = 0
        for assignment in self.languages.list_assignments():
            if assignment.user_id not in known and self.languages.remove_user(assignment.user_id):
                pruned += 1

        summary = {"users": len(host_users), "pruned": pruned, "changed": 0, "errors": []}
        for u in host_users:
            if self._stop_event.is_set():
                summary["cancelled"] = True
                break
            before = self.languages.get_assignment(u.id)
            after = self.languages.resolve_user_language(u.id, u.name)
            report = self.access.reconcile_user_access(u.id, u.name)
            if report.changed:
                summary["changed"] += 1
            if report.errors:
                summary["errors"].append(report.to_dict())
            if after is not None and (before is None
                                      or before.language_alternative_id != after.language_alternative_id):
                self.access.sync_user_language_preferences(u.id)

        self.debug_log.info(logger, "User pass done: %s users, %s changed, %s pruned, %s errors",
                            LogValue(summary["users"]), LogValue(summary["changed"]),
                            LogValue(pruned), LogValue(len(summary["errors"])))
        return summary

    def _due(self, last: datetime | None, hours: int, now: datetime) -> bool:
        if last is None:
            return True
        return now - last >= timedelta(hours=max(hours, 1))

    def _should_run(self) -> tuple[bool, bool]:
        """(mirror sync due, user pass due). A mirror sync always brings a user pass."""
        intervals = self.store.read(lambda c: (c.mirror_sync_interval_hours, c.user_sync_interval_hours))
        now = datetime.now(timezone.utc)
        mirror_due = self._due(self.last_mirror_sync, intervals[0], now)
        user_due = mirror_due or self._due(self.last_user_sync, intervals[1], now)
        return mirror_due, user_due

    def _loop(self):
        while not self._stop_event.is_set():
            try:
                mirror_due, user_due = self._should_run()
            except Exception as e:
                logger.warning("Scheduler could not read settings (non-fatal): %s", e)
                mirror_due = user_due = False
            if mirror_due or user_due:
                self.run_cycle(mirrors=mirror_due, users=user_due)
            self._stop_event.wait(timeout=self.tick_seconds)

    def start(self):
        """Start the background scheduler thread."""
        if not self.enabled:
            logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
            return
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="langmirror-scheduler")
        self._thread.start()
        logger.info("Scheduler started (tick=%ds)", self.tick_seconds)

    def stop(self):
        """Signal the background thread to stop; cancels a running mirror pass between mirrors."""
        self._stop_event.set()
        logger.info("Scheduler stop requested")
