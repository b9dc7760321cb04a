"""
user_events.py - reactions to users appearing on or leaving the server.
"""
from __future__ import annotations

import logging
from typing import Optional

from langmirror.core.debug_log import DebugLog
from langmirror.core.log_entities import LogUser, LogValue
from langmirror.services.library_access import AccessReport, LibraryAccessService
from langmirror.services.user_language import UserLanguageService

logger = logging.getLogger(__name__)


class UserEventHandlers:
    def __init__(self, languages: UserLanguageService, access: LibraryAccessService,
                 debug_log: DebugLog | None = None):
        self.languages = languages
        self.access = access
        self.debug_log = debug_log or DebugLog(maxlen=0)

    def on_user_created(self, user_id: str, username: Optional[str] = None) -> Optional[AccessReport]:
        """Resolve the new user's language, then apply their library access."""
        user = LogUser(user_id, username)
        self.debug_log.info(logger, "User created: %s", user)
        assignment = self.languages.resolve_user_language(user_id, username)
        if assignment is None:
            self.debug_log.debug(logger, "No assignment for %s, leaving access untouched", user)
            return None
        report = self.access.reconcile_user_access(user_id, username)
        if report.errors:
            self.debug_log.warning(logger, "Access for new user %s incomplete: %s",
                                   user, LogValue("; ".join(report.errors)))
        self.access.sync_user_language_preferences(user_id)
        return report

    def on_user_deleted(self, user_id: str) -> bool:
        removed = self.languages.remove_user(user_id)
        if not removed:
            logger.debug("User deleted: %s had no assignment", user_id)
        return removed
