"""
library_access.py - per-user library visibility.

Expected set for a user assigned to alternative A, over live libraries:

  source of an Active mirror (any alternative)   hidden
  A's own Active mirror targets                  visible
  other alternatives' mirror targets             hidden
  everything else                                visible

A mirror is Active once its target library id is recorded and that library
is still registered on the server. Pending mirrors never hide their source,
so a user is not left without the content while the mirror is being built.

reconcile_user_access() installs the expected set with a single permission
update and only when it differs from what the server has.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Set

from langmirror.clients.adapters import HostPlatform
from langmirror.clients.jellyfin_client import HostApiError
from langmirror.core.debug_log import DebugLog
from langmirror.core.log_entities import LogError, LogUser, LogValue
from langmirror.db.config_store import ConfigurationStore, ConfigurationUnavailable
from langmirror.models import PluginConfiguration, split_language_code

logger = logging.getLogger(__name__)


@dataclass
class AccessReport:
    user_id: str
    granted: List[str] = field(default_factory=list)
    revoked: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: Optional[str] = None

    @property
    def changed(self) -> bool:
        return bool(self.granted or self.revoked)

    def to_dict(self) -> dict:
        return asdict(self)


def compute_expected_access(config: PluginConfiguration, live_library_ids: Set[str],
                            alternative_id: Optional[str]) -> Set[str]:
    """Pure part of get_expected_library_access()."""
    if not alternative_id:
        return set()

    hidden_sources: Set[str] = set()
    all_targets: Set[str] = set()
    own_targets: Set[str] = set()
    for alt in config.language_alternatives:
        for m in alt.mirrored_libraries:
            if m.target_library_id:
                all_targets.add(m.target_library_id)
            if m.target_library_id and m.target_library_id in live_library_ids:
                hidden_sources.add(m.source_library_id)
                if alt.id == alternative_id:
                    own_targets.add(m.target_library_id)

    visible = {lib for lib in live_library_ids if lib not in hidden_sources and lib not in all_targets}
    return visible | own_targets


def compute_non_mirror_libraries(config: PluginConfiguration, live_library_ids: Set[str]) -> Set[str]:
    targets = {m.target_library_id for m in config.all_mirrors() if m.target_library_id}
    return {lib for lib in live_library_ids if lib not in targets}


class LibraryAccessService:
    def __init__(self, store: ConfigurationStore, host: HostPlatform, debug_log: DebugLog | None = None):
        self.store = store
        self.host = host
        self.debug_log = debug_log or DebugLog(maxlen=0)

    def _live_library_ids(self) -> Set[str]:
        return {lib.id for lib in self.host.list_libraries()}

    def get_expected_library_access(self, user_id: str) -> Set[str]:
        config = self.store.read(lambda c: c)
        assignment = config.find_assignment(user_id)
        alternative_id = assignment.language_alternative_id if assignment else None
        if not alternative_id:
            return set()
        return compute_expected_access(config, self._live_library_ids(), alternative_id)

    def get_non_mirror_libraries(self) -> Set[str]:
        config = self.store.read(lambda c: c)
        return compute_non_mirror_libraries(config, self._live_library_ids())

    def reconcile_user_access(self, user_id: str, username: Optional[str] = None) -> AccessReport:
        report = AccessReport(user_id=user_id)
        user = LogUser(user_id, username)

        try:
            config = self.store.read(lambda c: c)
        except ConfigurationUnavailable as e:
            report.errors.append(str(e))
            return report

        assignment = config.find_assignment(user_id)
        if assignment is None:
            report.skipped = "no_assignment"
            return report
        if not assignment.is_plugin_managed:
            report.skipped = "not_managed"
            return report

        try:
            live = self._live_library_ids()
            if assignment.language_alternative_id:
                expected = compute_expected_access(config, live, assignment.language_alternative_id)
            else:
                expected = compute_non_mirror_libraries(config, live)
            current = self.host.get_user_library_permissions(user_id)
        except HostApiError as e:
            self.debug_log.error(logger, "Access: cannot read state for %s: %s", user, LogError(e))
            report.errors.append(str(e))
            return report

        report.granted = sorted(expected - current)
        report.revoked = sorted(current - expected)
        if not report.changed:
            self.debug_log.debug(logger, "Access: %s already correct (%s libraries)", user, LogValue(len(expected)))
            return report

        try:
            self.host.set_user_library_permissions(user_id, expected)
        except HostApiError as e:
            self.debug_log.error(logger, "Access: could not update %s: %s", user, LogError(e))
            report.errors.append(str(e))
            return report

        self.debug_log.info(logger, "Access: %s granted %s, revoked %s",
                            user, LogValue(len(report.granted)), LogValue(len(report.revoked)))
        return report

    def reconcile_all_users(self) -> List[AccessReport]:
        try:
            users = self.host.list_users()
        except HostApiError as e:
            self.debug_log.error(logger, "Access: cannot list users: %s", LogError(e))
            return []

        reports = []
        for u in users:
            try:
                reports.append(self.reconcile_user_access(u.id, u.name))
            except Exception as e:
                logger.exception("Access reconciliation crashed for %s", LogUser(u.id, u.name))
                reports.append(AccessReport(user_id=u.id, errors=[str(e)]))
        return reports

    def sync_user_language_preferences(self, user_id: str) -> bool:
        """Push the alternative's base language as audio/subtitle preference. True if a call was made."""
        config = self.store.read(lambda c: c)
        if not (config.sync_user_audio_language or config.sync_user_subtitle_language):
            return False
        assignment = config.find_assignment(user_id)
        alt = config.find_alternative(assignment.language_alternative_id) if assignment else None
        if alt is None:
            return False

        lang, _ = split_language_code(alt.language_code)
        audio = lang if config.sync_user_audio_language else None
        subtitle = lang if config.sync_user_subtitle_language else None
        try:
            self.host.update_user_language_preferences(user_id, audio, subtitle)
        except HostApiError as e:
            self.debug_log.warning(logger, "Could not set language preferences for %s: %s",
                                   LogUser(user_id), LogError(e))
            return False
        self.debug_log.info(logger, "Set language preference %s for %s", LogValue(lang), LogUser(user_id))
        return True
