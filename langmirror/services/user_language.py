"""
user_language.py - effective language assignment per user.

Resolution order for resolve_user_language():
  1. manually_set assignment -> untouched (no-op)
  2. LDAP group mappings (only when integration is enabled): highest
     priority wins, ties -> earliest mapping
  3. default alternative, when auto-manage is enabled
  4. assignment pointing at a deleted alternative -> cleared to unassigned

The write is a single update_if that re-checks manually_set inside the
store's critical section, so a concurrent manual change always wins.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from langmirror.clients.directory import DirectoryClient, NullDirectoryClient
from langmirror.core.debug_log import DebugLog
from langmirror.core.log_entities import LogError, LogUser, LogValue
from langmirror.db.config_store import ConfigurationStore
from langmirror.models import (
    SOURCE_AUTO,
    SOURCE_LDAP,
    SOURCE_MANUAL,
    LdapGroupMapping,
    PluginConfiguration,
    UserLanguageAssignment,
    utcnow_iso,
)

logger = logging.getLogger(__name__)


def pick_ldap_mapping(mappings: List[LdapGroupMapping], groups: List[str]) -> Optional[LdapGroupMapping]:
    """Highest priority mapping whose DN is in *groups*. Ties -> first inserted."""
    member_of = {g.strip().lower() for g in groups if g}
    best = None
    for m in mappings:
        if m.ldap_group_dn.strip().lower() not in member_of:
            continue
        if best is None or m.priority > best.priority:
            best = m
    return best


class UserLanguageService:
    def __init__(self, store: ConfigurationStore, directory: DirectoryClient | None = None,
                 debug_log: DebugLog | None = None):
        self.store = store
        self.directory = directory or NullDirectoryClient()
        self.debug_log = debug_log or DebugLog(maxlen=0)

    # -------------------------
    # Queries
    # -------------------------
    def get_assignment(self, user_id: str) -> Optional[UserLanguageAssignment]:
        return self.store.read(lambda c: c.find_assignment(user_id))

    def list_assignments(self) -> List[UserLanguageAssignment]:
        return self.store.read(lambda c: c.user_language_assignments)

    # -------------------------
    # Automatic resolution
    # -------------------------
    def _ldap_candidate(self, config: PluginConfiguration, user_id: str,
                        username: Optional[str]) -> Optional[LdapGroupMapping]:
        if not config.enable_ldap_integration:
            return None
        if not config.ldap_group_mappings:
            return None
        if not username:
            logger.debug("LDAP lookup skipped for %s: no username", user_id)
            return None
        try:
            groups = self.directory.list_user_group_memberships(username)
        except Exception as e:
            self.debug_log.warning(
                logger, "LDAP lookup failed for %s, falling back to default: %s",
                LogUser(user_id, username), LogError(e),
            )
            return None
        return pick_ldap_mapping(config.ldap_group_mappings, groups)

    def resolve_user_language(self, user_id: str, username: Optional[str] = None) -> Optional[UserLanguageAssignment]:
        """Compute and persist the automatic assignment. Returns the assignment in force."""
        user = LogUser(user_id, username)
        config = self.store.read(lambda c: c)
        current = config.find_assignment(user_id)

        if current is not None and current.manually_set:
            self.debug_log.debug(logger, "Resolver: %s has a manual assignment, skipping", user)
            return current

        mapping = self._ldap_candidate(config, user_id, username)
        if mapping is not None and config.find_alternative(mapping.language_alternative_id) is not None:
            candidate, source = mapping.language_alternative_id, SOURCE_LDAP
        elif config.auto_manage_new_users:
            candidate, source = config.default_language_alternative_id, SOURCE_AUTO
            if config.find_alternative(candidate) is None:
                candidate = None
        elif current is not None and current.language_alternative_id \
                and config.find_alternative(current.language_alternative_id) is None:
            candidate, source = None, SOURCE_AUTO
        else:
            return current

        if current is not None \
                and current.language_alternative_id == candidate \
                and current.source == source:
            return current

        def _mutate(c: PluginConfiguration) -> bool:
            existing = c.find_assignment(user_id)
            if existing is not None and existing.manually_set:
                return False
            if existing is None:
                c.user_language_assignments.append(UserLanguageAssignment(
                    user_id=user_id,
                    language_alternative_id=candidate,
                    source=source,
                    manually_set=False,
                    is_plugin_managed=True,
                    set_by=source,
                ))
            else:
                existing.language_alternative_id = candidate
                existing.source = source
                existing.set_at = utcnow_iso()
                existing.set_by = source
            return True

        try:
            committed = self.store.update_if(_mutate)
        except Exception as e:
            self.debug_log.error(logger, "Resolver: could not store assignment for %s: %s",
                                 user, LogError(e), exc_info=e)
            return current

        if not committed:
            self.debug_log.debug(logger, "Resolver: assignment for %s changed concurrently, skipped", user)
            return self.get_assignment(user_id)

        self.debug_log.info(logger, "Resolver: %s -> alternative %s (source=%s)",
                            user, LogValue(candidate or "none"), LogValue(source))
        return self.get_assignment(user_id)

    # -------------------------
    # Explicit changes
    # -------------------------
    def assign_language(self, user_id: str, alternative_id: Optional[str],
                        source: str = SOURCE_MANUAL, manually_set: bool = True,
                        is_plugin_managed: bool = True, set_by: Optional[str] = None) -> UserLanguageAssignment:
        """Set an assignment directly. Raises ValueError for an unknown alternative."""

        def _mutate(c: PluginConfiguration) -> bool:
            if alternative_id is not None and c.find_alternative(alternative_id) is None:
                raise ValueError("Language alternative not found")
            existing = c.find_assignment(user_id)
            if existing is None:
                c.user_language_assignments.append(UserLanguageAssignment(
                    user_id=user_id,
                    language_alternative_id=alternative_id,
                    source=source,
                    manually_set=manually_set,
                    is_plugin_managed=is_plugin_managed,
                    set_by=set_by,
                ))
            else:
                existing.language_alternative_id = alternative_id
                existing.source = source
                existing.manually_set = manually_set
                existing.is_plugin_managed = is_plugin_managed
                existing.set_at = utcnow_iso()
                existing.set_by = set_by
            return True

        self.store.update_if(_mutate)
        self.debug_log.info(logger, "Assigned alternative %s to %s (source=%s, manual=%s)",
                            LogValue(alternative_id or "none"), LogUser(user_id),
                            LogValue(source), LogValue(manually_set))
        return self.get_assignment(user_id)

    def clear_manual(self, user_id: str) -> bool:
        """Drop the manual flag so automatic resolution applies again."""

        def _mutate(c: PluginConfiguration) -> bool:
            existing = c.find_assignment(user_id)
            if existing is None or not existing.manually_set:
                return False
            existing.manually_set = False
            existing.source = SOURCE_AUTO
            existing.set_at = utcnow_iso()
            return True

        return self.store.update_if(_mutate)

    def remove_user(self, user_id: str) -> bool:
        def _mutate(c: PluginConfiguration) -> bool:
            before = len(c.user_language_assignments)
            c.user_language_assignments = [u for u in c.user_language_assignments if u.user_id != user_id]
            return len(c.user_language_assignments) != before

        removed = self.store.update_if(_mutate)
        if removed:
            self.debug_log.info(logger, "Removed language assignment for %s", LogUser(user_id))
        return removed

    # -------------------------
    # LDAP group mappings
    # -------------------------
    def list_ldap_mappings(self) -> List[LdapGroupMapping]:
        return self.store.read(lambda c: c.ldap_group_mappings)

    def add_ldap_mapping(self, ldap_group_dn: str, alternative_id: str, priority: int = 0) -> LdapGroupMapping:
        ldap_group_dn = (ldap_group_dn or "").strip()
        if not ldap_group_dn:
            raise ValueError("LDAP group DN is required")
        mapping = LdapGroupMapping(ldap_group_dn=ldap_group_dn,
                                   language_alternative_id=alternative_id,
                                   priority=int(priority))

        def _mutate(c: PluginConfiguration) -> bool:
            if c.find_alternative(alternative_id) is None:
                raise ValueError("Language alternative not found")
            c.ldap_group_mappings.append(mapping)
            return True

        self.store.update_if(_mutate)
        logger.info("Added LDAP mapping %s -> %s (priority %d)", ldap_group_dn, alternative_id, mapping.priority)
        return mapping

    def remove_ldap_mapping(self, mapping_id: str) -> bool:
        def _mutate(c: PluginConfiguration) -> bool:
            before = len(c.ldap_group_mappings)
            c.ldap_group_mappings = [m for m in c.ldap_group_mappings if m.id != mapping_id]
            return len(c.ldap_group_mappings) != before

        return self.store.update_if(_mutate)
