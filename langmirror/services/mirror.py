"""
mirror.py - mirror trees on disk and their libraries on the server.

For each MirroredLibrary the engine keeps

    <alternative.destination_base_path>/<source name>/
        <entry>  -> <source root>/<entry>     (one symlink per top-level entry)

and a Jellyfin library registered at that directory. run_mirror_sync() is the
scheduled pass:

  1. snapshot the configuration once
  2. per mirror: diff links against the source folders, register the
     library if the server has none at the target path, write the id back
  3. source library gone -> mark stale, never delete
  4. retired mirrors (declaration deleted) -> remove tree + server library
  5. a pass with nothing to do performs no filesystem writes and no server
     mutations

Failures are isolated per mirror and recorded in the report; filesystem
errors are retried by the next pass. Cancellation is checked between
mirrors only, so a mirror is never left half-linked by a stop request.

Symlink targets use the server's view of the media paths (what Jellyfin
will resolve); directory listing and writes use the local view. The two
differ only when MEDIA_PATH_IN_JELLYFIN / MEDIA_PATH_ON_HOST are set.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from langmirror.clients.adapters import HostPlatform, Library, norm_id
from langmirror.clients.jellyfin_client import HostApiError
from langmirror.core.debug_log import DebugLog
from langmirror.core.log_entities import (
    LogAlternative,
    LogError,
    LogLibrary,
    LogPath,
    LogValue,
    alternative_entity,
    mirror_entity,
)
from langmirror.db.config_store import (
    ConfigurationStore,
    ConfigurationUnavailable,
    ConfigurationWriteError,
)
from langmirror.models import (
    STATUS_ACTIVE,
    STATUS_CREATING,
    STATUS_PENDING,
    STATUS_STALE,
    LanguageAlternative,
    MirroredLibrary,
    PluginConfiguration,
    RetiredMirror,
    is_valid_language_code,
    utcnow_iso,
)

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class MirrorSyncError(Exception):
    """A single mirror could not be brought in sync."""


@dataclass
class MirrorSyncReport:
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)
    cancelled: bool = False

    def add_error(self, entity_id: str, message: str):
        self.errors.append({"id": entity_id, "error": message})

    def to_dict(self) -> dict:
        return asdict(self)


def safe_dir_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", name or "").strip().strip(".")
    return cleaned or "library"


def translate_path(path: str, from_root: str, to_root: str) -> str:
    """Swap the *from_root* prefix of *path* for *to_root*. Unchanged if not under it."""
    if from_root and to_root and path:
        try:
            normalized_root = os.path.normpath(from_root)
            normalized_path = os.path.normpath(path)
            if os.path.commonpath([normalized_path, normalized_root]) == normalized_root:
                rel = os.path.relpath(normalized_path, normalized_root)
                return os.path.normpath(os.path.join(to_root, rel))
        except ValueError:
            pass
    return path


class MirrorService:
    def __init__(self, store: ConfigurationStore, host: HostPlatform,
                 debug_log: DebugLog | None = None,
                 media_path_in_jellyfin: str = "", media_path_on_host: str = ""):
        self.store = store
        self.host = host
        self.debug_log = debug_log or DebugLog(maxlen=0)
        self.media_path_in_jellyfin = media_path_in_jellyfin
        self.media_path_on_host = media_path_on_host

    # -------------------------
    # Path views
    # -------------------------
    def to_local(self, server_path: str) -> str:
        return translate_path(server_path, self.media_path_in_jellyfin, self.media_path_on_host)

    @staticmethod
    def default_target_path(alt: LanguageAlternative, mirror: MirroredLibrary) -> str:
        return os.path.join(alt.destination_base_path, safe_dir_name(mirror.source_library_name))

    # -------------------------
    # Declarations
    # -------------------------
    def list_alternatives(self) -> List[LanguageAlternative]:
        return self.store.read(lambda c: c.language_alternatives)

    def create_alternative(self, name: str, language_code: str, destination_base_path: str,
                           metadata_language: Optional[str] = None,
                           metadata_country: Optional[str] = None) -> LanguageAlternative:
        name = (name or "").strip()
        language_code = (language_code or "").strip()
        destination_base_path = (destination_base_path or "").strip()
        if not name:
            raise ValueError("Name is required")
        if not language_code:
            raise ValueError("Language code is required")
        if not is_valid_language_code(language_code):
            raise ValueError("Language code must look like 'xx' or 'xx-YY'")
        if not destination_base_path:
            raise ValueError("Destination base path is required")

        alt = LanguageAlternative(
            name=name,
            language_code=language_code,
            destination_base_path=destination_base_path,
            metadata_language=(metadata_language or "").strip(),
            metadata_country=(metadata_country or "").strip(),
        )

        def _mutate(c: PluginConfiguration) -> bool:
            if any(a.name.lower() == name.lower() for a in c.language_alternatives):
                raise ValueError(f"A language alternative named '{name}' already exists")
            wanted = os.path.normpath(destination_base_path)
            if any(os.path.normpath(a.destination_base_path) == wanted for a in c.language_alternatives):
                raise ValueError("Another language alternative already uses this destination path")
            c.language_alternatives.append(alt)
            return True

        if not self.store.update_if(_mutate):
            raise ConfigurationUnavailable("Configuration is not available")
        self.debug_log.info(logger, "Created language alternative %s", alternative_entity(alt))
        return alt

    def delete_alternative(self, alternative_id: str) -> bool:
        """Remove an alternative, retire its mirrors and unassign its users.

        Directory trees and server libraries are torn down by the next sync pass.
        """
        deleted: Dict[str, LogAlternative] = {}

        def _mutate(c: PluginConfiguration) -> bool:
            alt = c.find_alternative(alternative_id)
            if alt is None:
                return False
            for mirror in alt.mirrored_libraries:
                _retire(c, mirror)
            c.language_alternatives = [a for a in c.language_alternatives if a.id != alternative_id]
            for assignment in c.user_language_assignments:
                if assignment.language_alternative_id == alternative_id:
                    assignment.language_alternative_id = None
                    assignment.set_at = utcnow_iso()
            c.ldap_group_mappings = [
                m for m in c.ldap_group_mappings if m.language_alternative_id != alternative_id
            ]
            if c.default_language_alternative_id == alternative_id:
                c.default_language_alternative_id = None
            deleted["alt"] = alternative_entity(alt)
            return True

        if not self.store.update_if(_mutate):
            return False
        self.debug_log.info(logger, "Deleted language alternative %s", deleted["alt"])
        return True

    def add_mirror(self, alternative_id: str, source_library_id: str,
                   target_library_name: Optional[str] = None) -> MirroredLibrary:
        """Declare a mirror of *source_library_id*. Materialized by the next sync pass."""
        source_library_id = norm_id(source_library_id)
        source = next((l for l in self.host.list_libraries() if l.id == source_library_id), None)
        if source is None:
            raise ValueError("Source library not found")

        created: Dict[str, MirroredLibrary] = {}

        def _mutate(c: PluginConfiguration) -> bool:
            alt = c.find_alternative(alternative_id)
            if alt is None:
                raise ValueError("Language alternative not found")
            if alt.find_mirror_for_source(source_library_id) is not None:
                raise ValueError("This library is already mirrored for the alternative")
            if any(m.target_library_id == source_library_id for m in c.all_mirrors()):
                raise ValueError("A mirror library cannot be mirrored again")
            mirror = MirroredLibrary(
                source_library_id=source_library_id,
                source_library_name=source.name,
                target_library_name=(target_library_name or "").strip() or f"{source.name} ({alt.name})",
                collection_type=source.collection_type,
            )
            mirror.target_path = self.default_target_path(alt, mirror)
            wanted = os.path.normpath(mirror.target_path)
            if any(m.target_path and os.path.normpath(m.target_path) == wanted for m in c.all_mirrors()):
                raise ValueError("Another mirror already uses this target folder")
            alt.mirrored_libraries.append(mirror)
            created["mirror"] = mirror
            return True

        if not self.store.update_if(_mutate):
            raise ConfigurationUnavailable("Configuration is not available")
        mirror = created["mirror"]
        self.debug_log.info(logger, "Declared mirror %s", mirror_entity(mirror))
        return mirror

    def remove_mirror(self, alternative_id: str, mirror_id: str) -> bool:
        def _mutate(c: PluginConfiguration) -> bool:
            alt = c.find_alternative(alternative_id)
            mirror = alt.find_mirror(mirror_id) if alt else None
            if mirror is None:
                return False
            _retire(c, mirror)
            alt.mirrored_libraries = [m for m in alt.mirrored_libraries if m.id != mirror_id]
            return True

        removed = self.store.update_if(_mutate)
        if removed:
            self.debug_log.info(logger, "Removed mirror declaration %s", LogValue(mirror_id))
        return removed

    # -------------------------
    # Sync pass
    # -------------------------
    def run_mirror_sync(self, cancel_event: threading.Event | None = None) -> MirrorSyncReport:
        report = MirrorSyncReport()
        config = self.store.read(lambda c: c)

        try:
            libraries = self.host.list_libraries()
        except HostApiError as e:
            self.debug_log.error(logger, "Mirror sync: cannot list libraries: %s", LogError(e))
            report.add_error("host", str(e))
            return report

        libraries_by_id = {lib.id: lib for lib in libraries}
        desired = [(alt, m) for alt in config.language_alternatives for m in alt.mirrored_libraries]
        self.debug_log.info(logger, "Mirror sync: %s mirrors declared, %s retired",
                            LogValue(len(desired)), LogValue(len(config.retired_mirrors)))

        for alt, mirror in desired:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                self.debug_log.info(logger, "Mirror sync cancelled")
                return report
            try:
                outcome = self._sync_mirror(alt, mirror, libraries, libraries_by_id)
            except (OSError, HostApiError, MirrorSyncError, ConfigurationWriteError) as e:
                self.debug_log.error(logger, "Mirror sync failed for %s in %s: %s",
                                     mirror_entity(mirror), alternative_entity(alt), LogError(e))
                report.add_error(mirror.id, str(e))
                try:
                    self._record_error(mirror.id, str(e))
                except ConfigurationWriteError as write_error:
                    self.debug_log.error(logger, "Could not record the error of %s: %s",
                                         mirror_entity(mirror), LogError(write_error))
                continue
            getattr(report, outcome).append(mirror.id)

        live_mirrors = [m for _, m in desired]
        for retired in config.retired_mirrors:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                self.debug_log.info(logger, "Mirror sync cancelled")
                return report
            try:
                self._teardown(retired, live_mirrors)
            except (HostApiError, ConfigurationWriteError) as e:
                self.debug_log.error(logger, "Could not remove retired mirror library %s: %s",
                                     LogLibrary(retired.target_library_id, retired.target_library_name, True),
                                     LogError(e))
                report.add_error(retired.mirror_id, str(e))
                continue
            report.removed.append(retired.mirror_id)

        self.debug_log.info(
            logger, "Mirror sync done: %s created, %s updated, %s unchanged, %s stale, %s removed, %s errors",
            LogValue(len(report.created)), LogValue(len(report.updated)), LogValue(len(report.unchanged)),
            LogValue(len(report.stale)), LogValue(len(report.removed)), LogValue(len(report.errors)),
        )
        return report

    def _sync_mirror(self, alt: LanguageAlternative, mirror: MirroredLibrary,
                     libraries: List[Library], libraries_by_id: Dict[str, Library]) -> str:
        source = libraries_by_id.get(mirror.source_library_id)
        if source is None:
            if mirror.status != STATUS_STALE:
                self._set_status(mirror.id, STATUS_STALE, "Source library no longer exists")
                self.debug_log.warning(logger, "Source library of %s is gone, mirror marked stale",
                                       mirror_entity(mirror))
            return "stale"

        target_path = mirror.target_path or self.default_target_path(alt, mirror)
        local_dir = self.to_local(target_path)
        writes = self.sync_links(source.root_paths, local_dir)

        target_live = mirror.target_library_id is not None and mirror.target_library_id in libraries_by_id
        if target_live:
            if mirror.status != STATUS_ACTIVE or mirror.target_path != target_path or mirror.last_error:
                self._mark_active(mirror.id, mirror.target_library_id, target_path)
            return "updated" if writes else "unchanged"

        # Pending, or the server lost the library: adopt one at the path or create it.
        existing = _library_at_path(libraries, target_path)
        created_here = False
        if existing is not None:
            library_id = existing.id
            self.debug_log.info(logger, "Adopting existing library %s for %s",
                                LogLibrary(existing.id, existing.name, True), mirror_entity(mirror))
        else:
            self._set_status(mirror.id, STATUS_CREATING, None)
            library_id = self.host.create_library(
                mirror.target_library_name or f"{source.name} ({alt.name})",
                [target_path],
                mirror.collection_type or source.collection_type,
                metadata_language=alt.metadata_language or None,
                metadata_country=alt.metadata_country or None,
            )
            created_here = True

        if not self._mark_active(mirror.id, library_id, target_path):
            # Declaration deleted while we were creating it.
            self.debug_log.warning(logger, "Mirror %s was removed during creation, cleaning up",
                                   mirror_entity(mirror))
            self._remove_tree(local_dir)
            if created_here:
                self.host.remove_library(library_id)
            raise MirrorSyncError("Mirror declaration removed during creation")

        self.debug_log.info(logger, "Mirror %s active as %s at %s", mirror_entity(mirror),
                            LogLibrary(library_id, mirror.target_library_name, True),
                            LogPath(target_path, "mirror"))
        return "created"

    # -------------------------
    # Filesystem diff
    # -------------------------
    def sync_links(self, source_roots: List[str], local_dir: str) -> int:
        """Make *local_dir* hold one symlink per top-level entry of the source roots.

        Returns the number of filesystem writes. Entries that are not our
        symlinks (manual additions) are never touched.
        """
        roots = [os.path.normpath(r) for r in source_roots if r]
        if not roots:
            raise MirrorSyncError("Source library has no root folders")

        desired: Dict[str, str] = {}
        for root in roots:
            local_root = self.to_local(root)
            try:
                with os.scandir(local_root) as entries:
                    names = sorted(e.name for e in entries if not e.name.startswith("."))
            except OSError as e:
                raise MirrorSyncError(f"Cannot read source folder {local_root}: {e}") from e
            for name in names:
                if name in desired:
                    logger.debug("Skipping %s in %s: name already linked from another root", name, root)
                    continue
                desired[name] = os.path.join(root, name)

        writes = 0
        if not os.path.isdir(local_dir):
            os.makedirs(local_dir, exist_ok=True)
            writes += 1

        existing: Dict[str, str] = {}
        with os.scandir(local_dir) as entries:
            for entry in entries:
                if entry.is_symlink():
                    existing[entry.name] = os.readlink(entry.path)

        managed_roots = set(roots)

        def _is_ours(link_target: str) -> bool:
            return os.path.dirname(os.path.normpath(link_target)) in managed_roots

        if not desired and any(_is_ours(t) for t in existing.values()):
            # Empty source with links present looks like an unmounted share.
            logger.warning("Source folders for %s are empty, leaving existing links in place", local_dir)
            return writes

        for name, target in desired.items():
            current = existing.get(name)
            if current == target:
                continue
            path = os.path.join(local_dir, name)
            if current is not None:
                if not _is_ours(current):
                    continue
                os.unlink(path)
                writes += 1
            elif os.path.lexists(path):
                continue
            os.symlink(target, path)
            writes += 1

        for name, current in existing.items():
            if name in desired or not _is_ours(current):
                continue
            os.unlink(os.path.join(local_dir, name))
            writes += 1

        if writes:
            logger.debug("Synced links in %s (%d writes)", local_dir, writes)
        return writes

    def _remove_tree(self, local_dir: str) -> None:
        if not local_dir or not os.path.lexists(local_dir):
            return
        try:
            shutil.rmtree(local_dir)
        except OSError as e:
            self.debug_log.warning(logger, "Could not remove mirror directory %s: %s",
                                   LogPath(local_dir, "mirror"), LogError(e))

    def _teardown(self, retired: RetiredMirror, live_mirrors: List[MirroredLibrary]) -> None:
        reused = any(
            (retired.target_library_id and m.target_library_id == retired.target_library_id)
            or (retired.target_path and os.path.normpath(m.target_path) == os.path.normpath(retired.target_path))
            for m in live_mirrors
        )
        if reused:
            self.debug_log.info(logger, "Retired mirror %s is reused by a live mirror, dropping tombstone",
                                LogValue(retired.mirror_id))
        else:
            if retired.target_path:
                self._remove_tree(self.to_local(retired.target_path))
            if retired.target_library_id:
                self.host.remove_library(retired.target_library_id)
            self.debug_log.info(logger, "Retired mirror library %s",
                                LogLibrary(retired.target_library_id, retired.target_library_name, True))

        def _mutate(c: PluginConfiguration) -> bool:
            before = len(c.retired_mirrors)
            c.retired_mirrors = [r for r in c.retired_mirrors if r.mirror_id != retired.mirror_id]
            return len(c.retired_mirrors) != before

        self.store.update_if(_mutate)

    # -------------------------
    # Bookkeeping writes (all conditional on the mirror still existing)
    # -------------------------
    def _set_status(self, mirror_id: str, status: str, error: Optional[str]) -> bool:
        def _mutate(c: PluginConfiguration) -> bool:
            _, mirror = c.find_mirror(mirror_id)
            if mirror is None:
                return False
            mirror.status = status
            mirror.last_error = error
            return True

        return self.store.update_if(_mutate)

    def _mark_active(self, mirror_id: str, library_id: str, target_path: str) -> bool:
        def _mutate(c: PluginConfiguration) -> bool:
            _, mirror = c.find_mirror(mirror_id)
            if mirror is None:
                return False
            mirror.target_library_id = library_id
            mirror.target_path = target_path
            mirror.status = STATUS_ACTIVE
            mirror.last_error = None
            mirror.last_synced_at = utcnow_iso()
            return True

        return self.store.update_if(_mutate)

    def _record_error(self, mirror_id: str, error: str) -> None:
        def _mutate(c: PluginConfiguration) -> bool:
            _, mirror = c.find_mirror(mirror_id)
            if mirror is None or mirror.last_error == error:
                return False
            mirror.last_error = error
            if mirror.status == STATUS_CREATING:
                mirror.status = STATUS_PENDING if mirror.target_library_id is None else STATUS_ACTIVE
            return True

        self.store.update_if(_mutate)


def _retire(config: PluginConfiguration, mirror: MirroredLibrary) -> None:
    """Queue a materialized mirror for teardown by the next sync pass."""
    if mirror.target_library_id is None and not mirror.target_path:
        return
    if any(r.mirror_id == mirror.id for r in config.retired_mirrors):
        return
    config.retired_mirrors.append(RetiredMirror(
        mirror_id=mirror.id,
        target_library_id=mirror.target_library_id,
        target_library_name=mirror.target_library_name,
        target_path=mirror.target_path,
    ))


def _library_at_path(libraries: List[Library], path: str) -> Optional[Library]:
    wanted = os.path.normpath(path)
    for lib in libraries:
        if any(os.path.normpath(p) == wanted for p in lib.root_paths):
            return lib
    return None
