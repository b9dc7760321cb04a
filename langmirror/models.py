"""
models.py - dataclass schema for the persisted configuration document.

The whole graph (alternatives, mirrors, assignments, LDAP mappings and
settings) is one document. It is only ever handed out as a deep copy by
db.config_store; nothing here holds a lock or touches storage.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

CONFIG_VERSION = 1

# Mirror lifecycle
STATUS_PENDING = "pending"
STATUS_CREATING = "creating"
STATUS_ACTIVE = "active"
STATUS_STALE = "stale"
STATUS_REMOVED = "removed"

# Assignment sources
SOURCE_MANUAL = "manual"
SOURCE_AUTO = "auto"
SOURCE_LDAP = "ldap"

_LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2,3}(-[A-Z]{2})?$")


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_valid_language_code(code: str) -> bool:
    return bool(code) and bool(_LANGUAGE_CODE_RE.match(code))


def split_language_code(code: str) -> tuple[str, str]:
    """'pt-BR' -> ('pt', 'BR'), 'ja' -> ('ja', '')."""
    if not code:
        return "", ""
    lang, _, country = code.partition("-")
    return lang, country


@dataclass
class MirroredLibrary:
    source_library_id: str
    source_library_name: str
    id: str = field(default_factory=new_id)
    target_library_id: Optional[str] = None
    target_library_name: str = ""
    target_path: str = ""
    collection_type: Optional[str] = None
    status: str = STATUS_PENDING
    last_synced_at: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.target_library_id is None


@dataclass
class LanguageAlternative:
    name: str
    language_code: str
    destination_base_path: str
    id: str = field(default_factory=new_id)
    metadata_language: str = ""
    metadata_country: str = ""
    mirrored_libraries: List[MirroredLibrary] = field(default_factory=list)
    created_at: str = field(default_factory=utcnow_iso)

    def __post_init__(self):
        lang, country = split_language_code(self.language_code)
        if not self.metadata_language:
            self.metadata_language = lang
        if not self.metadata_country:
            self.metadata_country = country

    def find_mirror(self, mirror_id: str) -> Optional[MirroredLibrary]:
        return next((m for m in self.mirrored_libraries if m.id == mirror_id), None)

    def find_mirror_for_source(self, source_library_id: str) -> Optional[MirroredLibrary]:
        return next(
            (m for m in self.mirrored_libraries if m.source_library_id == source_library_id),
            None,
        )


@dataclass
class UserLanguageAssignment:
    user_id: str
    language_alternative_id: Optional[str] = None
    source: str = SOURCE_AUTO
    manually_set: bool = False
    is_plugin_managed: bool = True
    set_at: str = field(default_factory=utcnow_iso)
    set_by: Optional[str] = None


@dataclass
class LdapGroupMapping:
    ldap_group_dn: str
    language_alternative_id: str
    priority: int = 0
    id: str = field(default_factory=new_id)


@dataclass
class RetiredMirror:
    """Tombstone for a materialized mirror whose declaration was deleted."""

    mirror_id: str
    target_library_id: Optional[str]
    target_library_name: str = ""
    target_path: str = ""
    retired_at: str = field(default_factory=utcnow_iso)


@dataclass
class PluginConfiguration:
    config_version: int = CONFIG_VERSION
    language_alternatives: List[LanguageAlternative] = field(default_factory=list)
    user_language_assignments: List[UserLanguageAssignment] = field(default_factory=list)
    ldap_group_mappings: List[LdapGroupMapping] = field(default_factory=list)
    retired_mirrors: List[RetiredMirror] = field(default_factory=list)

    default_language_alternative_id: Optional[str] = None
    auto_manage_new_users: bool = False
    enable_ldap_integration: bool = False
    mirror_sync_interval_hours: int = 6
    user_sync_interval_hours: int = 24
    sync_user_audio_language: bool = False
    sync_user_subtitle_language: bool = False

    def find_alternative(self, alternative_id: Optional[str]) -> Optional[LanguageAlternative]:
        if not alternative_id:
            return None
        return next((a for a in self.language_alternatives if a.id == alternative_id), None)

    def find_assignment(self, user_id: str) -> Optional[UserLanguageAssignment]:
        return next((u for u in self.user_language_assignments if u.user_id == user_id), None)

    def find_mirror(self, mirror_id: str) -> tuple[Optional[LanguageAlternative], Optional[MirroredLibrary]]:
        for alt in self.language_alternatives:
            mirror = alt.find_mirror(mirror_id)
            if mirror is not None:
                return alt, mirror
        return None, None

    def all_mirrors(self) -> List[MirroredLibrary]:
        return [m for a in self.language_alternatives for m in a.mirrored_libraries]


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def config_to_dict(config: PluginConfiguration) -> dict:
    return asdict(config)


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _mirror_from_dict(data: dict) -> MirroredLibrary:
    return MirroredLibrary(
        id=str(data.get("id") or new_id()),
        source_library_id=str(data["source_library_id"]),
        source_library_name=str(data.get("source_library_name") or ""),
        target_library_id=_opt_str(data.get("target_library_id")),
        target_library_name=str(data.get("target_library_name") or ""),
        target_path=str(data.get("target_path") or ""),
        collection_type=_opt_str(data.get("collection_type")),
        status=str(data.get("status") or STATUS_PENDING),
        last_synced_at=_opt_str(data.get("last_synced_at")),
        last_error=_opt_str(data.get("last_error")),
    )


def _alternative_from_dict(data: dict) -> LanguageAlternative:
    raw_mirrors = data.get("mirrored_libraries") or []
    if not isinstance(raw_mirrors, list):
        raw_mirrors = []
    return LanguageAlternative(
        id=str(data.get("id") or new_id()),
        name=str(data["name"]),
        language_code=str(data.get("language_code") or ""),
        destination_base_path=str(data.get("destination_base_path") or ""),
        metadata_language=str(data.get("metadata_language") or ""),
        metadata_country=str(data.get("metadata_country") or ""),
        mirrored_libraries=[_mirror_from_dict(m) for m in raw_mirrors if isinstance(m, dict)],
        created_at=str(data.get("created_at") or utcnow_iso()),
    )


def _assignment_from_dict(data: dict) -> UserLanguageAssignment:
    return UserLanguageAssignment(
        user_id=str(data["user_id"]),
        language_alternative_id=_opt_str(data.get("language_alternative_id")),
        source=str(data.get("source") or SOURCE_AUTO),
        manually_set=bool(data.get("manually_set", False)),
        is_plugin_managed=bool(data.get("is_plugin_managed", True)),
        set_at=str(data.get("set_at") or utcnow_iso()),
        set_by=_opt_str(data.get("set_by")),
    )


def _mapping_from_dict(data: dict) -> LdapGroupMapping:
    return LdapGroupMapping(
        id=str(data.get("id") or new_id()),
        ldap_group_dn=str(data["ldap_group_dn"]),
        language_alternative_id=str(data["language_alternative_id"]),
        priority=_int(data.get("priority"), 0),
    )


def _retired_from_dict(data: dict) -> RetiredMirror:
    return RetiredMirror(
        mirror_id=str(data["mirror_id"]),
        target_library_id=_opt_str(data.get("target_library_id")),
        target_library_name=str(data.get("target_library_name") or ""),
        target_path=str(data.get("target_path") or ""),
        retired_at=str(data.get("retired_at") or utcnow_iso()),
    )


def _list_of_dicts(data: dict, key: str) -> List[dict]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise TypeError(f"{key} must be a list")
    return [item for item in raw if isinstance(item, dict)]


def dict_to_config(data: Dict[str, Any]) -> PluginConfiguration:
    if not isinstance(data, dict) or not data:
        return PluginConfiguration()

    return PluginConfiguration(
        config_version=_int(data.get("config_version"), CONFIG_VERSION),
        language_alternatives=[
            _alternative_from_dict(a) for a in _list_of_dicts(data, "language_alternatives")
        ],
        user_language_assignments=[
            _assignment_from_dict(u) for u in _list_of_dicts(data, "user_language_assignments")
        ],
        ldap_group_mappings=[
            _mapping_from_dict(m) for m in _list_of_dicts(data, "ldap_group_mappings")
        ],
        retired_mirrors=[
            _retired_from_dict(r) for r in _list_of_dicts(data, "retired_mirrors")
        ],
        default_language_alternative_id=_opt_str(data.get("default_language_alternative_id")),
        auto_manage_new_users=bool(data.get("auto_manage_new_users", False)),
        enable_ldap_integration=bool(data.get("enable_ldap_integration", False)),
        mirror_sync_interval_hours=_int(data.get("mirror_sync_interval_hours"), 6),
        user_sync_interval_hours=_int(data.get("user_sync_interval_hours"), 24),
        sync_user_audio_language=bool(data.get("sync_user_audio_language", False)),
        sync_user_subtitle_language=bool(data.get("sync_user_subtitle_language", False)),
    )
