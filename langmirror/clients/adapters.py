"""
adapters.py - host platform adapters, one per supported Jellyfin API shape.

  LegacyJellyfinAdapter   10.8.x: library paths as query params, metadata
                          options in the body, partial policy posts accepted
  ModernJellyfinAdapter   10.9+:  library paths in LibraryOptions.PathInfos,
                          policy posts must carry the provider ids

select_adapter() probes /System/Info/Public once at startup. Services only
see the HostPlatform surface; they never branch on server version.

Jellyfin reports ids in "N" format (no dashes). All ids leaving this module
are normalized that way so set comparisons in the services are exact.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from langmirror.clients.jellyfin_client import HostApiError, JellyfinClient

logger = logging.getLogger(__name__)

_DEFAULT_AUTH_PROVIDER = "Jellyfin.Server.Implementations.Users.DefaultAuthenticationProvider"
_DEFAULT_RESET_PROVIDER = "Jellyfin.Server.Implementations.Users.DefaultPasswordResetProvider"


def norm_id(value) -> str:
    return str(value or "").replace("-", "").lower()


@dataclass
class Library:
    id: str
    name: str
    root_paths: List[str] = field(default_factory=list)
    collection_type: Optional[str] = None


@dataclass
class HostUser:
    id: str
    name: str


class HostPlatform:
    """Operations the core consumes from the media server."""

    version = "unknown"

    def list_libraries(self) -> List[Library]:
        raise NotImplementedError

    def create_library(self, name: str, paths: List[str], collection_type: Optional[str] = None,
                       metadata_language: Optional[str] = None,
                       metadata_country: Optional[str] = None) -> str:
        raise NotImplementedError

    def remove_library(self, library_id: str) -> None:
        raise NotImplementedError

    def list_users(self) -> List[HostUser]:
        raise NotImplementedError

    def get_user_library_permissions(self, user_id: str) -> set[str]:
        raise NotImplementedError

    def set_user_library_permissions(self, user_id: str, library_ids: Iterable[str]) -> None:
        raise NotImplementedError

    def update_user_language_preferences(self, user_id: str, audio: Optional[str],
                                         subtitle: Optional[str]) -> None:
        raise NotImplementedError


class _JellyfinAdapterBase(HostPlatform):
    def __init__(self, client: JellyfinClient, version: str = "unknown"):
        self.client = client
        self.version = version

    # --- libraries ---

    def list_libraries(self) -> List[Library]:
        folders = self.client.get("/Library/VirtualFolders")
        if not isinstance(folders, list):
            raise HostApiError("Unexpected /Library/VirtualFolders payload")
        out = []
        for f in folders:
            if not isinstance(f, dict) or not f.get("ItemId"):
                continue
            out.append(Library(
                id=norm_id(f["ItemId"]),
                name=f.get("Name") or "",
                root_paths=[str(p) for p in (f.get("Locations") or [])],
                collection_type=f.get("CollectionType"),
            ))
        return out

    def _create_library_request(self, name, paths, collection_type, options) -> None:
        raise NotImplementedError

    @staticmethod
    def _metadata_options(metadata_language, metadata_country) -> dict:
        options = {}
        if metadata_language:
            options["PreferredMetadataLanguage"] = metadata_language
        if metadata_country:
            options["MetadataCountryCode"] = metadata_country
        return options

    def create_library(self, name: str, paths: List[str], collection_type: Optional[str] = None,
                       metadata_language: Optional[str] = None,
                       metadata_country: Optional[str] = None) -> str:
        options = self._metadata_options(metadata_language, metadata_country)
        self._create_library_request(name, paths, collection_type, options)
        # The create endpoint returns no body; look the new folder up by name.
        for lib in self.list_libraries():
            if lib.name == name:
                logger.info("Created Jellyfin library '%s' (%s)", name, lib.id)
                return lib.id
        raise HostApiError(f"Library '{name}' was not found after creation")

    def remove_library(self, library_id: str) -> None:
        wanted = norm_id(library_id)
        lib = next((l for l in self.list_libraries() if l.id == wanted), None)
        if lib is None:
            logger.info("Library %s already gone, nothing to remove", library_id)
            return
        self.client.delete("/Library/VirtualFolders",
                           params={"name": lib.name, "refreshLibrary": "false"})
        logger.info("Removed Jellyfin library '%s' (%s)", lib.name, lib.id)

    # --- users ---

    def list_users(self) -> List[HostUser]:
        users = self.client.get("/Users")
        if not isinstance(users, list):
            raise HostApiError("Unexpected /Users payload")
        return [HostUser(id=norm_id(u["Id"]), name=u.get("Name") or "")
                for u in users if isinstance(u, dict) and u.get("Id")]

    def _get_user(self, user_id: str) -> dict:
        user = self.client.get(f"/Users/{user_id}")
        if not isinstance(user, dict):
            raise HostApiError(f"Unexpected /Users/{user_id} payload")
        return user

    def get_user_library_permissions(self, user_id: str) -> set[str]:
        policy = self._get_user(user_id).get("Policy") or {}
        if policy.get("EnableAllFolders"):
            return {lib.id for lib in self.list_libraries()}
        return {norm_id(i) for i in (policy.get("EnabledFolders") or [])}

    def _prepare_policy(self, policy: dict) -> dict:
        return policy

    def set_user_library_permissions(self, user_id: str, library_ids: Iterable[str]) -> None:
        policy = dict(self._get_user(user_id).get("Policy") or {})
        policy["EnableAllFolders"] = False
        policy["EnabledFolders"] = sorted(norm_id(i) for i in library_ids)
        self.client.post(f"/Users/{user_id}/Policy", json=self._prepare_policy(policy))

    def update_user_language_preferences(self, user_id: str, audio: Optional[str],
                                         subtitle: Optional[str]) -> None:
        configuration = dict(self._get_user(user_id).get("Configuration") or {})
        if audio is not None:
            configuration["AudioLanguagePreference"] = audio
        if subtitle is not None:
            configuration["SubtitleLanguagePreference"] = subtitle
        self.client.post(f"/Users/{user_id}/Configuration", json=configuration)


class LegacyJellyfinAdapter(_JellyfinAdapterBase):
    def _create_library_request(self, name, paths, collection_type, options) -> None:
        params = [("name", name), ("refreshLibrary", "true")]
        if collection_type:
            params.append(("collectionType", collection_type))
        params.extend(("paths", p) for p in paths)
        if options:
            self.client.post("/Library/VirtualFolders", params=params, json={"LibraryOptions": options})
        else:
            self.client.post("/Library/VirtualFolders", params=params)


class ModernJellyfinAdapter(_JellyfinAdapterBase):
    def _create_library_request(self, name, paths, collection_type, options) -> None:
        params = {"name": name, "refreshLibrary": "true"}
        if collection_type:
            params["collectionType"] = collection_type
        body = {"LibraryOptions": dict(options, PathInfos=[{"Path": p} for p in paths])}
        self.client.post("/Library/VirtualFolders", params=params, json=body)

    def _prepare_policy(self, policy: dict) -> dict:
        policy.setdefault("AuthenticationProviderId", _DEFAULT_AUTH_PROVIDER)
        policy.setdefault("PasswordResetProviderId", _DEFAULT_RESET_PROVIDER)
        return policy


def parse_version(version: str) -> tuple[int, ...]:
    parts = []
    for piece in str(version or "").split("."):
        match = re.match(r"\d+", piece)
        if not match:
            break
        parts.append(int(match.group()))
    return tuple(parts)


def select_adapter(client: JellyfinClient) -> HostPlatform:
    """Pick the adapter for the connected server. Falls back to the modern shape."""
    try:
        info = client.get("/System/Info/Public") or {}
        version = str(info.get("Version") or "")
    except HostApiError as e:
        logger.warning("Could not probe Jellyfin version (%s); assuming 10.9+", e)
        return ModernJellyfinAdapter(client)

    if parse_version(version) and parse_version(version) < (10, 9):
        logger.info("Jellyfin %s detected, using legacy adapter", version)
        return LegacyJellyfinAdapter(client, version)
    logger.info("Jellyfin %s detected, using modern adapter", version or "(unknown)")
    return ModernJellyfinAdapter(client, version or "unknown")
