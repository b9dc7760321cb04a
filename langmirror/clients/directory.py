"""
directory.py - directory-service collaborator (LDAP group memberships).

The resolver only needs one call: list_user_group_memberships(username).
Deployments with a directory wire their own client in main.build_services();
without one, NullDirectoryClient reports the directory as unavailable so the
resolver falls back to the default assignment.
"""
from __future__ import annotations

import json
from typing import List


class DirectoryUnavailable(Exception):
    """The directory could not be queried."""


class DirectoryClient:
    def list_user_group_memberships(self, username: str) -> List[str]:
        raise NotImplementedError


class NullDirectoryClient(DirectoryClient):
    def list_user_group_memberships(self, username: str) -> List[str]:
        raise DirectoryUnavailable("No directory client configured")


class StaticDirectoryClient(DirectoryClient):
    """Memberships from a {username: [group_dn, ...]} mapping."""

    def __init__(self, memberships: dict[str, List[str]]):
        self.memberships = {k.lower(): list(v) for k, v in (memberships or {}).items()}

    def list_user_group_memberships(self, username: str) -> List[str]:
        return list(self.memberships.get((username or "").lower(), []))


def load_static_directory(path: str) -> StaticDirectoryClient:
    """Read a {username: [group_dn, ...]} JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an object of username -> group list")
    return StaticDirectoryClient({str(k): [str(g) for g in (v or [])] for k, v in data.items()})
