"""
tests/conftest.py - shared fixtures.

FakeHost implements the HostPlatform surface in memory and records every
mutating call in .mutations so tests can assert "no host writes".
"""
import pytest

from langmirror.clients.adapters import HostPlatform, HostUser, Library
from langmirror.clients.jellyfin_client import HostApiError
from langmirror.core.debug_log import DebugLog
from langmirror.db.config_store import ConfigurationStore
from langmirror.models import PluginConfiguration


class FakeHost(HostPlatform):
    version = "10.9.11"

    def __init__(self):
        self.libraries: dict[str, Library] = {}
        self.users: list[HostUser] = []
        self.permissions: dict[str, set] = {}
        self.preferences: dict[str, tuple] = {}
        self.mutations: list[tuple] = []
        self.library_options: dict[str, tuple] = {}
        self.fail_create: set[str] = set()
        self.fail_remove: set[str] = set()
        self.fail_permissions_for: set[str] = set()
        self.on_create = None
        self._next_id = 1

    # --- setup helpers ---

    def add_library(self, library_id, name, paths=(), collection_type="movies"):
        self.libraries[library_id] = Library(library_id, name, list(paths), collection_type)
        return self.libraries[library_id]

    def add_user(self, user_id, name, permissions=()):
        self.users.append(HostUser(user_id, name))
        self.permissions[user_id] = set(permissions)

    # --- HostPlatform ---

    def list_libraries(self):
        return list(self.libraries.values())

    def create_library(self, name, paths, collection_type=None, metadata_language=None, metadata_country=None):
        self.mutations.append(("create_library", name, tuple(paths)))
        if name in self.fail_create:
            raise HostApiError(f"create {name} failed")
        library_id = f"created{self._next_id}"
        self._next_id += 1
        self.libraries[library_id] = Library(library_id, name, list(paths), collection_type)
        self.library_options[library_id] = (metadata_language, metadata_country)
        if self.on_create is not None:
            self.on_create(library_id)
        return library_id

    def remove_library(self, library_id):
        self.mutations.append(("remove_library", library_id))
        if library_id in self.fail_remove:
            raise HostApiError(f"remove {library_id} failed")
        self.libraries.pop(library_id, None)

    def list_users(self):
        return list(self.users)

    def get_user_library_permissions(self, user_id):
        if user_id in self.fail_permissions_for:
            raise HostApiError(f"user {user_id} unreachable")
        return set(self.permissions.get(user_id, set()))

    def set_user_library_permissions(self, user_id, library_ids):
        self.mutations.append(("set_permissions", user_id, frozenset(library_ids)))
        self.permissions[user_id] = set(library_ids)

    def update_user_language_preferences(self, user_id, audio, subtitle):
        self.mutations.append(("language_preferences", user_id, audio, subtitle))
        self.preferences[user_id] = (audio, subtitle)


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def store(tmp_path):
    s = ConfigurationStore(str(tmp_path / "db" / "langmirror.db"))
    s.initialize(PluginConfiguration())
    return s


@pytest.fixture
def debug_log():
    return DebugLog(maxlen=100)
