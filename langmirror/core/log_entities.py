"""
log_entities.py - loggable domain entities with two renderings.

render_full()        what goes to stdout / the normal log
render_private(i)    index-anonymized form used in debug reports

str(entity) is the full rendering, so entities can be passed straight to
logger.info("... %s", entity).
"""
from __future__ import annotations

from typing import Any

ENTITY_USER = "user"
ENTITY_LIBRARY = "library"
ENTITY_ALTERNATIVE = "alternative"
ENTITY_MIRROR = "mirror"
ENTITY_PATH = "path"
ENTITY_VALUE = "value"
ENTITY_ERROR = "error"


class LogEntity:
    entity_type = ENTITY_VALUE

    def key(self) -> str:
        """Identity used to give the same entity the same index in a report."""
        return self.render_full()

    def render_full(self) -> str:
        raise NotImplementedError

    def render_private(self, index: int) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render_full()


class LogValue(LogEntity):
    def __init__(self, value: Any):
        self.value = "" if value is None else str(value)

    def render_full(self) -> str:
        return self.value

    def render_private(self, index: int) -> str:
        return self.value


class LogError(LogEntity):
    """An exception. The private rendering keeps only its type."""

    entity_type = ENTITY_ERROR

    def __init__(self, error: BaseException):
        self.error_type = type(error).__name__
        self.message = str(error)

    def render_full(self) -> str:
        return self.message

    def render_private(self, index: int) -> str:
        return f"<{self.error_type}>"


class LogUser(LogEntity):
    entity_type = ENTITY_USER

    def __init__(self, user_id: str, username: str | None = None):
        self.user_id = user_id
        self.username = username or ""

    def key(self) -> str:
        return self.user_id

    def render_full(self) -> str:
        if self.username:
            return f"{self.username} ({self.user_id})"
        return self.user_id

    def render_private(self, index: int) -> str:
        return f"User_{index}"


class LogLibrary(LogEntity):
    entity_type = ENTITY_LIBRARY

    def __init__(self, library_id: str | None, name: str, is_mirror: bool = False):
        self.library_id = library_id or ""
        self.name = name or ""
        self.is_mirror = is_mirror

    def key(self) -> str:
        return self.library_id or self.name

    def render_full(self) -> str:
        return f"{self.name} ({self.library_id})"

    def render_private(self, index: int) -> str:
        return f"Mirror_{index}" if self.is_mirror else f"Library_{index}"


class LogAlternative(LogEntity):
    entity_type = ENTITY_ALTERNATIVE

    def __init__(self, alternative_id: str, name: str, language_code: str):
        self.alternative_id = alternative_id
        self.name = name or ""
        self.language_code = language_code or ""

    def key(self) -> str:
        return self.alternative_id

    def render_full(self) -> str:
        return f"{self.name} ({self.language_code}, {self.alternative_id})"

    def render_private(self, index: int) -> str:
        return f"Alt_{index} ({self.language_code})"


class LogMirror(LogEntity):
    entity_type = ENTITY_MIRROR

    def __init__(self, mirror_id: str, source_name: str, target_name: str):
        self.mirror_id = mirror_id
        self.source_name = source_name or ""
        self.target_name = target_name or ""

    def key(self) -> str:
        return self.mirror_id

    def render_full(self) -> str:
        return f"{self.source_name} -> {self.target_name} ({self.mirror_id})"

    def render_private(self, index: int) -> str:
        return f"Mirror_{index}"


class LogPath(LogEntity):
    entity_type = ENTITY_PATH

    def __init__(self, path: str, path_type: str = "path"):
        self.path = str(path or "")
        self.path_type = path_type or "path"

    def render_full(self) -> str:
        return self.path

    def render_private(self, index: int) -> str:
        return f"[{self.path_type}_{index}]"


def mirror_entity(mirror) -> LogMirror:
    return LogMirror(mirror.id, mirror.source_library_name, mirror.target_library_name)


def alternative_entity(alt) -> LogAlternative:
    return LogAlternative(alt.id, alt.name, alt.language_code)
