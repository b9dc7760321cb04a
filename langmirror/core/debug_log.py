"""
debug_log.py - log sink that also keeps a bounded buffer for debug reports.

    debug_log.log(logger, logging.INFO, "Assigned %s to %s", alt_entity, user_entity)

writes the normal log line (full renderings) and stores the event. report()
renders the buffered events with index-anonymized entities, so a report can
be shared without user names, library names or paths in it. Exceptions are
reduced to their type.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone

from langmirror.core.log_entities import LogEntity, LogError, LogValue


def _as_entity(value) -> LogEntity:
    if isinstance(value, LogEntity):
        return value
    if isinstance(value, BaseException):
        return LogError(value)
    return LogValue(value)


class DebugLog:
    def __init__(self, maxlen: int = 500):
        self._entries: deque = deque(maxlen=maxlen)
        self._mutex = threading.Lock()

    def log(self, logger: logging.Logger, level: int, template: str, *args, exc_info=None):
        logger.log(level, template, *args, exc_info=exc_info)
        if self._entries.maxlen == 0:
            return
        entities = tuple(_as_entity(a) for a in args)
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(level),
            "logger": logger.name,
            "template": template,
            "entities": entities,
            "exception": LogError(exc_info) if isinstance(exc_info, BaseException) else None,
        }
        with self._mutex:
            self._entries.append(entry)

    def debug(self, logger, template, *args):
        self.log(logger, logging.DEBUG, template, *args)

    def info(self, logger, template, *args):
        self.log(logger, logging.INFO, template, *args)

    def warning(self, logger, template, *args, exc_info=None):
        self.log(logger, logging.WARNING, template, *args, exc_info=exc_info)

    def error(self, logger, template, *args, exc_info=None):
        self.log(logger, logging.ERROR, template, *args, exc_info=exc_info)

    def clear(self):
        with self._mutex:
            self._entries.clear()

    def report(self, private: bool = True) -> list[dict]:
        """Render buffered entries. Same entity -> same index across the report."""
        with self._mutex:
            entries = list(self._entries)

        indexes: dict[tuple[str, str], int] = {}
        counters: dict[str, int] = {}

        def _render(entity: LogEntity) -> str:
            if not private:
                return entity.render_full()
            ident = (entity.entity_type, entity.key())
            if ident not in indexes:
                counters[entity.entity_type] = counters.get(entity.entity_type, 0) + 1
                indexes[ident] = counters[entity.entity_type]
            return entity.render_private(indexes[ident])

        out = []
        for e in entries:
            rendered = tuple(_render(ent) for ent in e["entities"])
            try:
                message = e["template"] % rendered if rendered else e["template"]
            except (TypeError, ValueError):
                message = e["template"]
            out.append({
                "ts": e["ts"],
                "level": e["level"],
                "logger": e["logger"],
                "message": message,
                "exception": None if e["exception"] is None else (
                    e["exception"].render_private(0) if private else e["exception"].render_full()
                ),
            })
        return out
