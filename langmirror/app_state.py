"""
app_state.py - the service graph shared by the Flask app and the scheduler.

create_app() stores one Services instance in app.extensions["langmirror"];
blueprints fetch it with get_services(). Nothing here is module-global.
"""
from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from langmirror.clients.adapters import HostPlatform
from langmirror.core.debug_log import DebugLog
from langmirror.db.config_store import ConfigurationStore
from langmirror.scheduler import Scheduler
from langmirror.services.library_access import LibraryAccessService
from langmirror.services.mirror import MirrorService
from langmirror.services.user_events import UserEventHandlers
from langmirror.services.user_language import UserLanguageService

EXTENSION_KEY = "langmirror"


@dataclass
class Services:
    store: ConfigurationStore
    host: HostPlatform
    debug_log: DebugLog
    languages: UserLanguageService
    mirrors: MirrorService
    access: LibraryAccessService
    events: UserEventHandlers
    scheduler: Scheduler


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
