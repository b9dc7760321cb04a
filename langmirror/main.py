"""
main.py - Flask application factory and service wiring.

All routes return JSON with a 'status' field.
Never log secret values.
"""
import logging

from flask import Flask

from langmirror import config
from langmirror.app_state import EXTENSION_KEY, Services
from langmirror.clients.adapters import select_adapter
from langmirror.clients.directory import DirectoryClient, NullDirectoryClient, load_static_directory
from langmirror.clients.jellyfin_client import JellyfinClient
from langmirror.core.debug_log import DebugLog
from langmirror.db.config_store import ConfigurationStore
from langmirror.models import PluginConfiguration
from langmirror.routes.alternatives import alternatives_bp
from langmirror.routes.ldap import ldap_bp
from langmirror.routes.settings import settings_bp
from langmirror.routes.sync import sync_bp
from langmirror.routes.users import users_bp
from langmirror.scheduler import Scheduler
from langmirror.services.library_access import LibraryAccessService
from langmirror.services.mirror import MirrorService
from langmirror.services.user_events import UserEventHandlers
from langmirror.services.user_language import UserLanguageService

# Configure logging before anything else
logging.basicConfig(
    level=logging.DEBUG if config.FLASK_DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _build_directory() -> DirectoryClient:
    if not config.DIRECTORY_GROUPS_FILE:
        return NullDirectoryClient()
    try:
        return load_static_directory(config.DIRECTORY_GROUPS_FILE)
    except (OSError, ValueError) as e:
        logger.warning("Could not load DIRECTORY_GROUPS_FILE (%s); LDAP lookups disabled", e)
        return NullDirectoryClient()


def build_services(store=None, host=None, directory=None) -> Services:
    """Wire the service graph. Tests pass their own store/host/directory."""
    debug_log = DebugLog(maxlen=config.DEBUG_BUFFER_SIZE)

    if store is None:
        store = ConfigurationStore(config.CONFIG_DB)
    store.initialize(PluginConfiguration())

    if host is None:
        config.validate_jellyfin()
        client = JellyfinClient(config.JELLYFIN_URL, config.JELLYFIN_API_KEY, timeout=config.HTTP_TIMEOUT)
        host = select_adapter(client)

    languages = UserLanguageService(store, directory or _build_directory(), debug_log)
    mirrors = MirrorService(store, host, debug_log,
                            media_path_in_jellyfin=config.MEDIA_PATH_IN_JELLYFIN,
                            media_path_on_host=config.MEDIA_PATH_ON_HOST)
    access = LibraryAccessService(store, host, debug_log)
    events = UserEventHandlers(languages, access, debug_log)
    scheduler = Scheduler(store, host, mirrors, languages, access, debug_log,
                          tick_seconds=config.SCHEDULER_TICK_SECONDS,
                          enabled=config.SCHEDULER_ENABLED)
    return Services(store=store, host=host, debug_log=debug_log, languages=languages,
                    mirrors=mirrors, access=access, events=events, scheduler=scheduler)


def create_app(services: Services | None = None, start_scheduler: bool = True) -> Flask:
    app = Flask(__name__)

    # --- Log config summary (redacted) ---
    config.log_config_summary()

    if services is None:
        services = build_services()
    app.extensions[EXTENSION_KEY] = services

    app.register_blueprint(alternatives_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(ldap_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(sync_bp)

    if start_scheduler:
        services.scheduler.start()
    logger.info("langmirror started on %s:%d (Jellyfin adapter %s)",
                config.FLASK_HOST, config.FLASK_PORT, getattr(services.host, "version", "unknown"))
    return app


def main():
    app = create_app()
    app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=config.FLASK_DEBUG, use_reloader=False)


if __name__ == "__main__":
    main()
