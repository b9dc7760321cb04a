"""
Storage layer. One store, one document:
the configuration document owned by ConfigurationStore.
"""
from langmirror.db.config_store import (
    ConfigurationStore,
    ConfigurationUnavailable,
    ConfigurationWriteError,
)

__all__ = ["ConfigurationStore", "ConfigurationUnavailable", "ConfigurationWriteError"]
