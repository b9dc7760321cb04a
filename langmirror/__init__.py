"""langmirror - per-language library mirrors and access reconciliation for Jellyfin."""

__version__ = "0.3.0"
