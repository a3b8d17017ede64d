"""
Duplicate detection and merge resolution for organizations and contacts.

Scans produce pending duplicate sets; reviewers merge, reject or skip them.
"""

from flask import current_app

from config.dedupe import DedupeSettings, load_settings


def get_settings() -> DedupeSettings:
    """Settings for the running app, read from its config."""
    return load_settings(current_app.config)


__all__ = ["get_settings"]
