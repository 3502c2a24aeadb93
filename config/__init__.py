"""Configuration module for DocHarbor.

Provides constants, default data locations and environment settings.
"""

from .settings import (
    APP_NAME,
    USER_AGENT,
    VERSION,
    AppSettings,
    base_directory,
    config_file_path,
    default_directory,
    default_search_database,
    default_session_candidates
)

__all__ = [
    'APP_NAME',
    'USER_AGENT',
    'VERSION',
    'AppSettings',
    'base_directory',
    'config_file_path',
    'default_directory',
    'default_search_database',
    'default_session_candidates'
]
