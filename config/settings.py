"""Application-wide settings for DocHarbor.

Constants, default on-disk locations and user settings. Settings come from
``~/.docharbor/config.yaml`` (see ``docharbor config init``) with
environment variables taking precedence. Per-job options (start URL,
budgets, pacing) live in ``pipelines.job_config``.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

APP_NAME = "DocHarbor"
MCP_SERVER_NAME = "docharbor"
VERSION = "0.3.0"
USER_AGENT = f"DocHarborCrawler/{VERSION}"

BASE_DIRECTORY_NAME = ".docharbor"

# Subdirectories under the base directory
DOCS_DIR = "docs"
SWIFT_ORG_DIR = "swift-org"
SWIFT_BOOK_DIR = "swift-book"
PACKAGES_DIR = "packages"

# File names
CONFIG_FILE = "config.yaml"
METADATA_FILE = "metadata.json"
CHECKPOINT_FILE = "checkpoint.json"
PACKAGES_OUTPUT_FILE = "packages-with-stars.json"
SEARCH_DB_FILE = "search.db"

PACKAGE_LIST_URL = "https://raw.githubusercontent.com/SwiftPackageIndex/PackageList/main/packages.json"
GITHUB_API_URL = "https://api.github.com"
SWIFT_EVOLUTION_REPO = "swiftlang/swift-evolution"

# Keys accepted in the config file, with their defaults
FILE_DEFAULTS: Dict[str, Any] = {
    'github_token': None,
    'log_level': 'INFO',
    'user_agent': USER_AGENT,
}

# Environment variable that overrides each file key
ENV_OVERRIDES = {
    'github_token': 'GITHUB_TOKEN',
    'log_level': 'DOCHARBOR_LOG_LEVEL',
    'user_agent': 'DOCHARBOR_USER_AGENT',
}


def base_directory() -> Path:
    """Root of all DocHarbor data: ``$DOCHARBOR_HOME`` or ``~/.docharbor``."""
    override = os.environ.get("DOCHARBOR_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / BASE_DIRECTORY_NAME


def default_directory(name: str) -> Path:
    return base_directory() / name


def default_session_candidates() -> List[Path]:
    """Output directories scanned when looking for a crawl to resume."""
    return [
        default_directory(DOCS_DIR),
        default_directory(SWIFT_ORG_DIR),
        default_directory(SWIFT_BOOK_DIR),
    ]


def default_search_database() -> Path:
    return base_directory() / SEARCH_DB_FILE


def config_file_path() -> Path:
    """``$DOCHARBOR_CONFIG`` or ``config.yaml`` under the base directory."""
    override = os.environ.get("DOCHARBOR_CONFIG")
    if override:
        return Path(override).expanduser()
    return base_directory() / CONFIG_FILE


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read the settings file; a missing file means no overrides.

    Raises:
        ValueError: the file is not valid YAML, is not a mapping, or has
            keys other than those in ``FILE_DEFAULTS``.
    """
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Malformed config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    unknown = sorted(set(data) - set(FILE_DEFAULTS))
    if unknown:
        raise ValueError(f"Unknown keys in config file {path}: {', '.join(unknown)}")
    return data


def default_config_text() -> str:
    """Contents written by ``docharbor config init``."""
    header = (f"# {APP_NAME} settings\n"
              f"# Environment variables ({', '.join(sorted(ENV_OVERRIDES.values()))}) take precedence.\n")
    return header + yaml.safe_dump(FILE_DEFAULTS, sort_keys=True)


class AppSettings(BaseModel):
    """Settings shared by every command."""
    base_directory: Path = Field(default_factory=base_directory, description="Data root")
    github_token: Optional[str] = Field(default=None, description="GitHub API token (raises the rate budget)")
    user_agent: str = Field(default=USER_AGENT, description="User-Agent sent with every request")
    log_level: str = Field(default="INFO", description="Default log level")
    config_path: Optional[Path] = Field(default=None, description="Settings file that was read, if any")

    @classmethod
    def from_env(cls, path: Optional[Path] = None) -> 'AppSettings':
        """Create settings from the config file, then environment variables.

        Raises:
            ValueError: the config file is unreadable or holds invalid values.
        """
        path = path or config_file_path()
        values = dict(FILE_DEFAULTS)
        values.update(load_config_file(path))
        for key, variable in ENV_OVERRIDES.items():
            if os.getenv(variable):
                values[key] = os.getenv(variable)

        return cls(
            base_directory=base_directory(),
            config_path=path if path.exists() else None,
            **values,
        )
