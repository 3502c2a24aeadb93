"""Source definition loader for DocHarbor.

Loads and validates the built-in crawl targets from YAML files.
"""

import yaml
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from urllib.parse import urlparse
import logging

from config.settings import default_directory
from pipelines.errors import ConfigurationError

logger = logging.getLogger(__name__)

SOURCE_KINDS = ("crawl", "evolution")


@dataclass
class SourceDefinition:
    """A named documentation target the CLI can crawl."""
    name: str
    kind: str = "crawl"
    display_name: Optional[str] = None
    start_url: Optional[str] = None
    allowed_prefixes: List[str] = field(default_factory=list)
    output_dir: Optional[str] = None
    max_pages: int = 15000
    max_depth: int = 15
    only_accepted: bool = False
    enabled: bool = True

    def __post_init__(self):
        """Validate definition after initialization."""
        if not self.name:
            raise ConfigurationError("Source name cannot be empty")

        if self.kind not in SOURCE_KINDS:
            raise ConfigurationError(f"Invalid source kind for {self.name}: {self.kind}")

        if self.kind == "crawl":
            parsed = urlparse(self.start_url or "")
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ConfigurationError(f"Source {self.name} needs an absolute start_url")

        if self.max_pages < 1 or self.max_depth < 0:
            raise ConfigurationError(f"Invalid budgets for source {self.name}")

        if self.display_name is None:
            self.display_name = self.name
        if self.output_dir is None:
            self.output_dir = self.name

    @property
    def output_directory(self) -> Path:
        """Absolute output directory; relative names resolve under the data root."""
        path = Path(self.output_dir).expanduser()
        return path if path.is_absolute() else default_directory(self.output_dir)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceDefinition':
        """Create SourceDefinition from dictionary."""
        return cls(
            name=data['name'],
            kind=data.get('kind', 'crawl'),
            display_name=data.get('display_name'),
            start_url=data.get('start_url'),
            allowed_prefixes=list(data.get('allowed_prefixes') or []),
            output_dir=data.get('output_dir'),
            max_pages=int(data.get('max_pages', 15000)),
            max_depth=int(data.get('max_depth', 15)),
            only_accepted=bool(data.get('only_accepted', False)),
            enabled=bool(data.get('enabled', True))
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            'name': self.name,
            'kind': self.kind,
            'display_name': self.display_name,
            'output_dir': self.output_dir,
            'max_pages': self.max_pages,
            'max_depth': self.max_depth,
            'enabled': self.enabled
        }

        if self.start_url:
            result['start_url'] = self.start_url
        if self.allowed_prefixes:
            result['allowed_prefixes'] = self.allowed_prefixes
        if self.only_accepted:
            result['only_accepted'] = self.only_accepted

        return result


class SourceLoader:
    """Loads source definitions from YAML files."""

    def __init__(self, sources_dir: Optional[Path] = None):
        """Initialize source loader.

        Args:
            sources_dir: Directory containing source YAML files.
                        Defaults to the directory of this module.
        """
        if sources_dir is None:
            sources_dir = Path(__file__).parent

        self.sources_dir = Path(sources_dir)
        self._cache: Dict[str, SourceDefinition] = {}
        self._last_modified: Dict[str, float] = {}

    def load_source(self, source_name: str) -> SourceDefinition:
        """Load the definition for a specific source.

        Args:
            source_name: Name of the source (without .yaml extension)

        Raises:
            ConfigurationError: unknown source or invalid YAML
        """
        yaml_file = self.sources_dir / f"{source_name}.yaml"

        if not yaml_file.exists():
            raise ConfigurationError(
                f"Unknown source '{source_name}' (available: {', '.join(self.available()) or 'none'})"
            )

        current_mtime = yaml_file.stat().st_mtime
        if (source_name in self._cache and
                self._last_modified.get(source_name, 0) >= current_mtime):
            return self._cache[source_name]

        try:
            with open(yaml_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse {yaml_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Empty or invalid source file: {yaml_file}")

        # The file name is the source's identity
        if data.get('name', source_name) != source_name:
            logger.warning(f"Source name mismatch in {yaml_file}: {data['name']} != {source_name}")
        data['name'] = source_name

        try:
            definition = SourceDefinition.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid source definition in {yaml_file}: {e}") from e

        self._cache[source_name] = definition
        self._last_modified[source_name] = current_mtime
        logger.debug(f"Loaded source definition: {source_name}")
        return definition

    def available(self) -> List[str]:
        if not self.sources_dir.exists():
            return []
        return sorted(p.stem for p in self.sources_dir.glob("*.yaml"))

    def load_all_sources(self) -> Dict[str, SourceDefinition]:
        """Load every source definition, keyed by name."""
        return {name: self.load_source(name) for name in self.available()}

    def get_enabled_sources(self) -> Dict[str, SourceDefinition]:
        """Get all enabled source definitions."""
        return {name: source for name, source in self.load_all_sources().items() if source.enabled}
