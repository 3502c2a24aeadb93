"""Sources package for DocHarbor.

Provides the built-in crawl target definitions.
"""

from .loader import SourceDefinition, SourceLoader, SOURCE_KINDS

__all__ = [
    'SourceDefinition',
    'SourceLoader',
    'SOURCE_KINDS'
]
