"""Source map decoding, indexing, content resolution and composition."""

from .errors import (
    MapError, FormatError, EncodingError, MissingContentError, BrokenChainError, CycleError
)
from .document import MapDocument, SegmentTable, OriginalPosition, GeneratedPosition
from .decoder import decode, find_source_mapping_url, decode_data_url
from .index import SegmentIndex, build
from .content import ContentResolver
from .compose import ChainRegistry, compose, resolve_through
from .loader import ArtifactLoader, GeneratedArtifact

__all__ = [
    'MapError',
    'FormatError',
    'EncodingError',
    'MissingContentError',
    'BrokenChainError',
    'CycleError',
    'MapDocument',
    'SegmentTable',
    'OriginalPosition',
    'GeneratedPosition',
    'decode',
    'find_source_mapping_url',
    'decode_data_url',
    'SegmentIndex',
    'build',
    'ContentResolver',
    'ChainRegistry',
    'compose',
    'resolve_through',
    'ArtifactLoader',
    'GeneratedArtifact',
]
