"""Chain composition of source maps across build passes.

When a generated artifact is fed into another build, the outer map points
at the intermediate artifact. Composition rewrites every outer segment
through the map of that artifact so lookups land on the earliest known
original source.
"""

import logging
import os
from typing import Callable, Dict, List, Optional, Tuple

from .content import ContentResolver
from .decoder import decode
from .document import MapDocument, SegmentTable, NO_VALUE
from .errors import BrokenChainError, CycleError, EncodingError, FormatError
from .index import SegmentIndex

logger = logging.getLogger(__name__)

ResolveInner = Callable[[str], Optional[MapDocument]]

# (source path, line, column, name)
Location = Tuple[str, int, int, Optional[str]]


class ChainRegistry:
    """Maps produced artifacts to their documents for one verification run."""

    def __init__(self):
        self._docs: Dict[str, MapDocument] = {}
        self._raw: Dict[str, Tuple[Optional[str], Optional[str]]] = {}

    def track(self, path: str, doc: Optional[MapDocument] = None,
              raw_map: Optional[str] = None, base_dir: Optional[str] = None) -> None:
        """Register ``path`` as a build output with its map.

        Either an already decoded ``doc`` or the ``raw_map`` text may be
        given; raw text is decoded lazily on first resolution. Tracking a path
        with neither means the artifact claims a map that is absent.
        """
        key = os.path.normpath(os.path.abspath(path))
        if doc is not None:
            self._docs[key] = doc
        else:
            self._raw[key] = (raw_map, base_dir if base_dir is not None else os.path.dirname(key))

    def is_tracked(self, path: str) -> bool:
        key = os.path.normpath(os.path.abspath(path))
        return key in self._docs or key in self._raw

    def resolve(self, source_path: str) -> Optional[MapDocument]:
        key = os.path.normpath(os.path.abspath(source_path))
        if key in self._docs:
            return self._docs[key]
        if key not in self._raw:
            return None

        raw_map, base_dir = self._raw[key]
        if raw_map is None:
            raise BrokenChainError(f"Build output {key} has no source map")
        try:
            doc = decode(raw_map, base_dir=base_dir)
        except (FormatError, EncodingError) as e:
            raise BrokenChainError(f"Source map of {key} cannot be decoded: {e}") from e
        self._docs[key] = doc
        del self._raw[key]
        return doc

    __call__ = resolve


class _Composer:

    def __init__(self, resolve_inner: ResolveInner, content: ContentResolver):
        self.resolve_inner = resolve_inner
        self.content = content
        self._done: Dict[int, MapDocument] = {}
        self._stack: List[str] = []

    def inner_for(self, path: str) -> Optional[MapDocument]:
        try:
            return self.resolve_inner(path)
        except (FormatError, EncodingError) as e:
            raise BrokenChainError(f"Source map of {path} cannot be decoded: {e}") from e

    def compose(self, doc: MapDocument) -> MapDocument:
        if id(doc) in self._done:
            return self._done[id(doc)]

        # Per outer source: composed inner document and its index, or None
        inner_layers: List[Optional[Tuple[MapDocument, SegmentIndex]]] = []
        for i in range(len(doc.sources)):
            path = doc.source_path(i)
            inner = self.inner_for(path)
            if inner is None:
                inner_layers.append(None)
                continue
            if path in self._stack:
                raise CycleError(self._stack[self._stack.index(path):] + [path])
            self._stack.append(path)
            try:
                composed_inner = self.compose(inner)
            finally:
                self._stack.pop()
            inner_layers.append((composed_inner, SegmentIndex(composed_inner)))

        out = _DocumentBuilder(self.content)
        table = doc.segments.freeze()
        for segment in table:
            line, column = segment.generated_line, segment.generated_column
            outer_name = None if segment.name_index is None else doc.names[segment.name_index]

            if segment.is_partial:
                out.add_partial(line, column)
                continue

            layer = inner_layers[segment.source_index]
            if layer is None:
                out.add(line, column, doc, segment.source_index,
                        segment.original_line, segment.original_column, outer_name)
                continue

            inner_doc, inner_index = layer
            found = inner_index.original_position_for(segment.original_line, segment.original_column)
            if found is None:
                # The inner map has no attribution here
                out.add_partial(line, column)
                continue
            out.add(line, column, inner_doc, found.source_index, found.line, found.column,
                    found.name if found.name is not None else outer_name)

        composed = out.finish(doc.file, table.line_count)
        logger.debug(f"Composed {doc!r} into {composed!r}")
        self._done[id(doc)] = composed
        return composed


class _DocumentBuilder:

    def __init__(self, content: ContentResolver):
        self.content = content
        self.sources: List[str] = []
        self.sources_content: List[Optional[str]] = []
        self.names: List[str] = []
        self.segments = SegmentTable()
        self._source_ids: Dict[str, int] = {}
        self._name_ids: Dict[str, int] = {}

    def _source_id(self, doc: MapDocument, index: int) -> int:
        path = doc.source_path(index)
        if path not in self._source_ids:
            self._source_ids[path] = len(self.sources)
            self.sources.append(path)
            self.sources_content.append(self.content.try_content_for(doc, index))
        return self._source_ids[path]

    def _name_id(self, name: Optional[str]) -> int:
        if name is None:
            return NO_VALUE
        if name not in self._name_ids:
            self._name_ids[name] = len(self.names)
            self.names.append(name)
        return self._name_ids[name]

    def add_partial(self, line: int, column: int) -> None:
        self.segments.append(line, column)

    def add(self, line: int, column: int, doc: MapDocument, source_index: int,
            original_line: int, original_column: int, name: Optional[str]) -> None:
        self.segments.append(line, column, self._source_id(doc, source_index),
                             original_line, original_column, self._name_id(name))

    def finish(self, file: Optional[str], line_count: int) -> MapDocument:
        return MapDocument(
            sources=self.sources,
            names=self.names,
            segments=self.segments.freeze(line_count),
            sources_content=self.sources_content,
            file=file,
        )


def compose(outer_doc: MapDocument, resolve_inner: ResolveInner,
            content_resolver: Optional[ContentResolver] = None) -> MapDocument:
    """Compose ``outer_doc`` with the maps of its own inputs."""
    return _Composer(resolve_inner, content_resolver or ContentResolver()).compose(outer_doc)


def resolve_through(doc: MapDocument, line: int, column: int, resolve_inner: ResolveInner,
                    indexes: Optional[Dict[int, SegmentIndex]] = None) -> Optional[Location]:
    """Resolve a generated position one layer at a time.

    Returns the location in the earliest layer, or None when any layer has
    no attribution for the position.
    """
    if indexes is None:
        indexes = {}
    seen: List[str] = []
    name = None
    current = doc

    while True:
        index = indexes.get(id(current))
        if index is None:
            index = indexes[id(current)] = SegmentIndex(current)
        found = index.original_position_for(line, column)
        if found is None:
            return None

        if found.name is not None:
            name = found.name
        path = current.source_path(found.source_index)
        try:
            inner = resolve_inner(path)
        except (FormatError, EncodingError) as e:
            raise BrokenChainError(f"Source map of {path} cannot be decoded: {e}") from e
        if inner is None:
            return path, found.line, found.column, name

        if path in seen:
            raise CycleError(seen[seen.index(path):] + [path])
        seen.append(path)
        current, line, column = inner, found.line, found.column


def location_of(doc: MapDocument, index: SegmentIndex, line: int, column: int) -> Optional[Location]:
    """Single-layer lookup in the same shape as resolve_through."""
    found = index.original_position_for(line, column)
    if found is None:
        return None
    return doc.source_path(found.source_index), found.line, found.column, found.name
