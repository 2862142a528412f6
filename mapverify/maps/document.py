"""In-memory source map model."""

import os
from array import array
from typing import Iterator, List, NamedTuple, Optional, Tuple

NO_VALUE = -1

# Record layout inside SegmentTable
GEN_LINE = 0
GEN_COLUMN = 1
SOURCE = 2
ORIG_LINE = 3
ORIG_COLUMN = 4
NAME = 5
STRIDE = 6


class OriginalPosition(NamedTuple):
    source: str
    source_index: int
    line: int
    column: int
    name: Optional[str] = None


class GeneratedPosition(NamedTuple):
    line: int
    column: int


class Segment(NamedTuple):
    """Read-only view of one record of a SegmentTable."""
    generated_line: int
    generated_column: int
    source_index: Optional[int]
    original_line: Optional[int]
    original_column: Optional[int]
    name_index: Optional[int]

    @property
    def is_partial(self) -> bool:
        return self.source_index is None


class SegmentTable:
    """Arena of segment records for one document.

    All segments live in one flat integer array with a fixed stride; a
    per-line offset table points at the first record of every generated
    line. Absent fields are stored as NO_VALUE.
    """

    def __init__(self):
        self._records = array("q")
        self._line_starts: List[int] = [0]
        self._frozen = False
        self._needs_sort = False

    def append(self, generated_line: int, generated_column: int,
               source_index: int = NO_VALUE, original_line: int = NO_VALUE,
               original_column: int = NO_VALUE, name_index: int = NO_VALUE) -> None:
        if self._frozen:
            raise RuntimeError("SegmentTable is frozen")
        count = len(self)
        if count:
            base = (count - 1) * STRIDE
            last_line = self._records[base + GEN_LINE]
            if generated_line < last_line:
                raise ValueError("Segments must be appended in generated line order")
            if generated_line == last_line and generated_column < self._records[base + GEN_COLUMN]:
                self._needs_sort = True
        self._records.extend((generated_line, generated_column, source_index,
                              original_line, original_column, name_index))

    def freeze(self, line_count: Optional[int] = None) -> "SegmentTable":
        """Sort out-of-order columns and build the per-line offset table."""
        if self._frozen:
            return self
        if self._needs_sort:
            self._sort_columns()

        last_line = self._records[(len(self) - 1) * STRIDE + GEN_LINE] if len(self) else -1
        total_lines = max(last_line + 1, line_count or 0)
        starts = [0] * (total_lines + 1)
        line = 0
        for i in range(len(self)):
            gen_line = self._records[i * STRIDE + GEN_LINE]
            while line < gen_line:
                line += 1
                starts[line] = i
        for rest in range(line + 1, total_lines + 1):
            starts[rest] = len(self)
        self._line_starts = starts
        self._frozen = True
        return self

    def _sort_columns(self) -> None:
        # Stable sort keeps the relative order of equal columns
        rows = [tuple(self._records[i * STRIDE:(i + 1) * STRIDE]) for i in range(len(self))]
        rows.sort(key=lambda r: (r[GEN_LINE], r[GEN_COLUMN]))
        self._records = array("q", [value for row in rows for value in row])
        self._needs_sort = False

    def __len__(self) -> int:
        return len(self._records) // STRIDE

    @property
    def line_count(self) -> int:
        return len(self._line_starts) - 1

    def line_range(self, line: int) -> Tuple[int, int]:
        """Return the [start, end) record range of a generated line."""
        if not self._frozen:
            self.freeze()
        if line < 0 or line >= self.line_count:
            return 0, 0
        return self._line_starts[line], self._line_starts[line + 1]

    def field(self, index: int, field: int) -> int:
        return self._records[index * STRIDE + field]

    def segment(self, index: int) -> Segment:
        base = index * STRIDE
        raw = self._records[base:base + STRIDE]

        def opt(value):
            return None if value == NO_VALUE else value

        return Segment(raw[GEN_LINE], raw[GEN_COLUMN], opt(raw[SOURCE]),
                       opt(raw[ORIG_LINE]), opt(raw[ORIG_COLUMN]), opt(raw[NAME]))

    def __iter__(self) -> Iterator[Segment]:
        for i in range(len(self)):
            yield self.segment(i)


class MapDocument:
    """A decoded version 3 source map."""

    def __init__(self, sources: List[str], names: List[str], segments: SegmentTable,
                 sources_content: Optional[List[Optional[str]]] = None,
                 file: Optional[str] = None, base_dir: Optional[str] = None,
                 version: int = 3):
        self.version = version
        self.file = file
        self.sources = sources
        self.sources_content = sources_content
        self.names = names
        self.segments = segments
        self.base_dir = base_dir

    def source_path(self, index: int) -> str:
        """Normalized location of ``sources[index]``, joined to base_dir."""
        return normalize_source(self.sources[index], self.base_dir)

    def find_source(self, path: str) -> Optional[int]:
        """Index of the source whose normalized path equals ``path``."""
        target = normalize_source(path)
        for i in range(len(self.sources)):
            if self.source_path(i) == target:
                return i
        return None

    def duplicate_sources(self) -> List[str]:
        seen = set()
        duplicates = []
        for source in self.sources:
            if source in seen and source not in duplicates:
                duplicates.append(source)
            seen.add(source)
        return duplicates

    def __repr__(self) -> str:
        return (f"MapDocument(file={self.file!r}, sources={len(self.sources)}, "
                f"names={len(self.names)}, segments={len(self.segments)})")


def is_url(source: str) -> bool:
    scheme, sep, _ = source.partition("://")
    return bool(sep) and scheme.isalpha() and len(scheme) > 1


def normalize_source(source: str, base_dir: Optional[str] = None) -> str:
    if source.startswith("file://"):
        source = source[len("file://"):]
    elif is_url(source):
        return source
    if base_dir and not os.path.isabs(source):
        source = os.path.join(base_dir, source)
    return os.path.normpath(source)
