"""Forward and reverse position lookup over a decoded source map."""

from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from .document import (
    GEN_COLUMN, GEN_LINE, NAME, NO_VALUE, ORIG_COLUMN, ORIG_LINE, SOURCE,
    GeneratedPosition, MapDocument, OriginalPosition, Segment,
)


class SegmentIndex:
    """Lookup structures for one MapDocument.

    Forward lookups binary-search the per-line record range of the segment
    table; reverse lookups use a table grouping every non-partial segment by
    its (source index, original line, original column) triple.
    """

    def __init__(self, doc: MapDocument):
        self.doc = doc
        self.table = doc.segments.freeze()
        self._reverse: Dict[Tuple[int, int, int], List[GeneratedPosition]] = defaultdict(list)
        self._source_ids: Dict[str, int] = {}

        for i, source in enumerate(doc.sources):
            # Duplicated sources resolve to their first entry
            self._source_ids.setdefault(source, i)

        for i in range(len(self.table)):
            source = self.table.field(i, SOURCE)
            if source == NO_VALUE:
                continue
            key = (source, self.table.field(i, ORIG_LINE), self.table.field(i, ORIG_COLUMN))
            self._reverse[key].append(
                GeneratedPosition(self.table.field(i, GEN_LINE), self.table.field(i, GEN_COLUMN))
            )

    def _find(self, line: int, column: int) -> Optional[int]:
        """Record index of the last segment on ``line`` with column <= ``column``."""
        lo, hi = self.table.line_range(line)
        if lo == hi or column < 0:
            return None

        # Binary search for the first segment past the column
        start = lo
        while lo < hi:
            mid = (lo + hi) // 2
            if self.table.field(mid, GEN_COLUMN) <= column:
                lo = mid + 1
            else:
                hi = mid
        if lo == start:
            return None
        return lo - 1

    def segment_at(self, line: int, column: int) -> Optional[Segment]:
        """The segment covering a generated position, partial ones included."""
        found = self._find(line, column)
        return None if found is None else self.table.segment(found)

    def original_position_for(self, line: int, column: int) -> Optional[OriginalPosition]:
        found = self._find(line, column)
        if found is None:
            return None
        source = self.table.field(found, SOURCE)
        if source == NO_VALUE:
            return None

        name_index = self.table.field(found, NAME)
        return OriginalPosition(
            source=self.doc.sources[source],
            source_index=source,
            line=self.table.field(found, ORIG_LINE),
            column=self.table.field(found, ORIG_COLUMN),
            name=None if name_index == NO_VALUE else self.doc.names[name_index],
        )

    def all_generated_positions_for(self, source, line: int, column: int) -> List[GeneratedPosition]:
        """Every generated position whose segment maps exactly to the query.

        ``source`` is either a source string as written in the map or its
        integer index.
        """
        if isinstance(source, int):
            source_index = source
        else:
            source_index = self._source_ids.get(source)
            if source_index is None:
                return []
        return sorted(self._reverse.get((source_index, line, column), []))

    def mapped_positions(self) -> List[Tuple[GeneratedPosition, OriginalPosition]]:
        """All non-partial segments as (generated, original) pairs."""
        pairs = []
        for i in range(len(self.table)):
            generated = GeneratedPosition(self.table.field(i, GEN_LINE), self.table.field(i, GEN_COLUMN))
            original = self.original_position_for(*generated)
            if original is not None and self._find(*generated) == i:
                pairs.append((generated, original))
        return pairs


def build(doc: MapDocument) -> SegmentIndex:
    return SegmentIndex(doc)
