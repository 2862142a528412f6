"""Property checks run against generated artifacts and their maps.

Every check records AssertionFailure entries on a CheckReport instead of
raising, so one job surfaces all of its independent problems at once.
Columns are counted in code points; fixtures are ASCII so this matches the
UTF-16 columns written by bundlers.
"""

import json
import re
from typing import Dict, List, Optional, Set, Tuple

from ..maps.compose import Location, ResolveInner, location_of, resolve_through
from ..maps.content import ContentResolver
from ..maps.decoder import strip_source_mapping_url
from ..maps.document import MapDocument, normalize_source
from ..maps.index import SegmentIndex
from ..maps.loader import EMBED_LINKED, GeneratedArtifact

IDENTIFIER_RE = re.compile(r"[\w$]+")

# (source path, line, column)
Point = Tuple[str, int, int]


class AssertionFailure:
    """One unmet expectation."""

    def __init__(self, kind: str, check: str, message: str, expected=None, observed=None,
                 permutation: Optional[str] = None):
        self.kind = kind
        self.check = check
        self.message = message
        self.expected = expected
        self.observed = observed
        self.permutation = permutation

    def format(self) -> str:
        where = f"[{self.kind}]" if not self.permutation else f"[{self.kind}] ({self.permutation})"
        text = f"{where} {self.check}: {self.message}"
        if self.expected is not None or self.observed is not None:
            text += f" expected: {_dump(self.expected)} observed: {_dump(self.observed)}"
        return text

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind,
            "check": self.check,
            "permutation": self.permutation,
            "message": self.message,
            "expected": self.expected,
            "observed": self.observed,
        }

    def __repr__(self) -> str:
        return f"AssertionFailure({self.format()!r})"


def _dump(value) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


class CheckReport:
    """Accumulates failures for one (fixture, permutation) job."""

    def __init__(self, kind: str, permutation: Optional[str] = None):
        self.kind = kind
        self.permutation = permutation
        self.failures: List[AssertionFailure] = []

    def record(self, check: str, success: bool, message: str, expected=None, observed=None) -> bool:
        if not success:
            self.failures.append(
                AssertionFailure(self.kind, check, message, expected, observed, self.permutation)
            )
        return success

    def fail(self, check: str, message: str, expected=None, observed=None) -> None:
        self.record(check, False, message, expected, observed)

    @property
    def passed(self) -> bool:
        return not self.failures


class MappedText:
    """Generated text paired with the document that maps it."""

    def __init__(self, path: str, text: str, doc: MapDocument):
        self.path = path
        self.text = text
        self.doc = doc
        self.index = SegmentIndex(doc)
        # The map comment may embed original text, never search inside it
        self.searchable = strip_source_mapping_url(text)

    @classmethod
    def from_artifact(cls, artifact: GeneratedArtifact) -> "MappedText":
        return cls(artifact.path, artifact.text, artifact.doc)


def line_column(text: str, offset: int) -> Tuple[int, int]:
    """0-based (line, column) of a character offset."""
    line = text.count("\n", 0, offset)
    line_start = text.rfind("\n", 0, offset) + 1
    return line, offset - line_start


def marker_pattern(marker: str) -> re.Pattern:
    return re.compile('"' + re.escape(marker) + '"')


def identifier_pattern(name: str) -> re.Pattern:
    return re.compile(r"(?<![\w$])" + re.escape(name) + r"(?![\w$])")


def find_all(text: str, pattern: re.Pattern) -> List[Tuple[int, int]]:
    return [line_column(text, m.start()) for m in pattern.finditer(text)]


def _point_dict(point: Point) -> Dict:
    return {"source": point[0], "line": point[1], "column": point[2]}


def round_trip_check(report: CheckReport, outputs: List[MappedText], originals: Dict[str, str],
                     markers: List[str], identifiers: List[str],
                     content: ContentResolver) -> Dict[str, List[Point]]:
    """Resolve every marker occurrence forward and back again.

    Returns the sorted original points each checkpoint was attributed to.
    """
    checkpoints = [(m, marker_pattern(m)) for m in markers] + [(i, identifier_pattern(i)) for i in identifiers]
    attributions: Dict[str, List[Point]] = {}
    content_checked: Set[Tuple[int, int]] = set()

    for label, pattern in checkpoints:
        expected_points: Set[Point] = set()
        for path, text in originals.items():
            for line, column in find_all(text, pattern):
                expected_points.add((path, line, column))
        if not expected_points:
            report.fail("round-trip", f"Failed to find {label!r} in input")
            continue

        generated = [(out, line, column) for out in outputs for line, column in find_all(out.searchable, pattern)]
        if not generated:
            report.fail("round-trip", f"Failed to find {label!r} in output")
            continue

        hits: List[Point] = []
        for out, line, column in generated:
            observed_at = {"file": out.path, "line": line, "column": column}
            found = out.index.original_position_for(line, column)
            if found is None:
                report.fail("round-trip", f"{label!r} at {observed_at} has no original position",
                            [_point_dict(p) for p in sorted(expected_points)], None)
                continue

            point = (out.doc.source_path(found.source_index), found.line, found.column)
            if point not in expected_points:
                expected = sorted(expected_points)
                report.fail("round-trip", f"{label!r} resolved to the wrong original position",
                            _point_dict(expected[0]) if len(expected) == 1 else [_point_dict(p) for p in expected],
                            _point_dict(point))
                continue
            hits.append(point)

            back = out.index.all_generated_positions_for(found.source_index, found.line, found.column)
            report.record("round-trip", (line, column) in back,
                          f"{label!r} does not map back to its generated position",
                          {"line": line, "column": column},
                          [{"line": p.line, "column": p.column} for p in back])

            key = (id(out.doc), found.source_index)
            if key not in content_checked:
                content_checked.add(key)
                _check_content(report, out.doc, found.source_index, originals[point[0]], content)

        for missing in sorted(expected_points - set(hits)):
            report.fail("round-trip", f"{label!r} original occurrence was not attributed by any output",
                        _point_dict(missing), None)
        attributions[label] = sorted(set(hits))

    return attributions


def _check_content(report: CheckReport, doc: MapDocument, source_index: int, expected: str,
                   content: ContentResolver) -> None:
    observed = content.try_content_for(doc, source_index)
    if observed == expected:
        return
    source = doc.sources[source_index]
    if observed is None:
        report.fail("content", f"No content for {source!r}", expected, None)
        return
    expected_lines = expected.split("\n")
    observed_lines = observed.split("\n")
    for i in range(max(len(expected_lines), len(observed_lines))):
        want = expected_lines[i] if i < len(expected_lines) else None
        got = observed_lines[i] if i < len(observed_lines) else None
        if want != got:
            report.fail("content", f"Content of {source!r} differs at line {i}", want, got)
            return


def is_unmapped_line(line: str) -> bool:
    """Lines that carry no code: blank, hashbang and comment-only lines."""
    stripped = line.strip()
    if not stripped or stripped.startswith(("#!", "//")):
        return True
    if stripped.startswith("/*"):
        end = stripped.find("*/", 2)
        return end == -1 or end == len(stripped) - 2
    return False


def coverage_check(report: CheckReport, output: MappedText) -> int:
    """Every column of every code line must resolve somewhere.

    Lines inside a block comment are skipped up to its closing ``*/``. Only
    the first failing column of each line is reported. Returns the number
    of columns checked.
    """
    checked = 0
    in_comment = False
    for line_number, line in enumerate(output.text.split("\n")):
        line = line.rstrip("\r")
        start = 0
        if in_comment:
            end = line.find("*/")
            if end == -1:
                continue
            in_comment = False
            start = end + 2
            if not line[start:].strip():
                continue
        elif is_unmapped_line(line):
            stripped = line.strip()
            in_comment = stripped.startswith("/*") and stripped.find("*/", 2) == -1
            continue
        for column in range(start, len(line)):
            checked += 1
            if output.index.original_position_for(line_number, column) is None:
                report.fail("coverage", f"{output.path} has an unmapped column",
                            None, {"line": line_number, "column": column, "text": line})
                break
    return checked


def name_fidelity_check(report: CheckReport, outputs: List[MappedText], originals: Dict[str, str],
                        prefix: str) -> Dict[str, List[Point]]:
    """Renamed identifiers must keep their original name attributed.

    Each original occurrence of an identifier starting with ``prefix`` is
    mapped to its generated positions; each one must either be spelled as
    the original or carry the original name on its segment. A name none of
    whose occurrences reach the output fails. Returns, per name, the
    original points verified.
    """
    pattern = re.compile(r"(?<![\w$])" + re.escape(prefix) + r"[\w$]*")
    verified: Dict[str, List[Point]] = {}

    for path, text in originals.items():
        for match in pattern.finditer(text):
            name = match.group(0)
            line, column = line_column(text, match.start())
            verified.setdefault(name, [])

            for out in outputs:
                source_index = out.doc.find_source(path)
                if source_index is None:
                    continue
                for generated in out.index.all_generated_positions_for(source_index, line, column):
                    spelling = _identifier_at(out.text, generated.line, generated.column)
                    segment = out.index.segment_at(generated.line, generated.column)
                    recorded = None
                    if segment is not None and segment.name_index is not None:
                        recorded = out.doc.names[segment.name_index]
                    if report.record(
                        "names", spelling == name or recorded == name,
                        f"Name of {name!r} at {path}:{line}:{column} was lost",
                        name, {"spelling": spelling, "name": recorded},
                    ):
                        verified[name].append((path, line, column))

    for name, points in verified.items():
        report.record("names", bool(points), f"No occurrence of {name!r} is mapped in the output", name, None)
        verified[name] = sorted(set(points))
    return verified


def _identifier_at(text: str, line: int, column: int) -> Optional[str]:
    lines = text.split("\n")
    if line >= len(lines):
        return None
    match = IDENTIFIER_RE.match(lines[line], column)
    return match.group(0) if match else None


def uniqueness_check(report: CheckReport, doc: MapDocument, label: str) -> None:
    duplicates = doc.duplicate_sources()
    report.record("uniqueness", not duplicates, f"{label} lists sources more than once", [], duplicates)


def link_check(report: CheckReport, artifact: GeneratedArtifact, expected_embeddings: Tuple[str, ...]) -> None:
    """The artifact must reference its map the way the build was asked to."""
    expected = list(expected_embeddings)
    if not report.record("link", artifact.has_map, f"{artifact.path} has no source map attached",
                         expected, None):
        return
    report.record("link", artifact.embedding in expected_embeddings,
                  f"{artifact.path} embeds its map differently", expected, artifact.embedding)
    if artifact.embedding == EMBED_LINKED:
        expected_map = normalize_source(artifact.path + ".map")
        report.record("link", normalize_source(artifact.map_path or "") == expected_map,
                      f"{artifact.path} links to the wrong map", expected_map, artifact.map_path)


def composition_check(report: CheckReport, outer: MapDocument, composed: MapDocument,
                      resolve_inner: ResolveInner) -> int:
    """Layer-by-layer resolution must equal the composed document's lookup.

    Looks up every segment start of the outer document. Returns the number of
    positions compared.
    """
    composed_index = SegmentIndex(composed)
    indexes: Dict[int, SegmentIndex] = {}
    compared = 0
    for segment in outer.segments:
        line, column = segment.generated_line, segment.generated_column
        layered: Optional[Location] = resolve_through(outer, line, column, resolve_inner, indexes)
        direct = location_of(composed, composed_index, line, column)
        compared += 1
        report.record("chain", layered == direct,
                      f"Composed map disagrees with layered lookup at {line}:{column}",
                      list(layered) if layered else None, list(direct) if direct else None)
    return compared


def compare_attributions(report: CheckReport, check: str, before: Dict[str, List[Point]],
                         after: Dict[str, List[Point]]) -> None:
    """Results of a nested build must match the non-nested ones."""
    for label in sorted(set(before) | set(after)):
        want = [_point_dict(p) for p in before.get(label, [])]
        got = [_point_dict(p) for p in after.get(label, [])]
        report.record(check, want == got, f"{label!r} changed after re-bundling", want, got)
