"""Tests for the property checks."""

import os

import pytest

from mapverify.maps.compose import ChainRegistry, compose
from mapverify.maps.content import ContentResolver
from mapverify.maps.loader import EMBED_BASE64, EMBED_LINKED, EMBED_PERCENT, GeneratedArtifact
from mapverify.verify.checks import (
    AssertionFailure, CheckReport, MappedText, compare_attributions, composition_check,
    coverage_check, is_unmapped_line, line_column, link_check, name_fidelity_check,
    round_trip_check, uniqueness_check,
)

from map_fakes import build_document

ORIGINAL = 'foo("m0")\n'


@pytest.fixture
def report():
    return CheckReport("unit", "bundle,lf")


def mapped(tmp_path, generated, segments, names=(), content=ORIGINAL):
    doc = build_document(["a.js"], list(names), segments, sources_content=[content], base_dir=str(tmp_path))
    return MappedText(str(tmp_path / "out.js"), generated, doc)


def originals_for(tmp_path, text=ORIGINAL):
    return {os.path.join(str(tmp_path), "a.js"): text}


IDENTITY = [(0, 0, 0, 0, 0), (0, 3, 0, 0, 3), (0, 4, 0, 0, 4), (0, 8, 0, 0, 8)]


class TestRoundTrip:

    def test_exact_mapping_passes(self, tmp_path, report):
        output = mapped(tmp_path, 'foo("m0");\n', IDENTITY)
        attributions = round_trip_check(report, [output], originals_for(tmp_path), ["m0"], [], ContentResolver())

        assert report.passed, [f.format() for f in report.failures]
        assert attributions == {"m0": [(os.path.join(str(tmp_path), "a.js"), 0, 4)]}

    def test_wrong_original_column(self, tmp_path, report):
        segments = [(0, 0, 0, 0, 0), (0, 4, 0, 0, 5)]
        output = mapped(tmp_path, 'foo("m0");\n', segments)
        round_trip_check(report, [output], originals_for(tmp_path), ["m0"], [], ContentResolver())

        checks = [f.check for f in report.failures]
        assert "round-trip" in checks
        assert any("wrong original position" in f.message for f in report.failures)

    def test_marker_missing_in_output(self, tmp_path, report):
        output = mapped(tmp_path, "foo();\n", IDENTITY)
        round_trip_check(report, [output], originals_for(tmp_path), ["m0"], [], ContentResolver())

        assert [f.message for f in report.failures] == ["Failed to find 'm0' in output"]

    def test_marker_in_map_comment_is_ignored(self, tmp_path, report):
        output = mapped(tmp_path, 'foo();\n//# sourceMappingURL=data:application/json,"m0"\n', IDENTITY)
        round_trip_check(report, [output], originals_for(tmp_path), ["m0"], [], ContentResolver())

        assert [f.message for f in report.failures] == ["Failed to find 'm0' in output"]

    def test_unmapped_marker(self, tmp_path, report):
        output = mapped(tmp_path, 'xx("m0");\n', [(0, 0), (0, 9, 0, 0, 0)])
        round_trip_check(report, [output], originals_for(tmp_path), ["m0"], [], ContentResolver())

        assert any("has no original position" in f.message for f in report.failures)
        assert any("not attributed" in f.message for f in report.failures)

    def test_content_mismatch(self, tmp_path, report):
        output = mapped(tmp_path, 'foo("m0");\n', IDENTITY, content='foo("m0")\r\n')
        round_trip_check(report, [output], originals_for(tmp_path), ["m0"], [], ContentResolver())

        assert [f.check for f in report.failures] == ["content"]
        assert report.failures[0].expected == 'foo("m0")'
        assert report.failures[0].observed == 'foo("m0")\r'

    def test_identifier_checkpoint(self, tmp_path, report):
        original = 'console.log("a"+"b"+c)\n'
        generated = 'console.log("ab"+c);\n'
        segments = [(0, 0, 0, 0, 0), (0, 12, 0, 0, 12), (0, 16, 0, 0, 19), (0, 17, 0, 0, 20)]
        output = mapped(tmp_path, generated, segments, content=original)
        attributions = round_trip_check(report, [output], originals_for(tmp_path, original), [], ["c"],
                                        ContentResolver())

        assert report.passed, [f.format() for f in report.failures]
        assert attributions["c"] == [(os.path.join(str(tmp_path), "a.js"), 0, 20)]


class TestCoverage:

    def test_fully_mapped(self, tmp_path, report):
        output = mapped(tmp_path, 'foo("m0");\n//# sourceMappingURL=out.js.map\n', IDENTITY)
        assert coverage_check(report, output) == len('foo("m0");')
        assert report.passed

    def test_first_gap_per_line_is_reported(self, tmp_path, report):
        output = mapped(tmp_path, "x = foo()\nbar\n", [(0, 2, 0, 0, 0), (1, 0, 0, 0, 0)])
        coverage_check(report, output)

        assert len(report.failures) == 1
        assert report.failures[0].observed["column"] == 0

    def test_partial_segments_are_gaps(self, tmp_path, report):
        output = mapped(tmp_path, "abc\n", [(0, 0, 0, 0, 0), (0, 2)])
        coverage_check(report, output)
        assert report.failures[0].observed["column"] == 2

    @pytest.mark.parametrize("line,expected", [
        ("", True), ("   ", True), ("#!/usr/bin/env node", True), ("// comment", True),
        ("/* block", True), ("/* legal */", True), ("/* @__PURE__ */ foo();", False),
        (" * 2", False), ("foo()", False),
    ])
    def test_unmapped_lines(self, line, expected):
        assert is_unmapped_line(line) is expected

    def test_block_comment_lines_are_skipped(self, tmp_path, report):
        generated = '/**\n * doc\n */\nfoo("m0");\n'
        output = mapped(tmp_path, generated, [(3, col, 0, 0, orig) for _, col, _, _, orig in IDENTITY])

        assert coverage_check(report, output) == len('foo("m0");')
        assert report.passed

    def test_code_after_inline_comment_is_checked(self, tmp_path, report):
        output = mapped(tmp_path, "/* @__PURE__ */ foo();\n", [(0, 16, 0, 0, 0)])
        coverage_check(report, output)

        assert len(report.failures) == 1
        assert report.failures[0].observed["column"] == 0


class TestNameFidelity:

    ORIGINAL = "named_a(named_b)\n"

    def test_renamed_with_recorded_names(self, tmp_path, report):
        segments = [(0, 0, 0, 0, 0, 0), (0, 1, 0, 0, 7), (0, 2, 0, 0, 8, 1), (0, 3, 0, 0, 15)]
        output = mapped(tmp_path, "a(b);\n", segments, names=["named_a", "named_b"], content=self.ORIGINAL)
        verified = name_fidelity_check(report, [output], originals_for(tmp_path, self.ORIGINAL), "named_")

        path = os.path.join(str(tmp_path), "a.js")
        assert report.passed
        assert verified == {"named_a": [(path, 0, 0)], "named_b": [(path, 0, 8)]}

    def test_verbatim_spelling(self, tmp_path, report):
        segments = [(0, 0, 0, 0, 0), (0, 7, 0, 0, 7), (0, 8, 0, 0, 8), (0, 15, 0, 0, 15)]
        output = mapped(tmp_path, "named_a(named_b);\n", segments, content=self.ORIGINAL)
        name_fidelity_check(report, [output], originals_for(tmp_path, self.ORIGINAL), "named_")

        assert report.passed

    def test_renamed_without_names(self, tmp_path, report):
        segments = [(0, 0, 0, 0, 0), (0, 1, 0, 0, 7), (0, 2, 0, 0, 8), (0, 3, 0, 0, 15)]
        output = mapped(tmp_path, "a(b);\n", segments, content=self.ORIGINAL)
        name_fidelity_check(report, [output], originals_for(tmp_path, self.ORIGINAL), "named_")

        lost = [f for f in report.failures if "was lost" in f.message]
        assert [f.expected for f in lost] == ["named_a", "named_b"]
        assert lost[0].observed == {"spelling": "a", "name": None}

    def test_name_without_any_mapped_occurrence(self, tmp_path, report):
        output = mapped(tmp_path, "a();\n", [(0, 0, 0, 0, 0, 0)], names=["named_a"], content=self.ORIGINAL)
        verified = name_fidelity_check(report, [output], originals_for(tmp_path, self.ORIGINAL), "named_")

        assert [f.message for f in report.failures] == ["No occurrence of 'named_b' is mapped in the output"]
        assert verified["named_b"] == []


class TestStructuralChecks:

    def test_uniqueness(self, report):
        doc = build_document(["a.js", "b.js", "a.js"], [], [])
        uniqueness_check(report, doc, "out.js")

        assert report.failures[0].check == "uniqueness"
        assert report.failures[0].observed == ["a.js"]

    def test_link_to_sibling_map(self, tmp_path, report):
        path = str(tmp_path / "out.js")
        artifact = GeneratedArtifact(path, "", build_document([], [], []), EMBED_LINKED, "{}", path + ".map")
        link_check(report, artifact, (EMBED_LINKED,))
        assert report.passed

    def test_link_to_wrong_map(self, tmp_path, report):
        path = str(tmp_path / "out.js")
        artifact = GeneratedArtifact(path, "", build_document([], [], []), EMBED_LINKED, "{}",
                                     str(tmp_path / "other.map"))
        link_check(report, artifact, (EMBED_LINKED,))
        assert "links to the wrong map" in report.failures[0].message

    def test_inline_expected(self, tmp_path, report):
        artifact = GeneratedArtifact(str(tmp_path / "out.js"), "", build_document([], [], []), EMBED_BASE64)
        link_check(report, artifact, (EMBED_BASE64, EMBED_PERCENT))
        assert report.passed

        link_check(report, artifact, (EMBED_LINKED,))
        assert report.failures[0].observed == EMBED_BASE64

    def test_no_map_attached(self, tmp_path, report):
        link_check(report, GeneratedArtifact(str(tmp_path / "out.js"), "x"), (EMBED_LINKED,))
        assert "has no source map attached" in report.failures[0].message


class TestChainChecks:

    @pytest.fixture
    def chain(self, tmp_path):
        base = str(tmp_path)
        inner = build_document(["src.js"], ["n"], [(0, 0, 0, 3, 1, 0), (1, 0, 0, 4, 0)], base_dir=base)
        outer = build_document(["mid.js"], [], [(0, 0, 0, 0, 0), (0, 5, 0, 1, 0), (1, 0)], base_dir=base)
        registry = ChainRegistry()
        registry.track(os.path.join(base, "mid.js"), doc=inner)
        return outer, registry

    def test_composition_agrees(self, chain, report):
        outer, registry = chain
        compared = composition_check(report, outer, compose(outer, registry), registry)

        assert compared == 3
        assert report.passed

    def test_uncomposed_map_disagrees(self, chain, report):
        outer, registry = chain
        composition_check(report, outer, outer, registry)

        assert len(report.failures) == 2
        assert all(f.check == "chain" for f in report.failures)

    def test_compare_attributions(self, report):
        before = {"m0": [("a.js", 1, 2)], "m1": [("a.js", 2, 2)]}
        compare_attributions(report, "chain:first", before, dict(before))
        assert report.passed

        compare_attributions(report, "chain:first", before, {"m0": [("a.js", 1, 3)]})
        assert [f.message for f in report.failures] == [
            "'m0' changed after re-bundling", "'m1' changed after re-bundling"
        ]


def test_failure_format():
    failure = AssertionFailure("es6", "round-trip", "bad", {"line": 1}, None, "bundle,lf")
    assert failure.format() == '[es6] (bundle,lf) round-trip: bad expected: {"line": 1} observed: null'
    assert AssertionFailure("es6", "link", "no output").format() == "[es6] link: no output"
    assert failure.to_dict()["permutation"] == "bundle,lf"


def test_line_column():
    text = "ab\ncd\r\nef"
    assert line_column(text, 0) == (0, 0)
    assert line_column(text, 4) == (1, 1)
    assert line_column(text, 7) == (2, 0)
