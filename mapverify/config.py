"""Verification run configuration."""

import itertools
import os
from pathlib import Path
from typing import Dict, List, Optional

from .utils.paths import ensure_temp_root

MAP_LINKED = "linked"
MAP_INLINE_BASE64 = "inline-base64"
MAP_INLINE_PERCENT = "inline-percent"

CHAIN_ORDERS = ("alone", "first", "second")

FIXTURE_KINDS = ("commonjs", "es6", "minify-expression", "identical-locals", "names", "chain")


class Permutation:
    """One combination of build flags applied to a fixture."""

    def __init__(self, minify: bool = False, crlf: bool = False, stdin: bool = False,
                 bundle: bool = True, map_mode: str = MAP_LINKED):
        self.minify = minify
        self.crlf = crlf
        self.stdin = stdin
        self.bundle = bundle
        self.map_mode = map_mode

    @property
    def inline(self) -> bool:
        return self.map_mode != MAP_LINKED

    def describe(self) -> str:
        parts = ["bundle" if self.bundle else "no-bundle", "minify" if self.minify else "no-minify",
                 "crlf" if self.crlf else "lf", "stdin" if self.stdin else "file", self.map_mode]
        return ",".join(parts)

    def __eq__(self, other) -> bool:
        return isinstance(other, Permutation) and self.describe() == other.describe()

    def __hash__(self) -> int:
        return hash(self.describe())

    def __repr__(self) -> str:
        return f"Permutation({self.describe()})"


class VerifyConfig:
    """Verification configuration."""

    # Each axis lists the values a preset iterates over
    PERMUTATION_PRESETS: Dict[str, Dict[str, list]] = {
        'quick': {
            'minify': [False, True],
            'crlf': [False],
            'stdin': [False],
            'bundle': [True],
            'map_mode': [MAP_LINKED],
        },
        'full': {
            'minify': [False, True],
            'crlf': [False, True],
            'stdin': [False, True],
            'bundle': [False, True],
            'map_mode': [MAP_LINKED, MAP_INLINE_BASE64, MAP_INLINE_PERCENT],
        },
    }

    def __init__(self, temp_dir: Optional[str] = None, preset: str = 'full',
                 esbuild_path: Optional[str] = None, timeout: float = 30.0,
                 workers: Optional[int] = None, keep_temp: bool = False,
                 fixtures: Optional[str] = None, name_prefix: str = "named_",
                 strip_inner_maps: bool = True, report_file: Optional[str] = None):
        """Initialize configuration.

        Args:
            temp_dir: Fixture temp root, None uses MAPVERIFY_TEMP_DIR or the system temp dir
            preset: Permutation preset name
            esbuild_path: Bundler executable, None autodetects
            timeout: Seconds allowed per external build
            workers: Concurrent (fixture, permutation) jobs
            keep_temp: Keep temp directories of passing jobs too
            fixtures: Comma separated fixture kinds, None runs all
            name_prefix: Prefix tagging identifiers for the name fidelity check
            strip_inner_maps: Remove the map link from artifacts before re-bundling
            report_file: JSONL file receiving one record per failure
        """
        if preset not in self.PERMUTATION_PRESETS:
            raise ValueError(f"Unknown preset {preset!r}, expected one of {sorted(self.PERMUTATION_PRESETS)}")
        self.temp_root = self._resolve_temp_dir(temp_dir)
        self.preset = preset
        self.esbuild_path = esbuild_path
        self.timeout = timeout
        self.workers = workers or self._default_workers()
        self.keep_temp = keep_temp
        self.fixtures = self._parse_fixtures(fixtures)
        self.name_prefix = name_prefix
        self.strip_inner_maps = strip_inner_maps
        self.report_file = report_file

    def _resolve_temp_dir(self, temp_dir: Optional[str]) -> Path:
        if temp_dir is None:
            return ensure_temp_root()
        return ensure_temp_root(Path(temp_dir).expanduser().resolve())

    def _default_workers(self) -> int:
        try:
            return max(1, int(os.environ.get("MAPVERIFY_WORKERS", "")))
        except ValueError:
            return min(8, os.cpu_count() or 4)

    def _parse_fixtures(self, fixtures: Optional[str]) -> Optional[List[str]]:
        if not fixtures:
            return None
        kinds = [f.strip() for f in fixtures.split(',') if f.strip()]
        unknown = [kind for kind in kinds if kind not in FIXTURE_KINDS]
        if unknown:
            raise ValueError(f"Unknown fixture kind(s) {unknown}, expected some of {list(FIXTURE_KINDS)}")
        return kinds

    def should_run(self, kind: str) -> bool:
        return self.fixtures is None or kind in self.fixtures

    def permutations(self) -> List[Permutation]:
        axes = self.PERMUTATION_PRESETS[self.preset]
        return [
            Permutation(minify=minify, crlf=crlf, stdin=stdin, bundle=bundle, map_mode=map_mode)
            for minify, crlf, stdin, bundle, map_mode in itertools.product(
                axes['minify'], axes['crlf'], axes['stdin'], axes['bundle'], axes['map_mode'])
        ]
