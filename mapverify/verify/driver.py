"""Verification Driver - runs every fixture under every flag permutation."""

import asyncio
import itertools
import logging
import os
from typing import Dict, List, Optional, Tuple

from ..config import CHAIN_ORDERS, MAP_INLINE_PERCENT, Permutation, VerifyConfig
from ..core.invoker import BuildFlags, BuildInvoker, BuildInvokerError
from ..data.writer import ReportWriter
from ..maps.compose import ChainRegistry, compose
from ..maps.content import ContentResolver
from ..maps.decoder import strip_source_mapping_url
from ..maps.encoder import embed_inline
from ..maps.errors import MapError
from ..maps.loader import EMBED_BASE64, EMBED_LINKED, EMBED_PERCENT, ArtifactLoader, GeneratedArtifact
from .checks import (
    AssertionFailure, CheckReport, MappedText, compare_attributions, composition_check,
    coverage_check, link_check, name_fidelity_check, round_trip_check, uniqueness_check,
)
from .fixtures import Fixture, FixtureWorkspace, builtin_fixtures

logger = logging.getLogger(__name__)


class JobResult:
    """Outcome of one (fixture, permutation) job."""

    def __init__(self, fixture: Fixture, permutation: Permutation, report: CheckReport,
                 workspace: FixtureWorkspace, retained: bool):
        self.fixture = fixture
        self.permutation = permutation
        self.report = report
        self.workspace = workspace
        self.retained = retained

    @property
    def passed(self) -> bool:
        return self.report.passed


class RunResult:
    """Outcome of a whole verification run."""

    def __init__(self, jobs: List[JobResult]):
        self.jobs = jobs

    @property
    def failures(self) -> List[AssertionFailure]:
        return [failure for job in self.jobs for failure in job.report.failures]

    @property
    def passed(self) -> bool:
        return all(job.passed for job in self.jobs)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def report_lines(self) -> List[str]:
        return [f"❌ {failure.format()}" for failure in self.failures]


class VerificationDriver:
    """Orchestrates builds and property checks.

    Jobs for distinct (fixture, permutation) pairs run concurrently up to
    ``config.workers``; each job is sequential inside its own temp directory,
    named from a counter owned by this driver instance.
    """

    def __init__(self, invoker: BuildInvoker, config: VerifyConfig,
                 loader: Optional[ArtifactLoader] = None, writer: Optional[ReportWriter] = None):
        self.invoker = invoker
        self.config = config
        self.loader = loader or ArtifactLoader()
        self.writer = writer
        self._counter = itertools.count()

    def _next_workspace(self, kind: str) -> FixtureWorkspace:
        return FixtureWorkspace(self.config.temp_root, f"{kind}-{next(self._counter)}")

    @staticmethod
    def applicable(fixture: Fixture, permutation: Permutation) -> bool:
        # Piping supports a single entry; without bundling that means one file
        return not (permutation.stdin and not permutation.bundle and fixture.multi_file)

    def plan(self, fixtures: Optional[List[Fixture]] = None) -> List[Tuple[Fixture, Permutation]]:
        if fixtures is None:
            fixtures = builtin_fixtures()
        return [
            (fixture, permutation)
            for fixture in fixtures if self.config.should_run(fixture.kind)
            for permutation in self.config.permutations() if self.applicable(fixture, permutation)
        ]

    async def run(self, fixtures: Optional[List[Fixture]] = None) -> RunResult:
        jobs = self.plan(fixtures)
        semaphore = asyncio.Semaphore(self.config.workers)
        logger.info(f"Running {len(jobs)} verification jobs with {self.config.workers} workers")

        async def bounded(fixture: Fixture, permutation: Permutation) -> JobResult:
            async with semaphore:
                return await self.run_job(fixture, permutation)

        results = await asyncio.gather(*(bounded(f, p) for f, p in jobs))
        return RunResult(list(results))

    async def run_job(self, fixture: Fixture, permutation: Permutation) -> JobResult:
        report = CheckReport(fixture.kind, permutation.describe())
        workspace = self._next_workspace(fixture.kind)

        try:
            await self._verify(fixture, permutation, workspace, report)
        except (MapError, BuildInvokerError) as e:
            # Only this job is aborted
            report.fail("error", f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.error(f"[{fixture.kind}] {permutation.describe()}: unexpected {type(e).__name__}: {e}")
            report.fail("error", f"{type(e).__name__}: {e}")

        retained = not report.passed or self.config.keep_temp
        if retained:
            if not report.passed:
                logger.warning(f"[{fixture.kind}] {len(report.failures)} failure(s), keeping {workspace.path}")
        else:
            await workspace.cleanup()

        if self.writer:
            for failure in report.failures:
                await self.writer.append_jsonl(failure.to_dict())

        logger.debug(f"[{fixture.kind}] {permutation.describe()}: {'pass' if report.passed else 'FAIL'}")
        return JobResult(fixture, permutation, report, workspace, retained)

    def build_flags(self, fixture: Fixture, permutation: Permutation, originals: Dict[str, str],
                    workspace: FixtureWorkspace) -> BuildFlags:
        flags = BuildFlags(
            bundle=permutation.bundle,
            minify=permutation.minify,
            sourcemap="inline" if permutation.inline else "linked",
        )
        if permutation.stdin:
            entry_path = os.path.abspath(str(workspace.path / fixture.entry))
            flags.stdin = originals[entry_path]
            flags.sourcefile = fixture.entry
            flags.outfile = "out.js"
        elif permutation.bundle or not fixture.multi_file:
            flags.entry_points = [fixture.entry]
            flags.outfile = "out.js"
        else:
            flags.entry_points = sorted(fixture.files)
            flags.outdir = "out"
        return flags

    async def _verify(self, fixture: Fixture, permutation: Permutation,
                      workspace: FixtureWorkspace, report: CheckReport) -> None:
        originals = await workspace.write(fixture.files, permutation.crlf)
        content = ContentResolver()
        flags = self.build_flags(fixture, permutation, originals, workspace)

        artifacts = await self.invoker.build(workspace.path, flags)
        if not report.record("link", bool(artifacts), "Build produced no output", flags.describe(), None):
            return

        if permutation.inline:
            expected_embeddings = (EMBED_BASE64, EMBED_PERCENT)
        else:
            expected_embeddings = (EMBED_LINKED,)

        outputs = []
        checked_artifacts = []
        for artifact in artifacts:
            link_check(report, artifact, expected_embeddings)
            if not artifact.has_map:
                continue
            if permutation.inline:
                artifact = await self._reembed(artifact, permutation.map_mode)
            uniqueness_check(report, artifact.doc, artifact.path)
            outputs.append(MappedText.from_artifact(artifact))
            checked_artifacts.append(artifact)
        if not outputs:
            return

        attributions = round_trip_check(report, outputs, originals, fixture.markers,
                                        fixture.identifiers, content)
        names = name_fidelity_check(report, outputs, originals, self.config.name_prefix)

        # Bundles contain runtime glue without any original position
        if not permutation.bundle:
            for output in outputs:
                coverage_check(report, output)

        if fixture.chain:
            await self._chain_check(fixture, permutation, workspace, checked_artifacts[0],
                                    originals, attributions, names, content, report)

    async def _reembed(self, artifact: GeneratedArtifact, map_mode: str) -> GeneratedArtifact:
        """Rewrite an inline map with the requested data URL encoding."""
        encoding = "percent" if map_mode == MAP_INLINE_PERCENT else "base64"
        text = embed_inline(strip_source_mapping_url(artifact.text), artifact.map_text, encoding)
        await asyncio.to_thread(_write_text, artifact.path, text)
        return await self.loader.attach(artifact.path, text)

    async def _chain_check(self, fixture: Fixture, permutation: Permutation, workspace: FixtureWorkspace,
                           primary: GeneratedArtifact, originals: Dict[str, str],
                           attributions: Dict, names: Dict, content: ContentResolver,
                           report: CheckReport) -> None:
        """Re-bundle the artifact with an extra file and compose the maps."""
        registry = ChainRegistry()
        registry.track(primary.path, doc=primary.doc)

        if self.config.strip_inner_maps:
            # Without its map link the bundler cannot chain, composition happens here
            await asyncio.to_thread(_write_text, primary.path, strip_source_mapping_url(primary.text))
        await workspace.write(fixture.extra_files, permutation.crlf)

        artifact_name = os.path.relpath(primary.path, str(workspace.path)).replace(os.sep, "/")
        extra_names = sorted(fixture.extra_files)

        for order in CHAIN_ORDERS:
            check = f"chain:{order}"
            entry = self._chain_entry(order, artifact_name, extra_names)
            if entry is not None:
                await workspace.write({f"nested-{order}.js": entry}, permutation.crlf)
                entry_name = f"nested-{order}.js"
            else:
                entry_name = artifact_name

            flags = BuildFlags(
                entry_points=[entry_name],
                outfile=f"nested-{order}/out.js",
                bundle=True,
                minify=permutation.minify,
                sourcemap="linked",
            )
            nested = await self.invoker.build(workspace.path, flags)
            if not report.record(check, bool(nested) and nested[0].has_map,
                                 "Nested build produced no mapped output", flags.describe(), None):
                continue

            outer = nested[0]
            composed = compose(outer.doc, registry.resolve, content)
            composition_check(report, outer.doc, composed, registry.resolve)
            uniqueness_check(report, composed, f"composed map of {outer.path}")

            output = MappedText(outer.path, outer.text, composed)
            nested_attributions = round_trip_check(report, [output], originals, fixture.markers,
                                                   fixture.identifiers, content)
            nested_names = name_fidelity_check(report, [output], originals, self.config.name_prefix)
            compare_attributions(report, check, attributions, nested_attributions)
            compare_attributions(report, check, names, nested_names)

    @staticmethod
    def _chain_entry(order: str, artifact_name: str, extra_names: List[str]) -> Optional[str]:
        if order == "alone":
            return None
        artifact_import = f'import "./{artifact_name}"\n'
        extra_imports = "".join(f'import "./{name}"\n' for name in extra_names)
        if order == "first":
            return artifact_import + extra_imports
        return extra_imports + artifact_import

    async def aclose(self) -> None:
        await self.loader.aclose()


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)
