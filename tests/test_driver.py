"""VerificationDriver端到端测试（使用FakeBundler代替esbuild）"""

import json
import os

import pytest

from mapverify.config import MAP_INLINE_PERCENT, MAP_LINKED, Permutation, VerifyConfig
from mapverify.core.invoker import BuildFlags
from mapverify.data.writer import ReportWriter
from mapverify.maps.content import ContentResolver
from mapverify.maps.loader import EMBED_PERCENT, ArtifactLoader
from mapverify.verify.checks import CheckReport, MappedText, round_trip_check
from mapverify.verify.driver import VerificationDriver
from mapverify.verify.fixtures import (
    IDENTICAL_LOCALS_FILES, Fixture, FixtureWorkspace, builtin_fixtures,
)

from map_fakes import CrashingBundler, FailingBundler, FakeBundler, Latin1Bundler


def fixtures_named(*kinds):
    return [f for f in builtin_fixtures() if f.kind in kinds]


@pytest.fixture
def config(tmp_path):
    return VerifyConfig(temp_dir=str(tmp_path / "work"), preset="quick", workers=4)


def failures_text(result):
    return "\n".join(result.report_lines())


@pytest.mark.asyncio
async def test_all_builtin_fixtures_pass_quick(config):
    loader = ArtifactLoader()
    driver = VerificationDriver(FakeBundler(loader), config, loader=loader)
    result = await driver.run()
    await driver.aclose()

    assert result.passed, failures_text(result)
    assert result.exit_code == 0
    assert {job.fixture.kind for job in result.jobs} == {
        "commonjs", "es6", "minify-expression", "identical-locals", "names", "chain"
    }


@pytest.mark.asyncio
async def test_full_preset_permutations(tmp_path):
    config = VerifyConfig(temp_dir=str(tmp_path / "work"), preset="full", workers=8)
    loader = ArtifactLoader()
    driver = VerificationDriver(FakeBundler(loader), config, loader=loader)
    result = await driver.run(fixtures_named("es6", "names", "chain"))
    await driver.aclose()

    assert result.passed, failures_text(result)
    # stdin without bundling only applies to single-file fixtures
    assert len(result.jobs) == 36 + 48 + 48


@pytest.mark.asyncio
async def test_passing_jobs_remove_their_directory(config):
    loader = ArtifactLoader()
    driver = VerificationDriver(FakeBundler(loader), config, loader=loader)
    result = await driver.run(fixtures_named("names"))
    await driver.aclose()

    assert all(not job.retained for job in result.jobs)
    assert not any(job.workspace.path.exists() for job in result.jobs)


@pytest.mark.asyncio
async def test_failing_job_keeps_directory(config):
    """失败的fixture保留临时目录以便排查"""
    loader = ArtifactLoader()
    driver = VerificationDriver(FakeBundler(loader, column_shift=1), config, loader=loader)
    result = await driver.run(fixtures_named("es6"))
    await driver.aclose()

    assert not result.passed
    assert result.exit_code == 1
    for job in result.jobs:
        assert job.retained
        assert (job.workspace.path / "a.js").exists()
    assert all(line.startswith("❌ [es6]") for line in result.report_lines())


@pytest.mark.asyncio
async def test_keep_temp_retains_passing_jobs(tmp_path):
    config = VerifyConfig(temp_dir=str(tmp_path / "work"), preset="quick", workers=2, keep_temp=True)
    loader = ArtifactLoader()
    driver = VerificationDriver(FakeBundler(loader), config, loader=loader)
    result = await driver.run(fixtures_named("names"))
    await driver.aclose()

    assert result.passed
    assert all(job.workspace.path.exists() for job in result.jobs)


@pytest.mark.asyncio
async def test_build_errors_are_recorded_per_job(config):
    invoker = FailingBundler()
    driver = VerificationDriver(invoker, config)
    result = await driver.run(fixtures_named("es6", "names"))
    await driver.aclose()

    assert invoker.calls == len(result.jobs) == 4
    assert [f.check for f in result.failures] == ["error"] * 4
    assert "BuildInvokerError" in result.failures[0].message


@pytest.mark.asyncio
async def test_undecodable_output_fails_only_its_job(config):
    """非UTF-8产物只让当前任务失败"""
    loader = ArtifactLoader()
    driver = VerificationDriver(Latin1Bundler(loader), config, loader=loader)
    result = await driver.run(fixtures_named("names"))
    await driver.aclose()

    assert len(result.jobs) == 2
    assert [f.check for f in result.failures] == ["error"] * 2
    assert "FormatError" in result.failures[0].message
    assert "UTF-8" in result.failures[0].message
    assert result.exit_code == 1


@pytest.mark.asyncio
async def test_unexpected_exception_does_not_abort_run(config):
    loader = ArtifactLoader()
    driver = VerificationDriver(CrashingBundler(loader), config, loader=loader)
    result = await driver.run(fixtures_named("es6", "names"))
    await driver.aclose()

    by_kind = {}
    for job in result.jobs:
        by_kind.setdefault(job.fixture.kind, []).append(job)
    assert all(job.passed for job in by_kind["es6"]), failures_text(result)
    assert not any(job.passed for job in by_kind["names"])
    assert {f.message for f in result.failures} == {"RuntimeError: tool crashed on names.js"}
    assert all(job.retained for job in by_kind["names"])


@pytest.mark.asyncio
async def test_failures_are_written_to_report(tmp_path, config):
    report_path = tmp_path / "reports" / "failures.jsonl"
    loader = ArtifactLoader()
    driver = VerificationDriver(FakeBundler(loader, column_shift=1), config, loader=loader,
                                writer=ReportWriter(report_path))
    result = await driver.run(fixtures_named("minify-expression"))
    await driver.aclose()

    records = [json.loads(line) for line in report_path.read_text().splitlines()]
    assert len(records) == len(result.failures)
    assert records[0]["kind"] == "minify-expression"


@pytest.mark.asyncio
async def test_lost_names_are_reported(config):
    loader = ArtifactLoader()
    driver = VerificationDriver(FakeBundler(loader, record_names=False), config, loader=loader)
    result = await driver.run(fixtures_named("names"))
    await driver.aclose()

    minified = [job for job in result.jobs if job.permutation.minify]
    plain = [job for job in result.jobs if not job.permutation.minify]
    assert all(job.passed for job in plain)
    assert all(any(f.check == "names" for f in job.report.failures) for job in minified)


@pytest.mark.asyncio
async def test_chain_runs_three_orders(config):
    bundler = FakeBundler()
    driver = VerificationDriver(bundler, config, loader=bundler.loader)
    fixture = fixtures_named("chain")[0]
    job = await driver.run_job(fixture, Permutation(minify=True))
    await driver.aclose()

    assert job.passed, [f.format() for f in job.report.failures]
    assert [flags.outfile for flags in bundler.builds] == [
        "out.js", "nested-alone/out.js", "nested-first/out.js", "nested-second/out.js"
    ]


@pytest.mark.asyncio
async def test_percent_inline_maps_are_reembedded(tmp_path):
    config = VerifyConfig(temp_dir=str(tmp_path / "work"), preset="quick", workers=1, keep_temp=True)
    bundler = FakeBundler()
    driver = VerificationDriver(bundler, config, loader=bundler.loader)
    fixture = fixtures_named("minify-expression")[0]

    job = await driver.run_job(fixture, Permutation(bundle=False, map_mode=MAP_INLINE_PERCENT))
    artifact = await bundler.loader.load(str(job.workspace.path / "out.js"))
    await driver.aclose()

    assert job.passed, [f.format() for f in job.report.failures]
    assert artifact.embedding == EMBED_PERCENT


@pytest.mark.asyncio
async def test_identical_locals_are_attributed_per_file(tmp_path):
    """a→b→c每个文件都定义x0,x1,x2，标记分别归属到各自文件"""
    workspace = FixtureWorkspace(tmp_path, "identical")
    originals = await workspace.write(IDENTICAL_LOCALS_FILES)
    bundler = FakeBundler()
    artifacts = await bundler.build(workspace.path, BuildFlags(entry_points=["a.js"], outfile="out.js",
                                                               bundle=True, minify=True))
    await bundler.loader.aclose()

    report = CheckReport("identical-locals")
    attributions = round_trip_check(report, [MappedText.from_artifact(artifacts[0])], originals,
                                    ["x0", "x1", "x2"], [], ContentResolver())

    assert report.passed, [f.format() for f in report.failures]
    for marker in ("x0", "x1", "x2"):
        files = [os.path.basename(point[0]) for point in attributions[marker]]
        assert files == ["a.js", "b.js", "c.js"]


def test_plan_skips_piped_multi_file_builds(config):
    driver = VerificationDriver(FakeBundler(), config)
    multi = Fixture("multi", {"a.js": "", "b.js": ""}, "a.js")
    single = Fixture("single", {"a.js": ""}, "a.js")

    assert not driver.applicable(multi, Permutation(stdin=True, bundle=False))
    assert driver.applicable(multi, Permutation(stdin=True, bundle=True))
    assert driver.applicable(single, Permutation(stdin=True, bundle=False))


def test_build_flags(config, tmp_path):
    driver = VerificationDriver(FakeBundler(), config)
    workspace = FixtureWorkspace(tmp_path, "flags")
    fixture = Fixture("multi", {"b.js": "", "a.js": ""}, "a.js")

    flags = driver.build_flags(fixture, Permutation(bundle=False, map_mode=MAP_LINKED), {}, workspace)
    assert flags.entry_points == ["a.js", "b.js"]
    assert flags.outdir == "out"

    entry = os.path.abspath(str(workspace.path / "a.js"))
    flags = driver.build_flags(fixture, Permutation(stdin=True, map_mode=MAP_INLINE_PERCENT),
                               {entry: "piped"}, workspace)
    assert flags.stdin == "piped"
    assert flags.sourcefile == "a.js"
    assert flags.sourcemap == "inline"


def test_workspace_names_are_unique(config):
    driver = VerificationDriver(FakeBundler(), config)
    names = [driver._next_workspace("es6").path.name for _ in range(3)]
    assert names == ["es6-0", "es6-1", "es6-2"]
