"""Command-line interface for mapverify."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import VerifyConfig
from .core.invoker import BuildInvokerError, EsbuildInvoker
from .data.writer import ReportWriter
from .maps.loader import ArtifactLoader
from .verify.driver import VerificationDriver


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )


logger = logging.getLogger(__name__)


async def run_verification(config: VerifyConfig) -> int:
    """Run every selected fixture and print one line per failure."""
    loader = ArtifactLoader()
    invoker = EsbuildInvoker(esbuild_path=config.esbuild_path, timeout=config.timeout, loader=loader)
    try:
        esbuild_path = invoker.ensure_available()
    except BuildInvokerError as e:
        await loader.aclose()
        print(f"✗ {e}", file=sys.stderr)
        return 2
    logger.debug(f"Using {esbuild_path}, preset {config.preset}, temp root {config.temp_root}")

    writer = ReportWriter(config.report_file) if config.report_file else None
    driver = VerificationDriver(invoker, config, loader=loader, writer=writer)

    try:
        result = await driver.run()
    finally:
        await driver.aclose()

    for line in result.report_lines():
        print(line, file=sys.stderr)

    passed = sum(1 for job in result.jobs if job.passed)
    print(f"{passed}/{len(result.jobs)} jobs passed, {len(result.failures)} failure(s)")
    retained = [job.workspace.path for job in result.jobs if job.retained and not job.passed]
    if retained:
        print(f"Failing fixture directories kept under {config.temp_root}")
    return result.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="mapverify - source map verification against a real bundler"
    )

    parser.add_argument(
        "--esbuild",
        type=str,
        help="Path to the esbuild executable (default: MAPVERIFY_ESBUILD_PATH env or PATH lookup)"
    )

    parser.add_argument(
        "--preset",
        choices=sorted(VerifyConfig.PERMUTATION_PRESETS),
        default="full",
        help="Flag permutations to run (default: full)"
    )

    parser.add_argument(
        "--fixtures",
        type=str,
        help="Comma-separated fixture kinds to run (default: all)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        help="Concurrent jobs (default: MAPVERIFY_WORKERS env or CPU count, at most 8)"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds allowed per build (default: 30)"
    )

    parser.add_argument(
        "--temp-dir",
        type=str,
        help="Root for fixture directories (default: MAPVERIFY_TEMP_DIR env or system temp)"
    )

    parser.add_argument(
        "--keep-temp",
        action="store_true",
        help="Keep fixture directories of passing jobs too"
    )

    parser.add_argument(
        "--report",
        type=str,
        help="Append failures as JSON lines to this file"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = VerifyConfig(
            temp_dir=args.temp_dir,
            preset=args.preset,
            esbuild_path=args.esbuild,
            timeout=args.timeout,
            workers=args.workers,
            keep_temp=args.keep_temp,
            fixtures=args.fixtures,
            report_file=args.report,
        )
    except (ValueError, RuntimeError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    try:
        return await run_verification(config)
    except KeyboardInterrupt:
        print("\nVerification stopped by user.")
        return 130


def cli_entry_point():
    """Entry point for pip-installed command."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_entry_point()
