"""Build Invoker - runs the external bundler for one fixture build."""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from ..maps.loader import ArtifactLoader, GeneratedArtifact

logger = logging.getLogger(__name__)

OUTPUT_SUFFIXES = (".js", ".mjs", ".cjs", ".css")


class BuildInvokerError(Exception):
    """External build related errors."""
    pass


class BuildTimeoutError(BuildInvokerError):
    """The external build did not finish within its timeout."""
    pass


class BuildFlags:
    """Options for one build.

    ``sourcemap`` is one of "linked", "inline", "external" or None. ``stdin``
    holds the entry contents when the entry is piped instead of read from a
    file; ``sourcefile`` names it in the generated map.
    """

    def __init__(self, entry_points: Optional[List[str]] = None, outfile: Optional[str] = None,
                 outdir: Optional[str] = None, bundle: bool = False, minify: bool = False,
                 splitting: bool = False, sourcemap: Optional[str] = "linked",
                 sources_content: bool = True, stdin: Optional[str] = None,
                 sourcefile: Optional[str] = None, format: Optional[str] = None,
                 extra_args: Optional[List[str]] = None):
        self.entry_points = list(entry_points or [])
        self.outfile = outfile
        self.outdir = outdir
        self.bundle = bundle
        self.minify = minify
        self.splitting = splitting
        self.sourcemap = sourcemap
        self.sources_content = sources_content
        self.stdin = stdin
        self.sourcefile = sourcefile
        self.format = format
        self.extra_args = list(extra_args or [])

    def describe(self) -> str:
        parts = ["bundle" if self.bundle else "transform"]
        if self.minify:
            parts.append("minify")
        if self.splitting:
            parts.append("splitting")
        if self.stdin is not None:
            parts.append("stdin")
        parts.append(f"map={self.sourcemap}")
        return ",".join(parts)

    def __repr__(self) -> str:
        return f"BuildFlags({self.describe()})"


class BuildInvoker:
    """Interface of the external build tool.

    ``build`` runs one blocking build in ``cwd`` and returns every generated
    artifact with its attached map.
    """

    async def build(self, cwd: Path, flags: BuildFlags) -> List[GeneratedArtifact]:
        raise NotImplementedError


class EsbuildInvoker(BuildInvoker):
    """Runs the esbuild command line tool as a subprocess."""

    def __init__(self, esbuild_path: Optional[str] = None, timeout: float = 30.0,
                 loader: Optional[ArtifactLoader] = None):
        self.esbuild_path = esbuild_path
        self.timeout = timeout
        self.loader = loader or ArtifactLoader()

    def _detect_esbuild_path(self) -> str:
        """Detect esbuild path with environment variable override."""
        env_path = os.environ.get("MAPVERIFY_ESBUILD_PATH")
        if env_path and os.path.exists(env_path) and os.access(env_path, os.X_OK):
            logger.info(f"Using esbuild path from environment: {env_path}")
            return env_path

        found = shutil.which("esbuild")
        if found:
            return found
        raise BuildInvokerError("esbuild executable not found. Set MAPVERIFY_ESBUILD_PATH or use --esbuild.")

    def ensure_available(self) -> str:
        """Resolve the executable once, raising BuildInvokerError if missing."""
        if not self.esbuild_path:
            self.esbuild_path = self._detect_esbuild_path()
        return self.esbuild_path

    def build_command(self, flags: BuildFlags) -> List[str]:
        """Translate build flags into esbuild arguments."""
        args = [self.ensure_available()]
        if flags.stdin is None:
            args.extend(flags.entry_points)
        elif flags.sourcefile:
            args.append(f"--sourcefile={flags.sourcefile}")

        if flags.bundle:
            args.append("--bundle")
        if flags.splitting:
            args.append("--splitting")
            args.append(f"--format={flags.format or 'esm'}")
        elif flags.format:
            args.append(f"--format={flags.format}")
        if flags.minify:
            args.append("--minify")

        if flags.sourcemap == "linked":
            args.append("--sourcemap")
        elif flags.sourcemap:
            args.append(f"--sourcemap={flags.sourcemap}")
        if not flags.sources_content:
            args.append("--sources-content=false")

        if flags.outfile:
            args.append(f"--outfile={flags.outfile}")
        if flags.outdir:
            args.append(f"--outdir={flags.outdir}")
        args.extend(flags.extra_args)
        return args

    async def build(self, cwd: Path, flags: BuildFlags) -> List[GeneratedArtifact]:
        cmd = self.build_command(flags)
        logger.debug(f"Running {' '.join(cmd)} in {cwd}")
        await self._run(cmd, cwd, flags.stdin)
        return await self._collect_outputs(Path(cwd), flags)

    async def _run(self, cmd: List[str], cwd: Path, stdin: Optional[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                # Diagnostics go straight to our stderr
                stderr=None,
            )
        except OSError as e:
            raise BuildInvokerError(f"Failed to start {cmd[0]}: {e}")

        try:
            await asyncio.wait_for(
                process.communicate(stdin.encode("utf-8") if stdin is not None else None),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise BuildTimeoutError(f"Build timed out after {self.timeout}s: {' '.join(cmd)}")

        if process.returncode != 0:
            raise BuildInvokerError(f"Build failed with exit code {process.returncode}: {' '.join(cmd)}")

    async def _collect_outputs(self, cwd: Path, flags: BuildFlags) -> List[GeneratedArtifact]:
        paths: List[Path] = []
        if flags.outfile:
            paths.append(cwd / flags.outfile)
        if flags.outdir:
            outdir = cwd / flags.outdir
            paths.extend(sorted(p for p in outdir.rglob("*") if p.suffix in OUTPUT_SUFFIXES))

        artifacts = []
        for path in paths:
            if not path.exists():
                raise BuildInvokerError(f"Expected build output {path} is missing")
            artifacts.append(await self.loader.load(str(path)))
        return artifacts

