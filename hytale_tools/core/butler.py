"""Adapter for the external binary-diff patch tool (itch.io butler).

Official builds are distributed as wharf patches (``.pwr``) with signature
files (``.pwr.sig``). The tool is a black box: we download it on first
use, run ``apply``/``verify`` as subprocesses and read its line-delimited
JSON output for progress.
"""

from __future__ import annotations

import json
import math
import os
import shutil
import subprocess
import sys
import tempfile
import threading
import zipfile
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from hytale_tools.core.download import Downloader
from hytale_tools.core.errors import InstallError, VerifyError
from hytale_tools.core.paths import PathResolver
from hytale_tools.core.progress import ProgressReporter, Stage
from hytale_tools.core.utils import make_executable

logger = structlog.get_logger()

# Game binaries (relative to the game tree) whose execute bit the tool may
# drop on some platforms.
GAME_BINARIES = (
    "Client/HytaleClient",
    "Client/Hytale.app/Contents/MacOS/HytaleClient",
    "Server/HytaleServer",
)

# Keys checked for a progress value, in priority order, with the scale of
# each key: ``percentage`` and ``percent`` are 0-100, ``progress`` is 0-1.
PERCENT_KEYS: tuple[tuple[str, float], ...] = (
    ("percentage", 1.0),
    ("percent", 1.0),
    ("progress", 100.0),
)


@dataclass(frozen=True)
class ProgressLine:
    """Tool reported progress."""

    percent: int


@dataclass(frozen=True)
class LogLine:
    """Tool log message (or non-JSON output)."""

    text: str
    level: str = "info"


@dataclass(frozen=True)
class UnrecognizedLine:
    """JSON output that is neither progress nor a log message."""

    text: str


ToolLine = ProgressLine | LogLine | UnrecognizedLine


def extract_percent(obj: Mapping[str, Any]) -> int | None:
    """Find a progress percentage in a decoded JSON line.

    Keys are checked in the order of :data:`PERCENT_KEYS`; the first
    numeric value wins. The result is scaled to 0-100 and clamped.

    Example:
        >>> extract_percent({"type": "progress", "progress": 0.25})
        25
        >>> extract_percent({"percentage": 140})
        100
    """
    for key, scale in PERCENT_KEYS:
        value = obj.get(key)
        if isinstance(value, bool) or not isinstance(value, int | float):
            continue
        if math.isnan(value):
            continue
        return max(0, min(100, round(value * scale)))
    return None


def parse_tool_line(line: str) -> ToolLine | None:
    """Classify one line of tool output.

    Never raises: anything that is not JSON becomes a :class:`LogLine`.

    Returns:
        The parsed line, or None for blank lines
    """
    text = line.strip()
    if not text:
        return None

    try:
        obj = json.loads(text)
    except ValueError:
        return LogLine(text)

    if not isinstance(obj, dict):
        return LogLine(text)

    kind = obj.get("type") if isinstance(obj.get("type"), str) else ""
    level = obj.get("level") if isinstance(obj.get("level"), str) else ""

    if kind == "log" or kind == "error" or level == "error":
        message = obj.get("message")
        return LogLine(
            str(message) if message is not None else text,
            level=level or ("error" if kind == "error" else "info"),
        )

    percent = extract_percent(obj)
    if percent is not None and ("progress" in kind.lower() or kind == ""):
        return ProgressLine(percent)

    return UnrecognizedLine(text)


class PatchTool:
    """Download and drive the patch tool.

    Args:
        resolver: Path resolver (tool location and download URL)
        downloader: HTTP downloader
        reporter: Progress reporter
    """

    def __init__(
        self,
        resolver: PathResolver,
        downloader: Downloader | None = None,
        reporter: ProgressReporter | None = None,
    ):
        self.resolver = resolver
        self.downloader = downloader or Downloader()
        self.reporter = reporter or ProgressReporter()

    @property
    def executable(self) -> Path:
        """Path of the tool executable."""
        return self.resolver.patch_tool_executable

    def is_installed(self) -> bool:
        """Check if the tool executable exists."""
        return self.executable.is_file()

    def ensure_installed(self) -> Path:
        """Return the tool path, downloading the tool on first use."""
        if self.is_installed():
            self.reporter.ready(Stage.PATCH_TOOL, path=str(self.executable), version="LATEST")
            return self.executable
        return self.download()

    def download(self) -> Path:
        """Download and unpack the latest tool build.

        The archive is extracted into a temporary sibling directory and its
        entries are moved into place one by one, so two launchers installing
        the tool concurrently only duplicate work.
        """
        folder = self.resolver.patch_tool_folder
        folder.mkdir(parents=True, exist_ok=True)
        url = self.resolver.patch_tool_url()

        self.reporter.start(Stage.PATCH_TOOL, version="LATEST", url=url)
        logger.info("patch_tool_download", url=url, path=str(folder))

        with tempfile.TemporaryDirectory(dir=folder.parent, prefix=".butler-") as tmp:
            tmp_dir = Path(tmp)
            archive = tmp_dir / "butler.zip"
            self.downloader.download_file(url, archive, reporter=self.reporter, stage=Stage.PATCH_TOOL)

            extract_dir = tmp_dir / "extracted"
            try:
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(extract_dir)
            except zipfile.BadZipFile as e:
                raise InstallError(f"Patch tool archive is corrupt: {e}", url=url) from e

            for entry in extract_dir.iterdir():
                target = folder / entry.name
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target, ignore_errors=True)
                os.replace(entry, target)

        if not self.executable.is_file():
            raise InstallError(
                f"Patch tool archive did not contain {self.executable.name}", url=url
            )
        make_executable(self.executable)

        self.reporter.end(Stage.PATCH_TOOL, path=str(self.executable), version="LATEST")
        self.reporter.ready(Stage.PATCH_TOOL, path=str(self.executable), version="LATEST")
        return self.executable

    def _start(self, args: list[str]) -> subprocess.Popen[str]:
        """Spawn the tool with piped output.

        Raises:
            OSError: If the executable cannot be started
        """
        command = [str(self.executable), *args]
        logger.debug("patch_tool_run", command=command)
        return subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )

    def _collect(
        self, process: subprocess.Popen[str], on_line: Callable[[ToolLine], None] | None = None
    ) -> tuple[int, str]:
        """Feed parsed stdout lines to ``on_line`` until the tool exits.

        stderr is drained on a helper thread so a chatty tool cannot block
        on a full pipe while we read stdout. If reading or ``on_line``
        raises, the tool is killed and reaped before the error propagates.

        Returns:
            Exit code and the complete stderr output
        """
        stderr_chunks: list[str] = []

        def drain_stderr() -> None:
            assert process.stderr is not None
            for chunk in process.stderr:
                stderr_chunks.append(chunk)
                self.reporter.debug(f"Butler stderr: {chunk.rstrip()}")

        stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
        stderr_thread.start()

        try:
            assert process.stdout is not None
            for raw in process.stdout:
                parsed = parse_tool_line(raw)
                if parsed is not None and on_line is not None:
                    on_line(parsed)
            returncode = process.wait()
        except BaseException:
            logger.warning("patch_tool_killed", pid=process.pid)
            process.kill()
            process.wait()
            raise
        finally:
            stderr_thread.join()
            if process.stdout is not None:
                process.stdout.close()
            if process.stderr is not None:
                process.stderr.close()
        return returncode, "".join(stderr_chunks)

    def _forward(self, line: ToolLine) -> None:
        if isinstance(line, ProgressLine):
            self.reporter.progress(Stage.PATCH_APPLY, percent=line.percent)
        elif isinstance(line, LogLine):
            prefix = "Butler error" if line.level == "error" else "Butler"
            self.reporter.debug(f"{prefix}: {line.text}")
        else:
            self.reporter.debug(f"Butler: {line.text}")

    def apply(self, patch_file: Path, signature_file: Path, target_dir: Path, staging_dir: Path) -> None:
        """Apply a patch to ``target_dir`` with signature verification.

        The staging directory is wiped first: the tool panics on leftovers
        from an interrupted run, and a wiped staging area guarantees an
        aborted step is retried from scratch.

        Raises:
            InstallError: If the tool cannot start or exits non-zero
        """
        self.ensure_installed()
        target_dir.mkdir(parents=True, exist_ok=True)

        shutil.rmtree(staging_dir, ignore_errors=True)
        staging_dir.mkdir(parents=True, exist_ok=True)
        self.reporter.debug("Created fresh staging directory", path=str(staging_dir))

        args = [
            "apply",
            "--json",
            "--staging-dir", str(staging_dir),
            "--signature", str(signature_file),
            str(patch_file),
            str(target_dir),
        ]

        self.reporter.start(Stage.PATCH_APPLY, path=str(patch_file))
        try:
            process = self._start(args)
        except OSError as e:
            self.reporter.error(Stage.PATCH_APPLY, str(e))
            raise InstallError(f"Butler failed to start: {e}") from e
        returncode, stderr = self._collect(process, self._forward)

        self.reporter.end(Stage.PATCH_APPLY, exit_code=returncode)

        if returncode != 0:
            message = stderr.strip() or f"Butler exited with code {returncode}"
            self.reporter.error(Stage.PATCH_APPLY, message, exit_code=returncode)
            raise InstallError(message, exit_code=returncode, patch=str(patch_file))

        shutil.rmtree(staging_dir, ignore_errors=True)
        self.reporter.debug("Cleaned up staging directory")
        self.restore_permissions(target_dir)

    def verify(self, signature_file: Path, target_dir: Path) -> bool:
        """Verify ``target_dir`` against a signature file.

        A non-zero exit is a normal negative result, not an error.

        Raises:
            VerifyError: If the tool cannot be run at all
        """
        self.ensure_installed()
        try:
            process = self._start(["verify", str(signature_file), str(target_dir)])
        except OSError as e:
            raise VerifyError(f"Failed to run Butler verify: {e}") from e
        returncode, stderr = self._collect(process, self._forward)

        if returncode != 0:
            logger.info("verify_failed", target=str(target_dir), exit_code=returncode, stderr=stderr.strip())
            return False
        return True

    @staticmethod
    def restore_permissions(target_dir: Path) -> None:
        """Set the execute bit on known game binaries."""
        if sys.platform == "win32":
            return
        for relative in GAME_BINARIES:
            path = target_dir / relative
            if path.is_file():
                make_executable(path)
