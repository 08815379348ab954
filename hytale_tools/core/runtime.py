"""Shared Java runtime installation.

The runtime is installed once per launcher and shared by all instances.
Archives are published as ``.zip`` (Windows) or ``.tar.gz`` and are
normalized so that ``bin/`` (or ``Contents/`` on macOS) ends up directly
inside the runtime folder.
"""

from __future__ import annotations

import os
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from hytale_tools.core.download import Downloader
from hytale_tools.core.errors import FetchError, InstallError, UnsupportedPlatformError
from hytale_tools.core.paths import PathResolver
from hytale_tools.core.progress import ProgressReporter, Stage
from hytale_tools.core.types import RuntimeManifest
from hytale_tools.core.utils import make_executable

logger = structlog.get_logger()

RUNTIME_MANIFEST_URL = "https://launcher.hytale.com/version/release/jre.json"
VERSION_FILENAME = ".version"
LAYOUT_MARKERS = ("bin", "lib", "Contents")


def extract_archive(archive: Path, dest: Path) -> None:
    """Extract a ``.zip`` or ``.tar.gz`` archive into ``dest``.

    Unix permission bits stored in zip entries are restored.

    Raises:
        InstallError: If the archive is corrupt or of an unknown type
    """
    dest.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as zf:
                for info in zf.infolist():
                    extracted = Path(zf.extract(info, dest))
                    mode = (info.external_attr >> 16) & 0o777
                    if mode and not info.is_dir():
                        extracted.chmod(mode)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive, "r:*") as tf:
                tf.extractall(dest, filter="data")
        else:
            raise InstallError(f"Unsupported runtime archive: {archive.name}")
    except (zipfile.BadZipFile, tarfile.TarError) as e:
        raise InstallError(f"Corrupt runtime archive: {e}") from e


def normalize_layout(folder: Path) -> Path:
    """Return the folder that holds the runtime layout.

    Archives usually wrap the runtime in a single versioned folder
    (``jdk-25+8-jre/bin/...``); descend through such wrappers until a
    folder containing ``bin``, ``lib`` or ``Contents`` is found.
    """
    current = folder
    while not any((current / marker).is_dir() for marker in LAYOUT_MARKERS):
        entries = [p for p in current.iterdir() if not p.name.startswith(".")]
        if len(entries) != 1 or not entries[0].is_dir():
            break
        current = entries[0]
    return current


class RuntimeInstaller:
    """Install the shared Java runtime.

    Args:
        resolver: Path resolver
        downloader: HTTP downloader
        reporter: Progress reporter
        manifest_url: URL of the runtime manifest
    """

    def __init__(
        self,
        resolver: PathResolver,
        downloader: Downloader | None = None,
        reporter: ProgressReporter | None = None,
        manifest_url: str = RUNTIME_MANIFEST_URL,
    ):
        self.resolver = resolver
        self.downloader = downloader or Downloader()
        self.reporter = reporter or ProgressReporter()
        self.manifest_url = manifest_url

    @property
    def folder(self) -> Path:
        return self.resolver.runtime_folder

    def is_installed(self) -> bool:
        """Whether the java executable is present."""
        return self.resolver.java_executable.is_file()

    def installed_version(self) -> str | None:
        """Version recorded at install time, if any."""
        version_file = self.folder / VERSION_FILENAME
        if not version_file.is_file():
            return None
        return version_file.read_text(encoding="utf-8").strip() or None

    def fetch_manifest(self) -> RuntimeManifest:
        """Download and validate the runtime manifest."""
        data = self.downloader.fetch_json(self.manifest_url)
        try:
            return RuntimeManifest.model_validate(data)
        except ValidationError as e:
            raise FetchError(f"Invalid runtime manifest: {e}", url=self.manifest_url) from e

    def install(self, force: bool = False) -> str:
        """Ensure the runtime is installed.

        Returns:
            Installed runtime version

        Raises:
            UnsupportedPlatformError: If no archive is published for this platform
            HashError: If the archive digest does not match the manifest
        """
        self.reporter.start(Stage.RUNTIME_CHECK)
        if not force and self.is_installed():
            version = self.installed_version() or "unknown"
            self.reporter.end(Stage.RUNTIME_CHECK, version=version, installed=True)
            self.reporter.ready(Stage.RUNTIME_CHECK, version=version)
            return version

        manifest = self.fetch_manifest()
        self.reporter.end(Stage.RUNTIME_CHECK, version=manifest.version, installed=False)

        download = manifest.download_for(self.resolver.os_name, self.resolver.arch)
        if download is None:
            raise UnsupportedPlatformError(
                f"No runtime published for {self.resolver.os_name}/{self.resolver.arch}",
                os=str(self.resolver.os_name),
                arch=str(self.resolver.arch),
            )

        parent = self.folder.parent
        parent.mkdir(parents=True, exist_ok=True)
        logger.info("runtime_install", version=manifest.version, url=download.url)

        with tempfile.TemporaryDirectory(dir=parent, prefix=".jre-") as tmp:
            tmp_dir = Path(tmp)
            archive_name = "runtime.zip" if download.url.endswith(".zip") else "runtime.tar.gz"
            archive = tmp_dir / archive_name
            self.downloader.download_file(
                download.url,
                archive,
                expected_hash=download.sha256,
                reporter=self.reporter,
                stage=Stage.RUNTIME_DOWNLOAD,
            )

            self.reporter.start(Stage.RUNTIME_INSTALL, version=manifest.version)
            extract_dir = tmp_dir / "extracted"
            extract_archive(archive, extract_dir)
            runtime_root = normalize_layout(extract_dir)
            (runtime_root / VERSION_FILENAME).write_text(manifest.version, encoding="utf-8")

            shutil.rmtree(self.folder, ignore_errors=True)
            try:
                os.replace(runtime_root, self.folder)
            except OSError:
                # A concurrent install finished first
                if not self.is_installed():
                    raise
                logger.info("runtime_installed_concurrently", path=str(self.folder))

        java = self.resolver.java_executable
        if not java.is_file():
            raise InstallError(f"Runtime archive did not contain {java}", url=download.url)
        make_executable(java)

        self.reporter.end(Stage.RUNTIME_INSTALL, version=manifest.version, path=str(self.folder))
        self.reporter.ready(Stage.RUNTIME_INSTALL, version=manifest.version)
        return manifest.version
