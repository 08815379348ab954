"""Auxiliary instance files (user content such as mods)."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

import structlog
from pydantic import TypeAdapter, ValidationError

from hytale_tools.core.download import Downloader
from hytale_tools.core.errors import FetchError, HytaleToolsError
from hytale_tools.core.progress import ProgressReporter, Stage
from hytale_tools.core.types import InstanceSource, RemoteFile
from hytale_tools.core.utils import file_digest

logger = structlog.get_logger()

FILES_ENDPOINT = "/api/files"

_file_list = TypeAdapter(list[RemoteFile])


def local_path(dest: Path, remote: RemoteFile) -> Path:
    """Destination of a remote file inside ``dest``.

    Raises:
        ValueError: If the remote path escapes ``dest``
    """
    relative = PurePosixPath(remote.path or "", remote.name)
    if relative.is_absolute() or ".." in relative.parts:
        raise ValueError(f"Unsafe file path: {relative}")
    return dest.joinpath(*relative.parts)


class AuxiliaryFiles:
    """List and download files served by an instance control plane.

    Args:
        downloader: HTTP downloader
        reporter: Progress reporter
    """

    def __init__(self, downloader: Downloader | None = None, reporter: ProgressReporter | None = None):
        self.downloader = downloader or Downloader()
        self.reporter = reporter or ProgressReporter()

    def fetch_file_list(self, source: InstanceSource) -> list[RemoteFile]:
        """Fetch the file list of an instance.

        Returns:
            Remote files; empty when the instance has no file endpoint

        Raises:
            FetchError: On any other network or format failure
        """
        if not source.url:
            return []

        url = source.url.rstrip("/") + FILES_ENDPOINT
        try:
            data = self.downloader.fetch_json(url, headers=source.auth_headers())
        except FetchError as e:
            if e.status_code == 404:
                logger.debug("files_endpoint_missing", url=url)
                return []
            raise

        if isinstance(data, dict):
            data = data.get("files", [])
        try:
            return _file_list.validate_python(data)
        except ValidationError as e:
            raise FetchError(f"Invalid file list from {url}: {e}", url=url) from e

    def download(self, files: list[RemoteFile], dest: Path, source: InstanceSource | None = None) -> int:
        """Download files into ``dest``, skipping those already up to date.

        A file that fails (unsafe path, network error, hash mismatch) is
        logged and reported as an error event; the others still download.

        Returns:
            Number of files downloaded
        """
        headers = source.auth_headers() if source else None
        pending: list[tuple[RemoteFile, Path]] = []
        for remote in files:
            try:
                path = local_path(dest, remote)
            except ValueError as e:
                logger.warning("file_skipped", name=remote.name, error=str(e))
                self.reporter.error(Stage.FILES_DOWNLOAD, str(e), name=remote.name)
                continue
            if remote.sha1 and path.is_file() and file_digest(path, "sha1") == remote.sha1.lower():
                continue
            pending.append((remote, path))

        total = len(pending)
        downloaded = 0
        self.reporter.start(Stage.FILES_DOWNLOAD, total=total)
        for index, (remote, path) in enumerate(pending, start=1):
            try:
                self.downloader.download_file(
                    remote.url,
                    path,
                    expected_hash=remote.sha1,
                    algorithm="sha1",
                    headers=headers,
                )
            except (HytaleToolsError, OSError) as e:
                logger.warning("file_download_failed", name=remote.name, url=remote.url, error=str(e))
                self.reporter.error(Stage.FILES_DOWNLOAD, str(e), name=remote.name)
            else:
                downloaded += 1
            self.reporter.progress(Stage.FILES_DOWNLOAD, current=index, total=total, name=remote.name)
        self.reporter.end(Stage.FILES_DOWNLOAD, downloaded=downloaded)

        logger.info(
            "files_downloaded",
            dest=str(dest),
            downloaded=downloaded,
            failed=total - downloaded,
            skipped=len(files) - total,
        )
        return downloaded
