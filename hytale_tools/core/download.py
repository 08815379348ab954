"""Streaming HTTP downloads with incremental hashing."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Any

import httpx
import structlog

from hytale_tools.core.config import NetworkConfig
from hytale_tools.core.errors import FetchError, HashError
from hytale_tools.core.progress import ProgressReporter, Stage
from hytale_tools.core.utils import hashes_match

logger = structlog.get_logger()


class Downloader:
    """HTTP client for manifests and large artifacts.

    Downloads are streamed to a ``.part`` file while being hashed and only
    moved into place once the digest has been checked, so an aborted or
    corrupt transfer never replaces a good file. Nothing is retried.

    Args:
        config: Network configuration
        client: Optional pre-built httpx client (e.g. with a mock transport)
        headers: Extra headers sent with every request
    """

    def __init__(
        self,
        config: NetworkConfig | None = None,
        client: httpx.Client | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.config = config or NetworkConfig()
        self.headers = {"User-Agent": self.config.user_agent, **(headers or {})}
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Get or create sync HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Downloader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        return {**self.headers, **(extra or {})}

    def get(self, url: str, headers: dict[str, str] | None = None) -> httpx.Response:
        """GET a small resource.

        Raises:
            FetchError: On transport errors or non-2xx status
        """
        try:
            response = self.client.get(url, headers=self._headers(headers))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"Failed to fetch {url}: HTTP {e.response.status_code}",
                url=url,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {url}: {e}", url=url) from e
        return response

    def fetch_json(self, url: str, headers: dict[str, str] | None = None) -> Any:
        """GET and decode a JSON document."""
        response = self.get(url, headers={"Accept": "application/json", **(headers or {})})
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {url}: {e}", url=url) from e

    def download_file(
        self,
        url: str,
        dest: Path,
        *,
        expected_hash: str | None = None,
        algorithm: str = "sha256",
        reporter: ProgressReporter | None = None,
        stage: Stage | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """Stream ``url`` into ``dest``, hashing while downloading.

        Args:
            url: Source URL
            dest: Destination file; replaced only after a successful download
            expected_hash: Hex digest the content must match, if known
            algorithm: hashlib algorithm used for the digest
            reporter: Receives progress events for ``stage``
            stage: Stage name used for progress events
            headers: Extra request headers

        Returns:
            Hex digest of the downloaded content

        Raises:
            FetchError: On transport errors or non-2xx status
            HashError: If the digest differs from ``expected_hash``
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        part_path = dest.with_name(dest.name + ".part")
        digest = hashlib.new(algorithm)
        downloaded = 0
        last_percent = -1

        try:
            with self.client.stream("GET", url, headers=self._headers(headers)) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length") or 0)
                if reporter and stage:
                    reporter.start(stage, url=url, total=total)

                with open(part_path, "wb") as f:
                    for chunk in response.iter_bytes(self.config.chunk_size):
                        f.write(chunk)
                        digest.update(chunk)
                        downloaded += len(chunk)

                        if reporter and stage:
                            percent = round(downloaded * 100 / total) if total else 0
                            if percent != last_percent:
                                last_percent = percent
                                reporter.progress(stage, current=downloaded, total=total, percent=percent)
        except httpx.HTTPStatusError as e:
            part_path.unlink(missing_ok=True)
            raise FetchError(
                f"Failed to download {url}: HTTP {e.response.status_code}",
                url=url,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            part_path.unlink(missing_ok=True)
            raise FetchError(f"Failed to download {url}: {e}", url=url) from e

        actual = digest.hexdigest()
        if expected_hash and not hashes_match(actual, expected_hash):
            part_path.unlink(missing_ok=True)
            raise HashError(
                f"Hash mismatch for {url}: expected {expected_hash}, got {actual}",
                expected=expected_hash,
                actual=actual,
                url=url,
            )

        os.replace(part_path, dest)
        logger.debug("download_complete", url=url, path=str(dest), size=downloaded)

        if reporter and stage:
            reporter.end(stage, path=str(dest), size=downloaded)
        return actual
