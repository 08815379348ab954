"""Pytest configuration and shared fixtures for hytale_tools tests."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from hytale_tools.core.download import Downloader
from hytale_tools.core.errors import InstallError
from hytale_tools.core.installer import GameInstaller
from hytale_tools.core.paths import PathResolver
from hytale_tools.core.progress import ProgressEvent, ProgressReporter, Stage
from hytale_tools.core.types import GameArch, GameOS, LoaderConfig, PatchConfig

PATCH_RE = re.compile(r"/(\d+)/(\d+)\.pwr$")

OFFICIAL_CLIENT = "client-build-{build}"
PATCHED_CLIENT = b"patched client executable"
PATCHED_CLIENT_URL = "https://patches.example.com/client/HytaleClient"
PATCHED_SERVER = b"patched server jar"
PATCHED_SERVER_URL = "https://patches.example.com/server/HytaleServer.jar"


def sha256(data: bytes) -> str:
    """Hex SHA256 of bytes."""
    return hashlib.sha256(data).hexdigest()


class FakeServer:
    """In-memory HTTP server for httpx.MockTransport.

    Patch URLs (``.../{from}/{to}.pwr``) are answered automatically with
    ``patch:{from}:{to}``; everything else must be registered with
    :meth:`add`.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.requests: list[str] = []
        self.headers: list[httpx.Headers] = []

    def add(self, url: str, content: bytes, status: int = 200) -> None:
        self.files[url] = content
        self.statuses[url] = status

    def count(self, url: str) -> int:
        return self.requests.count(url)

    def patch_requests(self) -> list[tuple[int, int]]:
        """Requested official patches as (from, to) pairs."""
        pairs = []
        for url in self.requests:
            match = PATCH_RE.search(url)
            if match:
                pairs.append((int(match.group(1)), int(match.group(2))))
        return pairs

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        self.headers.append(request.headers)

        if url in self.files:
            return httpx.Response(self.statuses[url], content=self.files[url])
        match = PATCH_RE.search(url)
        if match:
            return httpx.Response(200, content=f"patch:{match.group(1)}:{match.group(2)}".encode())
        if url.endswith(".pwr.sig"):
            return httpx.Response(200, content=b"signature")
        return httpx.Response(404, content=b"not found")

    def downloader(self) -> Downloader:
        return Downloader(client=httpx.Client(transport=httpx.MockTransport(self.handler)))


class FakePatchTool:
    """Stand-in for the butler adapter.

    Applying ``patch:{from}:{to}`` writes build ``to`` of the client and
    server into the target tree. Like the real tool it refuses to patch a
    tree that is not exactly build ``from`` (empty for full installs).
    """

    def __init__(self, reporter: ProgressReporter | None = None) -> None:
        self.reporter = reporter or ProgressReporter()
        self.applied: list[tuple[int, int]] = []
        self.fail_on: tuple[int, int] | None = None
        self.installed = 0

    def ensure_installed(self) -> Path:
        self.installed += 1
        return Path("butler")

    def apply(self, patch_file: Path, signature_file: Path, target_dir: Path, staging_dir: Path) -> None:
        assert signature_file.read_bytes() == b"signature"
        _, from_build, to_build = patch_file.read_text().split(":")
        step = (int(from_build), int(to_build))

        if step == self.fail_on:
            raise InstallError(f"Butler exited with code 1 on {step}")

        client = target_dir / "Client" / "HytaleClient"
        if step[0] == 0:
            if any(target_dir.iterdir()):
                raise InstallError("full install into a non-empty tree")
        elif client.read_text() != OFFICIAL_CLIENT.format(build=step[0]):
            raise InstallError(f"client is not official build {step[0]}")

        client.parent.mkdir(parents=True, exist_ok=True)
        client.write_text(OFFICIAL_CLIENT.format(build=step[1]))
        server = target_dir / "Server" / "HytaleServer.jar"
        server.parent.mkdir(parents=True, exist_ok=True)
        server.write_text(f"server-build-{step[1]}")

        self.applied.append(step)
        self.reporter.end(Stage.PATCH_APPLY, to_build=step[1])

    def verify(self, signature_file: Path, target_dir: Path) -> bool:
        return (target_dir / "Client" / "HytaleClient").is_file()


class FakeRuntime:
    """Stand-in for the runtime installer."""

    def __init__(self, resolver: PathResolver, version: str = "25.0.1") -> None:
        self.resolver = resolver
        self.version = version
        self.calls = 0

    def install(self) -> str:
        self.calls += 1
        java = self.resolver.java_executable
        java.parent.mkdir(parents=True, exist_ok=True)
        java.write_text("java")
        return self.version


@pytest.fixture
def resolver(tmp_path: Path) -> PathResolver:
    """Linux/amd64 resolver rooted in a temporary folder."""
    return PathResolver(
        "test-server",
        data_root=tmp_path,
        os_name=GameOS.LINUX,
        arch=GameArch.AMD64,
    )


@pytest.fixture
def fake_server() -> FakeServer:
    """In-memory HTTP server."""
    server = FakeServer()
    server.add(PATCHED_CLIENT_URL, PATCHED_CLIENT)
    server.add(PATCHED_SERVER_URL, PATCHED_SERVER)
    return server


@pytest.fixture
def events() -> list[ProgressEvent]:
    """Collected progress events."""
    return []


@pytest.fixture
def reporter(events: list[ProgressEvent]) -> ProgressReporter:
    """Reporter appending to ``events``."""
    return ProgressReporter(events.append)


@pytest.fixture
def make_installer(
    resolver: PathResolver, fake_server: FakeServer, reporter: ProgressReporter
) -> Callable[..., GameInstaller]:
    """Factory for installers wired to fakes."""

    def factory(instance_id: str = "main") -> GameInstaller:
        return GameInstaller(
            resolver,
            instance_id,
            downloader=fake_server.downloader(),
            patch_tool=FakePatchTool(reporter),  # type: ignore[arg-type]
            runtime=FakeRuntime(resolver),  # type: ignore[arg-type]
            reporter=reporter,
        )

    return factory


@pytest.fixture
def client_patch() -> PatchConfig:
    """Hashed client patch served by ``fake_server``."""
    return PatchConfig(patch_url=PATCHED_CLIENT_URL, patch_hash=sha256(PATCHED_CLIENT))


@pytest.fixture
def server_patch() -> PatchConfig:
    """Unhashed server patch served by ``fake_server``."""
    return PatchConfig(patch_url=PATCHED_SERVER_URL)


@pytest.fixture
def make_loader(client_patch: PatchConfig, server_patch: PatchConfig) -> Callable[..., LoaderConfig]:
    """Factory for loader configurations."""

    def factory(build_index: int, client: bool = True, server: bool = False) -> LoaderConfig:
        return LoaderConfig(
            build_index=build_index,
            linux=client_patch if client else None,
            server=server_patch if server else None,
        )

    return factory


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Add the unit marker to every test not marked as integration."""
    for item in items:
        if not any(marker.name == "integration" for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)
