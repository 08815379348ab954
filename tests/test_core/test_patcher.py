"""Tests for hytale_tools.core.patcher module."""

import hashlib
from pathlib import Path

import pytest

from hytale_tools.core.errors import HashError, MissingFileError
from hytale_tools.core.patcher import DisableResult, EnableResult, OnlinePatchManager
from hytale_tools.core.paths import PathResolver
from hytale_tools.core.progress import Phase, ProgressEvent, ProgressReporter, Stage
from hytale_tools.core.types import PatchConfig, PatchTarget

OFFICIAL = b"official client"


@pytest.fixture
def manager(resolver: PathResolver, fake_server, reporter: ProgressReporter) -> OnlinePatchManager:
    return OnlinePatchManager(resolver, "main", fake_server.downloader(), reporter)


@pytest.fixture
def client_exe(resolver: PathResolver) -> Path:
    path = resolver.client_executable("main")
    path.parent.mkdir(parents=True)
    path.write_bytes(OFFICIAL)
    return path


def _enable(manager: OnlinePatchManager, executable: Path, config: PatchConfig, **kwargs):
    return manager.enable(executable, config.patch_url, config.patch_hash, build_index=3, **kwargs)


class TestEnable:
    """Test applying online patches."""

    def test_applies_and_backs_up(self, manager, client_exe, client_patch, fake_server):
        outcome = _enable(manager, client_exe, client_patch)

        assert outcome.result is EnableResult.APPLIED
        assert outcome.hash == client_patch.patch_hash
        assert client_exe.read_bytes() == fake_server.files[client_patch.patch_url]
        paths = manager.paths(client_exe)
        assert paths.original.read_bytes() == OFFICIAL
        state = manager.read_state(client_exe)
        assert state is not None
        assert state.enabled
        assert state.patch_url == client_patch.patch_url
        assert state.build_index == 3

    def test_second_enable_short_circuits(self, manager, client_exe, client_patch, fake_server, events):
        """Two enables perform exactly one download and one copy."""
        _enable(manager, client_exe, client_patch)
        state_before = manager.paths(client_exe).state.read_text()

        outcome = _enable(manager, client_exe, client_patch)

        assert outcome.result is EnableResult.ALREADY_APPLIED
        assert fake_server.count(client_patch.patch_url) == 1
        applies = [e for e in events if e.stage is Stage.ONLINE_PATCH_APPLY and e.phase is Phase.START]
        assert len(applies) == 1
        assert manager.paths(client_exe).state.read_text() == state_before

    def test_client_without_hash_is_skipped(self, manager, client_exe, fake_server):
        outcome = manager.enable(client_exe, "https://patches.example.com/client/HytaleClient", None)
        assert outcome.result is EnableResult.SKIPPED
        assert fake_server.requests == []
        assert client_exe.read_bytes() == OFFICIAL

    def test_no_url_is_skipped(self, manager, client_exe):
        assert manager.enable(client_exe, None).result is EnableResult.SKIPPED

    def test_hash_mismatch(self, manager, client_exe, client_patch):
        with pytest.raises(HashError) as exc_info:
            manager.enable(client_exe, client_patch.patch_url, "00" * 32)
        assert exc_info.value.expected == "00" * 32
        assert client_exe.read_bytes() == OFFICIAL
        assert not manager.paths(client_exe).patched.exists()
        assert manager.read_state(client_exe) is None

    def test_uses_valid_cache(self, manager, client_exe, client_patch, fake_server):
        _enable(manager, client_exe, client_patch)
        manager.disable(client_exe)

        outcome = _enable(manager, client_exe, client_patch)
        assert outcome.result is EnableResult.APPLIED
        assert fake_server.count(client_patch.patch_url) == 1

    def test_redownloads_corrupt_cache(self, manager, client_exe, client_patch, fake_server):
        _enable(manager, client_exe, client_patch)
        manager.disable(client_exe)
        manager.paths(client_exe).patched.write_bytes(b"garbage")

        _enable(manager, client_exe, client_patch)
        assert fake_server.count(client_patch.patch_url) == 2
        assert client_exe.read_bytes() == fake_server.files[client_patch.patch_url]

    def test_missing_live_executable(self, manager, resolver, client_patch, fake_server):
        """A patch right after a fresh install may precede the executable."""
        executable = resolver.client_executable("main")
        outcome = _enable(manager, executable, client_patch)
        assert outcome.result is EnableResult.APPLIED
        assert executable.read_bytes() == fake_server.files[client_patch.patch_url]
        assert not manager.paths(executable).original.exists()

    def test_repairs_lagging_state(self, manager, client_exe, client_patch, fake_server):
        """A live patch whose state still says disabled is recorded, not copied again."""
        _enable(manager, client_exe, client_patch)
        state = manager.read_state(client_exe)
        manager.write_state(client_exe, state.model_copy(update={"enabled": False}))

        outcome = _enable(manager, client_exe, client_patch)

        assert outcome.result is EnableResult.ALREADY_APPLIED
        assert manager.read_state(client_exe).enabled
        assert manager.paths(client_exe).original.read_bytes() == OFFICIAL
        assert fake_server.count(client_patch.patch_url) == 1


class TestServerPatch:
    """Server patches are published without a hash."""

    @pytest.fixture
    def server_exe(self, resolver: PathResolver) -> Path:
        path = resolver.server_executable("main")
        path.parent.mkdir(parents=True)
        path.write_bytes(b"official server")
        return path

    def test_unhashed_apply(self, manager, server_exe, server_patch, fake_server):
        outcome = manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)
        assert outcome.result is EnableResult.APPLIED
        assert outcome.hash is None
        assert server_exe.read_bytes() == fake_server.files[server_patch.patch_url]

    def test_unhashed_idempotent(self, manager, server_exe, server_patch, fake_server):
        manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)
        outcome = manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)
        assert outcome.result is EnableResult.ALREADY_APPLIED
        assert fake_server.count(server_patch.patch_url) == 1

    def test_cache_presence_is_enough(self, manager, server_exe, server_patch, fake_server):
        manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)
        manager.disable(server_exe)
        manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)
        assert fake_server.count(server_patch.patch_url) == 1

    def test_new_url_downloads_again(self, manager, server_exe, server_patch, fake_server):
        manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)
        manager.disable(server_exe)
        other_url = "https://patches.example.com/server/v2.jar"
        fake_server.add(other_url, b"patched server v2")

        manager.enable(server_exe, other_url, None, target=PatchTarget.SERVER)
        assert server_exe.read_bytes() == b"patched server v2"

    def test_unhashed_repairs_lagging_state(self, manager, server_exe, server_patch):
        manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)
        state = manager.read_state(server_exe)
        manager.write_state(server_exe, state.model_copy(update={"enabled": False}))

        outcome = manager.enable(server_exe, server_patch.patch_url, None, target=PatchTarget.SERVER)

        assert outcome.result is EnableResult.ALREADY_APPLIED
        assert manager.read_state(server_exe).enabled
        assert manager.paths(server_exe).original.read_bytes() == b"official server"


class TestDisable:
    """Test reverting online patches."""

    def test_reverts(self, manager, client_exe, client_patch):
        _enable(manager, client_exe, client_patch)
        assert manager.disable(client_exe) is DisableResult.REVERTED
        assert client_exe.read_bytes() == OFFICIAL
        state = manager.read_state(client_exe)
        assert state is not None
        assert not state.enabled
        assert state.patch_url == client_patch.patch_url

    def test_already_reverted(self, manager, client_exe, client_patch):
        _enable(manager, client_exe, client_patch)
        manager.disable(client_exe)
        assert manager.disable(client_exe) is DisableResult.ALREADY_REVERTED

    def test_never_patched(self, manager, client_exe):
        assert manager.disable(client_exe) is DisableResult.SKIPPED

    def test_missing_backup(self, manager, client_exe, client_patch):
        _enable(manager, client_exe, client_patch)
        manager.paths(client_exe).original.unlink()
        with pytest.raises(MissingFileError):
            manager.disable(client_exe)


class TestRestoreOriginal:
    """Test restoring official executables before patching."""

    def test_from_backup(self, manager, client_exe, client_patch):
        _enable(manager, client_exe, client_patch)
        assert manager.restore_original(client_exe) is True
        assert client_exe.read_bytes() == OFFICIAL
        state = manager.read_state(client_exe)
        assert state is not None and not state.enabled

    def test_prefers_download(self, manager, client_exe, client_patch, fake_server):
        _enable(manager, client_exe, client_patch)
        fresh = b"official client from control plane"
        fake_server.add("https://cp.example.com/original", fresh)

        restored = manager.restore_original(
            client_exe, "https://cp.example.com/original", hashlib.sha256(fresh).hexdigest()
        )
        assert restored is True
        assert client_exe.read_bytes() == fresh
        assert manager.paths(client_exe).original.read_bytes() == fresh

    def test_fetch_failure_falls_back_to_backup(self, manager, client_exe, client_patch, fake_server):
        _enable(manager, client_exe, client_patch)
        assert manager.restore_original(client_exe, "https://cp.example.com/missing") is True
        assert client_exe.read_bytes() == OFFICIAL

    def test_hash_mismatch_is_fatal(self, manager, client_exe, client_patch, fake_server):
        _enable(manager, client_exe, client_patch)
        fake_server.add("https://cp.example.com/original", b"tampered")
        with pytest.raises(HashError):
            manager.restore_original(client_exe, "https://cp.example.com/original", "ff" * 32)
        assert manager.paths(client_exe).original.read_bytes() == OFFICIAL

    def test_nothing_to_restore(self, manager, client_exe):
        assert manager.restore_original(client_exe) is False
        assert client_exe.read_bytes() == OFFICIAL

    def test_not_patched_keeps_live_file(self, manager, client_exe, client_patch):
        """A reverted executable is left alone even if the backup differs."""
        _enable(manager, client_exe, client_patch)
        manager.disable(client_exe)
        client_exe.write_bytes(b"official client, newer build")

        assert manager.restore_original(client_exe) is False
        assert client_exe.read_bytes() == b"official client, newer build"

    def test_restores_patched_file_despite_disabled_state(self, manager, client_exe, client_patch):
        """The live bytes decide, not a state file that lags behind them."""
        _enable(manager, client_exe, client_patch)
        state = manager.read_state(client_exe)
        manager.write_state(client_exe, state.model_copy(update={"enabled": False}))

        assert manager.restore_original(client_exe) is True
        assert client_exe.read_bytes() == OFFICIAL

    def test_download_replaces_unpatched_file(self, manager, client_exe, client_patch, fake_server):
        _enable(manager, client_exe, client_patch)
        manager.disable(client_exe)
        fake_server.add("https://cp.example.com/original", b"official client, fresh copy")

        assert manager.restore_original(client_exe, "https://cp.example.com/original") is True
        assert client_exe.read_bytes() == b"official client, fresh copy"

    def test_roundtrip_matches_direct_enable(self, resolver, fake_server, client_patch):
        """restore_original + enable yields the same bytes as a direct enable."""
        first = OnlinePatchManager(resolver, "first", fake_server.downloader())
        second = OnlinePatchManager(resolver, "second", fake_server.downloader())
        exes = []
        for manager_, instance in ((first, "first"), (second, "second")):
            exe = resolver.client_executable(instance)
            exe.parent.mkdir(parents=True)
            exe.write_bytes(OFFICIAL)
            exes.append(exe)

        _enable(first, exes[0], client_patch)
        first.restore_original(exes[0])
        _enable(first, exes[0], client_patch)

        _enable(second, exes[1], client_patch)
        assert exes[0].read_bytes() == exes[1].read_bytes()


class TestStatusAndBackup:
    """Test status reporting and backup discarding."""

    def test_status_not_configured(self, manager, client_exe):
        status = manager.status(client_exe, None)
        assert not status.available
        assert not manager.status(client_exe, PatchConfig()).available

    def test_status_after_enable(self, manager, client_exe, client_patch):
        assert not manager.status(client_exe, client_patch).downloaded
        _enable(manager, client_exe, client_patch)
        status = manager.status(client_exe, client_patch)
        assert status.available and status.enabled and status.downloaded

    def test_discard_backup(self, manager, client_exe, client_patch):
        _enable(manager, client_exe, client_patch)
        manager.discard_backup(client_exe)
        paths = manager.paths(client_exe)
        assert not paths.original.exists()
        assert paths.patched.exists()
        state = manager.read_state(client_exe)
        assert state is not None and not state.enabled

    def test_executable_for(self, manager, resolver):
        assert manager.executable_for(PatchTarget.CLIENT) == resolver.client_executable("main")
        assert manager.executable_for(PatchTarget.SERVER) == resolver.server_executable("main")


def test_download_events(manager, client_exe, client_patch, events: list[ProgressEvent]):
    _enable(manager, client_exe, client_patch)
    downloads = [e for e in events if e.stage is Stage.ONLINE_PATCH_DOWNLOAD]
    assert downloads[0].phase is Phase.START
    assert downloads[-1].phase is Phase.END
    assert all(e.context.get("target") == "client" for e in downloads)
