"""
Tests for full sync passes.

A fake engine stands in for the network: it serves bytes per URL (or per
attempt) and records every request.
"""

import json
import os

import pytest

from hashsync.config import SyncConfig
from hashsync.core.hashing import hash_bytes
from hashsync.core.progress import SyncProgress
from hashsync.errors import DownloadExhaustedError, HttpStatusError, NetworkError, SyncLockedError
from hashsync.manifest import CdnResolver, Manifest, ReconciliationSpec
from hashsync.sync.cache import HashCache
from hashsync.sync.orchestrator import SyncOrchestrator, SyncState

from helpers import archive_entry, file_entry, make_zip, write

CDN = "https://cdn.test"


class FakeEngine:
    """Serves {url: bytes | [bytes-or-error per attempt] | error}; unknown URLs 404."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def fetch(self, url, destination, expected_size=0, resume_offset=0, attempt=1, display_name=None):
        self.calls.append((url, attempt))
        response = self.responses.get(url)
        if isinstance(response, list):
            response = response[min(attempt, len(response)) - 1]
        if response is None:
            raise HttpStatusError(url, 404)
        if isinstance(response, BaseException):
            raise response
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(response)
        return len(response)


def make_orchestrator(install_dir, engine, progress=None, **config_kwargs):
    config = SyncConfig(install_dir=install_dir, cdn_url=CDN, retry_delay=0, **config_kwargs)
    return SyncOrchestrator(
        config,
        CdnResolver(CDN),
        engine_factory=lambda config, progress: engine,
        progress=progress,
    )


@pytest.fixture
def install(temp_dir):
    path = temp_dir / "install"
    path.mkdir()
    return path


class TestStandaloneFiles:

    def test_fresh_install_then_idempotent(self, install):
        """x.bin: downloaded, verified, cached; the next pass finds nothing stale."""
        data = b"x" * 100
        manifest = Manifest.from_entries([file_entry("x.bin", data)])
        engine = FakeEngine({f"{CDN}/x.bin": data})

        report = make_orchestrator(install, engine).sync(manifest)

        assert report.downloaded_files == ["x.bin"]
        assert report.bytes_downloaded == 100
        assert (install / "x.bin").read_bytes() == data
        assert HashCache.load(install / "launcher").get("x.bin") == hash_bytes(data)

        cache_file = install / "launcher" / "cache.json"
        cache_before = cache_file.read_text()

        second = make_orchestrator(install, engine).sync(manifest)
        assert second.up_to_date
        assert second.downloaded_files == []
        assert len(engine.calls) == 1
        assert not second.changed
        assert cache_file.read_text() == cache_before

    def test_state_sequence(self, install):
        data = b"abc"
        manifest = Manifest.from_entries([file_entry("x.bin", data)])
        seen = []
        orchestrator = make_orchestrator(install, FakeEngine({f"{CDN}/x.bin": data}))
        orchestrator.on_state = seen.append

        report = orchestrator.sync(manifest)

        assert seen == [
            SyncState.RECONCILING_RENAMES,
            SyncState.DIFFING,
            SyncState.DOWNLOADING,
            SyncState.RECONCILING_DELETIONS,
            SyncState.PERSISTING,
            SyncState.DONE,
        ]
        assert report.states == seen
        assert report.state == SyncState.DONE

    def test_locator_used_for_url(self, install):
        data = b"dll"
        manifest = Manifest.from_entries([file_entry("bin/tool.dll", data, locator="tool.dll")])
        engine = FakeEngine({f"{CDN}/tool.dll": data})

        make_orchestrator(install, engine).sync(manifest)

        assert engine.calls == [(f"{CDN}/tool.dll", 1)]
        assert (install / "bin" / "tool.dll").read_bytes() == data

    def test_stale_file_replaced(self, install):
        write(install / "x.bin", b"old contents")
        data = b"new contents"
        manifest = Manifest.from_entries([file_entry("x.bin", data)])

        make_orchestrator(install, FakeEngine({f"{CDN}/x.bin": data})).sync(manifest)

        assert (install / "x.bin").read_bytes() == data

    def test_progress_counts_downloads(self, install):
        a, b = b"a" * 10, b"b" * 20
        manifest = Manifest.from_entries([file_entry("a.bin", a), file_entry("b.bin", b)])
        progress = SyncProgress()
        engine = FakeEngine({f"{CDN}/a.bin": a, f"{CDN}/b.bin": b})

        make_orchestrator(install, engine, progress=progress).sync(manifest)

        assert progress.files_total == 2
        assert progress.files_done == 2
        assert progress.total_bytes == 30


class TestRetryPolicy:

    def test_corruption_exhausts_attempts(self, install):
        manifest = Manifest.from_entries([file_entry("x.bin", b"good")])
        engine = FakeEngine({f"{CDN}/x.bin": b"corrupt"})

        with pytest.raises(DownloadExhaustedError) as exc_info:
            make_orchestrator(install, engine).sync(manifest)

        assert exc_info.value.path == "x.bin"
        assert exc_info.value.attempts == 2
        assert "x.bin" in str(exc_info.value)
        assert engine.calls == [(f"{CDN}/x.bin", 1), (f"{CDN}/x.bin", 2)]
        assert not (install / "x.bin").exists()

    def test_recovers_on_second_attempt(self, install):
        manifest = Manifest.from_entries([file_entry("x.bin", b"good")])
        engine = FakeEngine({f"{CDN}/x.bin": [b"corrupt", b"good"]})

        report = make_orchestrator(install, engine).sync(manifest)

        assert report.downloaded_files == ["x.bin"]
        assert (install / "x.bin").read_bytes() == b"good"

    def test_attempt_count_from_config(self, install):
        manifest = Manifest.from_entries([file_entry("x.bin", b"good")])
        engine = FakeEngine({f"{CDN}/x.bin": b"bad"})

        with pytest.raises(DownloadExhaustedError):
            make_orchestrator(install, engine, max_attempts=4).sync(manifest)
        assert [attempt for _, attempt in engine.calls] == [1, 2, 3, 4]

    def test_client_error_not_retried(self, install):
        manifest = Manifest.from_entries([file_entry("x.bin", b"good")])
        engine = FakeEngine()

        with pytest.raises(DownloadExhaustedError) as exc_info:
            make_orchestrator(install, engine).sync(manifest)

        assert len(engine.calls) == 1
        assert isinstance(exc_info.value.last_error, HttpStatusError)

    def test_server_error_retried(self, install):
        url = f"{CDN}/x.bin"
        manifest = Manifest.from_entries([file_entry("x.bin", b"good")])
        engine = FakeEngine({url: [HttpStatusError(url, 503), b"good"]})

        make_orchestrator(install, engine).sync(manifest)

        assert engine.calls == [(url, 1), (url, 2)]

    def test_existing_file_kept_when_download_cannot_connect(self, install):
        url = f"{CDN}/game.exe"
        write(install / "game.exe", b"old but working")
        manifest = Manifest.from_entries([file_entry("game.exe", b"new build")])
        engine = FakeEngine({url: NetworkError(url, "download", "connection refused")})

        with pytest.raises(DownloadExhaustedError):
            make_orchestrator(install, engine).sync(manifest)

        assert (install / "game.exe").read_bytes() == b"old but working"
        assert not (install / "game.exe.part").exists()

    def test_existing_file_kept_when_download_is_corrupt(self, install):
        write(install / "game.exe", b"old but working")
        manifest = Manifest.from_entries([file_entry("game.exe", b"new build")])
        engine = FakeEngine({f"{CDN}/game.exe": b"truncated"})

        with pytest.raises(DownloadExhaustedError):
            make_orchestrator(install, engine).sync(manifest)

        assert (install / "game.exe").read_bytes() == b"old but working"
        assert list(install.glob("*.part")) == []

    def test_download_written_beside_target_then_moved(self, install):
        write(install / "x.bin", b"old")
        manifest = Manifest.from_entries([file_entry("x.bin", b"new")])
        written_to = []

        class RecordingEngine(FakeEngine):
            async def fetch(self, url, destination, **kwargs):
                written_to.append(destination.name)
                return await super().fetch(url, destination, **kwargs)

        make_orchestrator(install, RecordingEngine({f"{CDN}/x.bin": b"new"})).sync(manifest)

        assert written_to == ["x.bin.part"]
        assert (install / "x.bin").read_bytes() == b"new"
        assert not (install / "x.bin.part").exists()

    def test_interrupt_persists_cache(self, install):
        write(install / "big.bin", b"big" * 1000)
        manifest = Manifest.from_entries([
            file_entry("big.bin", b"big" * 1000),
            file_entry("new.bin", b"new"),
        ])
        seen = []
        orchestrator = make_orchestrator(install, FakeEngine({f"{CDN}/new.bin": KeyboardInterrupt()}))
        orchestrator.on_state = seen.append

        with pytest.raises(KeyboardInterrupt):
            orchestrator.sync(manifest)

        assert seen[-1] == SyncState.ABORTED
        assert HashCache.load(install / "launcher").get("big.bin") == hash_bytes(b"big" * 1000)
        assert not (install / "launcher" / "sync.lock").exists()
        assert not (install / "new.bin.part").exists()

    def test_abort_persists_cache_and_releases_lock(self, install):
        write(install / "a.bin", b"a")
        manifest = Manifest.from_entries([file_entry("a.bin", b"a"), file_entry("b.bin", b"b")])
        seen = []
        orchestrator = make_orchestrator(install, FakeEngine())
        orchestrator.on_state = seen.append

        with pytest.raises(DownloadExhaustedError):
            orchestrator.sync(manifest)

        assert seen[-1] == SyncState.ABORTED
        assert HashCache.load(install / "launcher").get("a.bin") == hash_bytes(b"a")
        assert not (install / "launcher" / "sync.lock").exists()


class TestCacheBehavior:

    def test_cached_hash_is_trusted(self, install):
        data = b"expected"
        write(install / "x.bin", b"edited locally")
        HashCache({"x.bin": hash_bytes(data)}).save(install / "launcher")
        manifest = Manifest.from_entries([file_entry("x.bin", data)])
        engine = FakeEngine({f"{CDN}/x.bin": data})

        assert make_orchestrator(install, engine).sync(manifest).up_to_date
        assert engine.calls == []

    def test_force_recheck_ignores_cache(self, install):
        data = b"expected"
        write(install / "x.bin", b"edited locally")
        HashCache({"x.bin": hash_bytes(data)}).save(install / "launcher")
        manifest = Manifest.from_entries([file_entry("x.bin", data)])
        engine = FakeEngine({f"{CDN}/x.bin": data})

        report = make_orchestrator(install, engine, force_recheck=True).sync(manifest)

        assert report.downloaded_files == ["x.bin"]
        assert (install / "x.bin").read_bytes() == data

    def test_verify_cached_hashes(self, install):
        data = b"expected"
        write(install / "x.bin", b"edited locally")
        HashCache({"x.bin": hash_bytes(data)}).save(install / "launcher")
        manifest = Manifest.from_entries([file_entry("x.bin", data)])
        engine = FakeEngine({f"{CDN}/x.bin": data})

        report = make_orchestrator(install, engine, verify_cached_hashes=True).sync(manifest)

        assert report.downloaded_files == ["x.bin"]

    def test_corrupt_cache_file_tolerated(self, install):
        data = b"x"
        write(install / "x.bin", data)
        write(install / "launcher" / "cache.json", b"{corrupt")
        manifest = Manifest.from_entries([file_entry("x.bin", data)])

        report = make_orchestrator(install, FakeEngine()).sync(manifest)

        assert report.up_to_date
        cached = json.loads((install / "launcher" / "cache.json").read_text())
        assert cached == {"x.bin": hash_bytes(data)}


class TestArchives:

    MEMBERS = {"data/a.bin": b"aaa", "data/b.bin": b"bbbb"}

    def _archive(self, temp_dir):
        path = make_zip(temp_dir / "publish" / "data.zip", self.MEMBERS)
        return path.read_bytes(), archive_entry(path, self.MEMBERS)

    def test_download_and_extract_then_idempotent(self, temp_dir, install):
        payload, archive = self._archive(temp_dir)
        manifest = Manifest.from_entries(archives=[archive])
        engine = FakeEngine({f"{CDN}/data.zip": payload})

        report = make_orchestrator(install, engine).sync(manifest)

        assert report.downloaded_archives == ["data.zip"]
        assert sorted(report.extracted) == sorted(self.MEMBERS)
        for name, data in self.MEMBERS.items():
            assert (install / name).read_bytes() == data
        assert not (install / "launcher" / "data.zip").exists()
        assert SyncState.EXTRACTING in report.states

        cache_file = install / "launcher" / "cache.json"
        cache_before = json.loads(cache_file.read_text())
        assert set(cache_before) == set(self.MEMBERS)

        second = make_orchestrator(install, engine).sync(manifest)
        assert second.up_to_date
        assert len(engine.calls) == 1
        assert json.loads(cache_file.read_text()) == cache_before

    def test_one_stale_member_refetches_archive(self, temp_dir, install):
        payload, archive = self._archive(temp_dir)
        manifest = Manifest.from_entries(archives=[archive])
        engine = FakeEngine({f"{CDN}/data.zip": payload})
        make_orchestrator(install, engine).sync(manifest)

        (install / "data" / "b.bin").unlink()
        report = make_orchestrator(install, engine).sync(manifest)

        assert report.extracted == ["data/b.bin"]
        assert (install / "data" / "b.bin").read_bytes() == b"bbbb"

    def test_reuses_verified_download(self, temp_dir, install):
        payload, archive = self._archive(temp_dir)
        write(install / "launcher" / "data.zip", payload)
        engine = FakeEngine()
        progress = SyncProgress()

        report = make_orchestrator(install, engine, progress=progress).sync(
            Manifest.from_entries(archives=[archive])
        )

        assert engine.calls == []
        assert report.downloaded_archives == []
        assert sorted(report.extracted) == sorted(self.MEMBERS)
        assert progress.total_pos == progress.total_bytes == archive.size
        assert progress.total_percent == 100.0
        assert progress.files_done == 1

    def test_corrupt_archive_download(self, temp_dir, install):
        _, archive = self._archive(temp_dir)
        engine = FakeEngine({f"{CDN}/data.zip": b"not the archive"})

        with pytest.raises(DownloadExhaustedError, match="data.zip"):
            make_orchestrator(install, engine).sync(Manifest.from_entries(archives=[archive]))
        assert not (install / "launcher" / "data.zip").exists()


class TestReconciliation:

    def test_rename_before_diff_avoids_download(self, install):
        data = b"plugin"
        write(install / "old" / "plugin.dll", data)
        manifest = Manifest.from_entries(
            [file_entry("plugins/plugin.dll", data)],
            reconciliation=ReconciliationSpec(renames=(("old/plugin.dll", "plugins/plugin.dll"),)),
        )
        engine = FakeEngine()

        report = make_orchestrator(install, engine).sync(manifest)

        assert report.up_to_date
        assert report.renamed == [("old/plugin.dll", "plugins/plugin.dll")]
        assert engine.calls == []

    def test_deletions_run_when_up_to_date(self, install):
        write(install / "x.bin", b"x")
        write(install / "obsolete.dll", b"o")
        manifest = Manifest.from_entries([file_entry("x.bin", b"x")])
        extra = ReconciliationSpec(deletions=("obsolete.dll",))

        report = make_orchestrator(install, FakeEngine()).sync(manifest, reconciliation=extra)

        assert report.deleted == ["obsolete.dll"]
        assert not (install / "obsolete.dll").exists()
        assert report.states[-3:] == [
            SyncState.RECONCILING_DELETIONS, SyncState.PERSISTING, SyncState.DONE,
        ]


class TestLock:

    def test_held_lock_refuses_sync(self, install):
        lock = install / "launcher" / "sync.lock"
        write(lock, str(os.getpid()).encode())

        with pytest.raises(SyncLockedError):
            make_orchestrator(install, FakeEngine()).sync(Manifest.from_entries())
        assert lock.exists()

    @pytest.mark.skipif(os.name == "nt", reason="stale lock detection is POSIX only")
    def test_stale_lock_replaced(self, install):
        write(install / "launcher" / "sync.lock", b"999999999")

        report = make_orchestrator(install, FakeEngine()).sync(Manifest.from_entries())

        assert report.state == SyncState.DONE
        assert not (install / "launcher" / "sync.lock").exists()
