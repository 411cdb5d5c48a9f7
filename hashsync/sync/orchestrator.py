"""
Sync orchestration for HashSync.

Drives one pass over an install directory:

    renames -> diff -> (up to date | download files, download + extract
    archives) -> deletions -> persist hash cache

The hash cache is saved whether the pass finishes or aborts, so work done
before a failure is not repeated on the next run.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..config import SyncConfig
from ..core.constants import PARTIAL_SUFFIX
from ..core.files import remove_path, resolve_within
from ..core.formatting import format_size
from ..core.hashing import hash_file, hashes_match
from ..core.progress import SyncProgress
from ..errors import (
    DownloadExhaustedError,
    FileSystemError,
    HttpStatusError,
    IntegrityError,
    NetworkError,
    SyncError,
)
from ..manifest import ArchiveEntry, FileEntry, Manifest, ReconciliationSpec, UrlResolver
from .cache import HashCache
from .differ import diff
from .downloader import DownloadEngine
from .extractor import extract
from .lock import SyncLock
from .reconciler import apply_deletions, apply_renames

logger = logging.getLogger(__name__)


class SyncState(Enum):
    RECONCILING_RENAMES = "reconciling_renames"
    DIFFING = "diffing"
    UP_TO_DATE = "up_to_date"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    RECONCILING_DELETIONS = "reconciling_deletions"
    PERSISTING = "persisting"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class SyncReport:
    """What one sync pass changed."""
    state: SyncState = SyncState.RECONCILING_RENAMES
    up_to_date: bool = False
    renamed: List[Tuple[str, str]] = field(default_factory=list)
    downloaded_files: List[str] = field(default_factory=list)
    downloaded_archives: List[str] = field(default_factory=list)
    extracted: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    bytes_downloaded: int = 0
    states: List[SyncState] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.renamed or self.downloaded_files or self.downloaded_archives
            or self.extracted or self.deleted
        )


EngineFactory = Callable[[SyncConfig, Optional[SyncProgress]], DownloadEngine]
StateCallback = Callable[[SyncState], None]


class SyncOrchestrator:
    """
    Runs sync passes for one install directory.

    Args:
        config: Settings, including install_dir and the retry policy
        resolver: Turns manifest locators into download URLs
        engine_factory: Builds the download engine; defaults to DownloadEngine
        progress: Optional progress state shared with the engine
        on_state: Called with each state the pass enters
    """

    def __init__(
        self,
        config: SyncConfig,
        resolver: UrlResolver,
        engine_factory: Optional[EngineFactory] = None,
        progress: Optional[SyncProgress] = None,
        on_state: Optional[StateCallback] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.engine_factory = engine_factory or DownloadEngine
        self.progress = progress
        self.on_state = on_state
        self._report: Optional[SyncReport] = None

    def _enter(self, state: SyncState):
        report = self._report
        report.state = state
        report.states.append(state)
        logger.debug("Sync state: %s", state.value)
        if self.on_state:
            self.on_state(state)

    def _load_cache(self) -> HashCache:
        if self.config.force_recheck:
            logger.info("Forced recheck, ignoring saved hash cache")
            return HashCache()
        return HashCache.load(self.config.metadata_path)

    def sync(self, manifest: Manifest, reconciliation: Optional[ReconciliationSpec] = None) -> SyncReport:
        """Run one pass to completion. Raises SyncError subclasses on failure."""
        return asyncio.run(self.sync_async(manifest, reconciliation))

    async def sync_async(
        self,
        manifest: Manifest,
        reconciliation: Optional[ReconciliationSpec] = None,
    ) -> SyncReport:
        install_dir = self.config.install_dir
        metadata_dir = self.config.metadata_path
        spec = manifest.reconciliation.merged(reconciliation)
        self._report = report = SyncReport()

        with SyncLock(metadata_dir):
            cache = self._load_cache()
            try:
                self._enter(SyncState.RECONCILING_RENAMES)
                report.renamed = apply_renames(spec, install_dir, cache)

                self._enter(SyncState.DIFFING)
                result = diff(
                    manifest, install_dir, cache, self.progress,
                    verify_cached=self.config.verify_cached_hashes,
                )

                if result.up_to_date:
                    report.up_to_date = True
                    self._enter(SyncState.UP_TO_DATE)
                    logger.info("All files are up to date")
                else:
                    await self._download_stale(result.stale_files, result.stale_archives, cache, report)

                self._enter(SyncState.RECONCILING_DELETIONS)
                report.deleted = apply_deletions(spec, install_dir, cache)

            except BaseException as e:
                # Interrupts and unexpected errors still keep the hashes computed so far
                self._enter(SyncState.ABORTED)
                logger.error("Sync aborted: %s", str(e) or type(e).__name__)
                cache.save(metadata_dir)
                raise

            self._enter(SyncState.PERSISTING)
            cache.save(metadata_dir)
            self._enter(SyncState.DONE)

        logger.info(
            "Sync finished: %d files, %d archives, %s downloaded",
            len(report.downloaded_files), len(report.downloaded_archives),
            format_size(report.bytes_downloaded),
        )
        return report

    async def _download_stale(
        self,
        files: List[FileEntry],
        archives: List[ArchiveEntry],
        cache: HashCache,
        report: SyncReport,
    ):
        total_bytes = sum(f.size for f in files) + sum(a.size for a in archives)
        if self.progress:
            self.progress.start_downloads(total_bytes, len(files) + len(archives))
        logger.info("Downloading %d items (%s)", len(files) + len(archives), format_size(total_bytes))

        self._enter(SyncState.DOWNLOADING)
        offset = 0
        async with self.engine_factory(self.config, self.progress) as engine:
            for entry in files:
                destination = resolve_within(self.config.install_dir, entry.relative_path)
                digest, written = await self._fetch_verified(engine, entry, destination, offset)
                cache.put(entry.relative_path, digest)
                report.downloaded_files.append(entry.relative_path)
                report.bytes_downloaded += written
                offset += entry.size
                if self.progress:
                    self.progress.finish_file()

            for archive in archives:
                if report.state != SyncState.DOWNLOADING:
                    self._enter(SyncState.DOWNLOADING)
                archive_path = self.config.metadata_path / archive.download_name
                if self._already_downloaded(archive_path, archive):
                    logger.info("Archive %s already downloaded, reusing it", archive.archive_name)
                    if self.progress:
                        self.progress.start_file(archive.archive_name, archive.size, offset)
                        self.progress.set_file_position(archive.size)
                else:
                    _, written = await self._fetch_verified(engine, archive.as_file(), archive_path, offset)
                    report.downloaded_archives.append(archive.archive_name)
                    report.bytes_downloaded += written
                offset += archive.size
                if self.progress:
                    self.progress.finish_file()

                self._enter(SyncState.EXTRACTING)
                extracted = extract(
                    archive_path, archive.members, self.config.install_dir,
                    archive_name=archive.archive_name, cache=cache, progress=self.progress,
                )
                report.extracted.extend(extracted.extracted)

    @staticmethod
    def _already_downloaded(path: Path, archive: ArchiveEntry) -> bool:
        if not path.is_file():
            return False
        try:
            return hashes_match(hash_file(path), archive.content_hash)
        except OSError as e:
            raise FileSystemError(path, "hash verification", str(e)) from e

    async def _fetch_verified(self, engine, entry: FileEntry, destination: Path, offset: int):
        """
        Download entry to destination and check its hash, retrying per config.

        Each attempt writes to a sibling .part file that replaces destination
        only once its hash matches, so an existing file survives a failed
        download untouched. Later attempts bypass intermediate caches. Client
        errors other than 408/429 are not retried.

        Returns:
            (hash, bytes written) of the verified download.
        """
        url = self.resolver.resolve(entry.locator)
        partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
        max_attempts = self.config.max_attempts
        last_error: Optional[SyncError] = None

        try:
            for attempt in range(1, max_attempts + 1):
                try:
                    written = await engine.fetch(
                        url, partial,
                        expected_size=entry.size,
                        resume_offset=offset,
                        attempt=attempt,
                        display_name=entry.relative_path,
                    )
                    try:
                        digest = hash_file(partial)
                    except OSError as e:
                        raise FileSystemError(partial, "hash verification", str(e)) from e
                    if hashes_match(digest, entry.content_hash):
                        try:
                            os.replace(partial, destination)
                        except OSError as e:
                            raise FileSystemError(destination, "replace", str(e)) from e
                        return digest, written
                    last_error = IntegrityError(entry.relative_path, entry.content_hash, digest)
                except HttpStatusError as e:
                    last_error = e
                    if not e.retryable:
                        raise DownloadExhaustedError(entry.relative_path, attempt, e) from e
                except NetworkError as e:
                    last_error = e

                logger.warning("Attempt %d/%d for %s failed: %s", attempt, max_attempts, entry.relative_path, last_error)
                remove_path(partial)
                if attempt < max_attempts:
                    if self.progress:
                        self.progress.message(f"Retrying {entry.relative_path} in {self.config.retry_delay:g}s")
                    await asyncio.sleep(self.config.retry_delay)
        finally:
            remove_path(partial)

        raise DownloadExhaustedError(entry.relative_path, max_attempts, last_error) from last_error
