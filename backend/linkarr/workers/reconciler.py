"""
Reconciler

Background worker that keeps every destination tree in sync with its source tree.

Each pass walks the configured folder mappings in order:
    1. Source folder gone        -> clean up every row under it, skip the mapping
    2. Top-level folder removed  -> clean up its rows, tell Plex
    3. Tracked file removed      -> remove its link, queue the row for deletion
    4. New files                 -> grouped by folder, processed in paced batches
    5. Each new file             -> Working row, identify, link, final status
    6. Outdated rows             -> identified again (detection version bump)
    7. After each folder group   -> Plex scan of the destination paths it produced
    8. Mapping done              -> dead links and empty directories swept
    9. Pass done                 -> queued row deletions applied in one transaction

Features:
- Bounded per-file concurrency (asyncio.Semaphore)
- Graceful shutdown: stop() wakes every wait and cancels the pass in flight;
  a file interrupted mid-processing is untracked and found again next pass
- Operator actions (manual match, relink, delete, cleanup) never overlap a pass
- Per-file errors never abort the pass, per-mapping errors only skip the mapping
- Blocking filesystem and database work runs through asyncio.to_thread()
"""

import asyncio
import logging
import os
import time
from collections import OrderedDict
from datetime import datetime
from typing import Optional, List, Dict, Set, Callable, Iterable

from linkarr.config import Config, FolderMapping, load_folder_mappings
from linkarr.models.tracked_file import FileStatus, MediaType, TrackedFile, TrackedFileRef
from linkarr.schemas.media_info import MediaInfo
from linkarr.services.exceptions import IdentificationError, SymlinkError, DuplicateLinkError
from linkarr.services.media_identifier import MediaIdentifier
from linkarr.services.plex_notifier import PlexNotifier, get_plex_notifier
from linkarr.services.structured_logging import CorrelationContext
from linkarr.services.symlink_manager import SymlinkManager, get_symlink_manager
from linkarr.services.tracking_store import TrackingStore, get_tracking_store

logger = logging.getLogger(__name__)


def _list_subfolders(folder: str) -> Set[str]:
    """Absolute paths of the immediate subfolders of folder (sync, runs in thread)."""
    try:
        with os.scandir(folder) as entries:
            return {
                os.path.join(folder, entry.name)
                for entry in entries
                if entry.is_dir(follow_symlinks=False)
            }
    except FileNotFoundError:
        return set()


def _walk_media_files(folder: str, extensions: Iterable[str]) -> List[str]:
    """Sorted media files below folder, recursively (sync, runs in thread)."""
    extensions = tuple(ext.lower() for ext in extensions)
    found = []
    for dirpath, dirnames, filenames in os.walk(folder):
        dirnames.sort()
        for name in filenames:
            if extensions and not name.lower().endswith(extensions):
                continue
            path = os.path.join(dirpath, name)
            if os.path.isfile(path):
                found.append(path)
    found.sort()
    return found


def _missing_sources(refs: List[TrackedFileRef]) -> List[TrackedFileRef]:
    """Rows whose source file no longer exists (sync, runs in thread)."""
    return [ref for ref in refs if not os.path.exists(ref.source_file)]


def _folder_prefix(folder: str) -> str:
    """Prefix matching everything under folder but not its siblings ("movies" vs "movies2")."""
    return folder.rstrip(os.sep) + os.sep


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class Reconciler:
    """
    Periodic reconciliation of folder mappings.

    Keeps, per mapping, the set of top-level source folders seen at the end of
    the previous pass, so a folder removed between two passes is detected even
    when none of its files were tracked yet.
    """

    def __init__(
        self,
        mappings: List[FolderMapping],
        store: Optional[TrackingStore] = None,
        identifier: Optional[MediaIdentifier] = None,
        symlinks: Optional[SymlinkManager] = None,
        notifier: Optional[PlexNotifier] = None,
        poll_interval: Optional[float] = None,
        error_backoff: Optional[float] = None,
        batch_size: Optional[int] = None,
        batch_pause: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        new_folder_delay: Optional[float] = None,
        media_extensions: Optional[List[str]] = None,
        detection_version: Optional[int] = None,
        redetect_scope: Optional[str] = None,
        cache_cleanup: Optional[Callable[[], int]] = None
    ):
        """
        Initialize the reconciler.

        Args:
            mappings: Folder mappings, processed in this order
            store: Tracking store
            identifier: Media identifier
            symlinks: Symlink manager
            notifier: Plex notifier
            poll_interval: Seconds between passes
            error_backoff: Seconds to wait after a failed pass
            batch_size: New files per batch
            batch_pause: Seconds between batches
            max_concurrent: Concurrent file workers (clamped to 1..4)
            new_folder_delay: Seconds to wait before the first files of a new folder
            media_extensions: Extensions considered media (empty = every file)
            detection_version: Detection version applied at startup
            redetect_scope: "failed" or "all"
            cache_cleanup: Callable purging expired provider cache entries
        """
        self.mappings = list(mappings)
        self.store = store or get_tracking_store()
        self.identifier = identifier or MediaIdentifier()
        self.symlinks = symlinks or get_symlink_manager()
        self.notifier = notifier or get_plex_notifier()
        self.poll_interval = Config.POLLING_INTERVAL if poll_interval is None else poll_interval
        self.error_backoff = Config.ERROR_BACKOFF if error_backoff is None else error_backoff
        self.batch_size = max(1, batch_size or Config.BATCH_SIZE)
        self.batch_pause = Config.BATCH_PAUSE if batch_pause is None else batch_pause
        self.max_concurrent = max(1, min(4, max_concurrent or Config.MAX_CONCURRENT_FILES))
        self.new_folder_delay = Config.PROCESS_NEW_FOLDER_DELAY if new_folder_delay is None else new_folder_delay
        self.media_extensions = Config.MEDIA_EXTENSIONS if media_extensions is None else media_extensions
        self.detection_version = Config.DETECTION_VERSION if detection_version is None else detection_version
        self.redetect_scope = redetect_scope or Config.REDETECT_SCOPE
        self.cache_cleanup = cache_cleanup

        self._known_folders: Dict[str, Set[str]] = {
            mapping.source_folder: _list_subfolders(mapping.source_folder)
            for mapping in self.mappings
        }

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._active_files: Set[str] = set()
        # Held by a pass and by operator actions that write to destination trees
        self._lock = asyncio.Lock()

        self._pass_count = 0
        self._last_pass_started: Optional[datetime] = None
        self._last_pass_finished: Optional[datetime] = None
        self._last_pass_duration: Optional[float] = None
        self._last_error: Optional[str] = None

    # ============================================================================
    # Lifecycle
    # ============================================================================

    async def start(self) -> None:
        """Schedule outdated rows for re-detection and start the loop."""
        if self._running:
            logger.warning("Reconciler already running")
            return

        scheduled = await asyncio.to_thread(
            self.store.raise_target_version, self.detection_version, self.redetect_scope
        )
        if scheduled:
            logger.info(
                f"{scheduled} row(s) scheduled for re-detection "
                f"(version {self.detection_version}, scope={self.redetect_scope})"
            )

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Reconciler started ({len(self.mappings)} mapping(s), "
            f"interval={self.poll_interval}s, max_concurrent={self.max_concurrent})"
        )

    async def stop(self) -> None:
        """Stop the loop; a pass in flight is cancelled and its deletions abandoned."""
        if not self._running:
            return

        logger.info("Stopping reconciler...")
        self._running = False
        self._stop_event.set()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Reconciler stopped")

    async def run_forever(self) -> None:
        """Start and block until stop() is called (headless use, without the API)."""
        await self.start()
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not self._stop_event.is_set():
                raise

    @property
    def is_running(self) -> bool:
        return self._running

    async def _wait(self, seconds: float) -> bool:
        """Sleep unless stopped. Returns True when stop was requested."""
        if self._stop_event.is_set():
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run_loop(self) -> None:
        """Main loop: one pass, then wait, until stopped."""
        logger.info("Reconciler loop started")

        while not self._stop_event.is_set():
            try:
                await self.run_pass()
                delay = self.poll_interval
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._last_error = str(e)
                logger.error(f"✗ Reconciliation pass failed: {e}", exc_info=True)
                delay = self.error_backoff

            if await self._wait(delay):
                break

    # ============================================================================
    # Pass
    # ============================================================================

    async def run_pass(self) -> None:
        """Reconcile every mapping once, then apply the queued deletions."""
        async with self._lock:
            await self._run_pass()

    async def _run_pass(self) -> None:
        started = time.monotonic()
        self._last_pass_started = datetime.utcnow()
        pending_deletions: List[int] = []

        for mapping in self.mappings:
            if self._stop_event.is_set():
                logger.info("Stop requested, abandoning pass")
                return
            try:
                with CorrelationContext(mapping=mapping.source_folder):
                    await self._reconcile_mapping(mapping, pending_deletions)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"✗ Mapping {mapping.source_folder} failed: {e}", exc_info=True)

        if self._stop_event.is_set():
            logger.info("Stop requested, abandoning pass")
            return

        if pending_deletions:
            deleted = await asyncio.to_thread(self.store.delete_batch, pending_deletions)
            logger.info(f"Removed {deleted} tracked file(s) whose source is gone")

        if self.cache_cleanup:
            try:
                purged = await asyncio.to_thread(self.cache_cleanup)
                if purged:
                    logger.debug(f"Purged {purged} expired provider cache entries")
            except Exception as e:
                logger.warning(f"⚠ Provider cache cleanup failed: {e}")

        self._pass_count += 1
        self._last_pass_finished = datetime.utcnow()
        self._last_pass_duration = time.monotonic() - started
        self._last_error = None
        logger.debug(f"Pass {self._pass_count} finished in {self._last_pass_duration:.2f}s")

    async def _reconcile_mapping(self, mapping: FolderMapping, pending_deletions: List[int]) -> None:
        source = mapping.source_folder
        prefix = _folder_prefix(source)
        previous_folders = self._known_folders.get(source, set())

        if not await asyncio.to_thread(os.path.isdir, source):
            refs = await asyncio.to_thread(self.store.find_by_path_prefix, prefix)
            logger.warning(f"⚠ Source folder missing: {source} ({len(refs)} tracked file(s) to clean up)")
            await self._clean_up_refs(mapping, refs, pending_deletions)
            self._known_folders[source] = set()
            return

        released = await asyncio.to_thread(
            self.store.release_stale_working, prefix, set(self._active_files)
        )
        if released:
            logger.warning(f"⚠ Released {released} file(s) left in Working by an interrupted pass under {source}")

        current_folders = await asyncio.to_thread(_list_subfolders, source)
        queued: Set[int] = set()

        # Top-level folders removed since the previous pass
        for folder in sorted(previous_folders - current_folders):
            refs = await asyncio.to_thread(self.store.find_by_path_prefix, _folder_prefix(folder))
            logger.info(f"Folder removed: {folder} ({len(refs)} tracked file(s))")
            changed = await self._clean_up_refs(mapping, refs, pending_deletions)
            queued.update(ref.id for ref in refs)
            await self._notify(changed)

        # Tracked files removed individually
        refs = await asyncio.to_thread(self.store.find_by_path_prefix, prefix)
        refs = [ref for ref in refs if ref.id not in queued]
        missing = await asyncio.to_thread(_missing_sources, refs)
        if missing:
            logger.info(f"{len(missing)} tracked file(s) no longer present under {source}")
            changed = await self._clean_up_refs(mapping, missing, pending_deletions)
            queued.update(ref.id for ref in missing)
            await self._notify(changed)

        tracked = {ref.source_file for ref in refs}

        # New files
        files = await asyncio.to_thread(_walk_media_files, source, self.media_extensions)
        groups: "OrderedDict[str, List[str]]" = OrderedDict()
        for path in files:
            if path not in tracked:
                groups.setdefault(os.path.dirname(path), []).append(path)

        if groups:
            logger.info(f"{sum(len(g) for g in groups.values())} new file(s) in {len(groups)} folder(s) under {source}")

        waited_for_new_folders = False
        for folder, paths in groups.items():
            top_level = self._top_level_folder(source, folder)
            is_new_folder = top_level != source and top_level not in previous_folders
            if self.new_folder_delay > 0 and is_new_folder and not waited_for_new_folders:
                waited_for_new_folders = True
                logger.debug(f"New folder {folder}, waiting {self.new_folder_delay}s before processing")
                if await self._wait(self.new_folder_delay):
                    return

            produced: List[str] = []
            for index, batch in enumerate(_chunks(paths, self.batch_size)):
                if index and await self._wait(self.batch_pause):
                    return
                results = await asyncio.gather(
                    *(self._process_file(mapping, path) for path in batch),
                    return_exceptions=True
                )
                produced.extend(self._collect_links(batch, results))
            await self._notify(self._changed_paths(mapping, produced))

            if self._stop_event.is_set():
                return

        # Rows due for re-detection
        outdated = await asyncio.to_thread(self.store.find_pending_redetection, prefix)
        outdated = [row for row in outdated if row.id not in queued]
        if outdated:
            logger.info(f"Re-detecting {len(outdated)} file(s) under {source}")
            produced = []
            for index, batch in enumerate(_chunks(outdated, self.batch_size)):
                if index and await self._wait(self.batch_pause):
                    return
                results = await asyncio.gather(
                    *(self._redetect_row(mapping, row) for row in batch),
                    return_exceptions=True
                )
                produced.extend(self._collect_links([row.source_file for row in batch], results))
            await self._notify(self._changed_paths(mapping, produced))

        if await asyncio.to_thread(os.path.isdir, mapping.destination_folder):
            await asyncio.to_thread(self.symlinks.sweep_dead_links, mapping.destination_folder)

        self._known_folders[source] = current_folders

    # ============================================================================
    # Per file
    # ============================================================================

    async def _process_file(self, mapping: FolderMapping, source_file: str) -> Optional[str]:
        """Track, identify and link one new file. Returns the link created, if any."""
        async with self._semaphore:
            self._active_files.add(source_file)
            try:
                with CorrelationContext(source_file=source_file, mapping=mapping.source_folder):
                    row = await asyncio.to_thread(self.store.upsert_working, source_file, mapping.media_type)
                    if row is None:
                        logger.debug(f"Already tracked: {source_file}")
                        return None
                    try:
                        return await self._identify_and_link(mapping, source_file)
                    except asyncio.CancelledError:
                        # Untrack so the next pass discovers the file again
                        await asyncio.shield(asyncio.to_thread(self.store.delete_batch, [row.id]))
                        logger.info(f"Processing of {source_file} interrupted, row released")
                        raise
            finally:
                self._active_files.discard(source_file)

    async def _redetect_row(self, mapping: FolderMapping, row: TrackedFile) -> Optional[str]:
        async with self._semaphore:
            self._active_files.add(row.source_file)
            try:
                with CorrelationContext(source_file=row.source_file, mapping=mapping.source_folder):
                    current_dest = row.dest_file if row.status == FileStatus.SUCCESS else None
                    return await self._identify_and_link(
                        mapping,
                        row.source_file,
                        current_dest=current_dest,
                        detection_version=row.target_detection_version
                    )
            finally:
                self._active_files.discard(row.source_file)

    async def _identify_and_link(
        self,
        mapping: FolderMapping,
        source_file: str,
        current_dest: Optional[str] = None,
        detection_version: Optional[int] = None
    ) -> Optional[str]:
        try:
            media_info = await self.identifier.identify(source_file, mapping.media_type)
        except IdentificationError as e:
            await self._record_failure(
                mapping, source_file, current_dest, e.message, detection_version,
                e.media_type or mapping.media_type
            )
            return None
        except Exception as e:
            logger.error(f"✗ Unexpected error identifying {source_file}: {e}", exc_info=True)
            await self._record_failure(
                mapping, source_file, current_dest, f"Unexpected error: {e}",
                detection_version, mapping.media_type
            )
            return None

        return await self._link_identified(mapping, source_file, media_info, current_dest, detection_version)

    async def _link_identified(
        self,
        mapping: FolderMapping,
        source_file: str,
        media_info: MediaInfo,
        current_dest: Optional[str],
        detection_version: Optional[int]
    ) -> Optional[str]:
        try:
            if current_dest:
                dest_file = await asyncio.to_thread(
                    self.symlinks.recreate_link, current_dest, source_file,
                    mapping.destination_folder, media_info, media_info.media_type
                )
            else:
                dest_file = await asyncio.to_thread(
                    self.symlinks.create_link, source_file,
                    mapping.destination_folder, media_info, media_info.media_type
                )
        except DuplicateLinkError as e:
            logger.warning(f"⚠ Duplicate: {source_file} -> {e.dest_path}")
            await asyncio.to_thread(
                self.store.update_result, source_file, media_info, None,
                FileStatus.DUPLICATE, str(e), detection_version
            )
            return None
        except SymlinkError as e:
            logger.error(f"✗ Link failed for {source_file}: {e}")
            await asyncio.to_thread(
                self.store.update_result, source_file, media_info, None,
                FileStatus.FAILED, str(e), detection_version
            )
            return None

        await asyncio.to_thread(
            self.store.update_result, source_file, media_info, dest_file,
            FileStatus.SUCCESS, None, detection_version
        )
        return dest_file

    async def _record_failure(
        self,
        mapping: FolderMapping,
        source_file: str,
        current_dest: Optional[str],
        message: str,
        detection_version: Optional[int],
        media_type: MediaType
    ) -> None:
        logger.warning(f"✗ Could not identify {os.path.basename(source_file)}: {message}")
        if current_dest:
            try:
                await asyncio.to_thread(self.symlinks.remove_link, current_dest, mapping.destination_folder)
            except SymlinkError as e:
                logger.warning(f"⚠ {e}")
        await asyncio.to_thread(
            self.store.update_result, source_file, None, None, FileStatus.FAILED,
            message, detection_version, media_type
        )

    # ============================================================================
    # Cleanup and notification
    # ============================================================================

    async def _clean_up_refs(
        self,
        mapping: FolderMapping,
        refs: List[TrackedFileRef],
        pending_deletions: List[int]
    ) -> List[str]:
        """Remove the links of refs and queue their rows. Returns destination paths touched."""
        removed = []
        for ref in refs:
            if ref.dest_file:
                try:
                    if await asyncio.to_thread(self.symlinks.remove_link, ref.dest_file, mapping.destination_folder):
                        removed.append(ref.dest_file)
                except SymlinkError as e:
                    logger.warning(f"⚠ Could not remove link for {ref.source_file}: {e}")
            pending_deletions.append(ref.id)
        return self._changed_paths(mapping, removed)

    def _collect_links(self, sources: List[str], results: list) -> List[str]:
        links = []
        for source_file, result in zip(sources, results):
            if isinstance(result, Exception):
                logger.error(f"✗ Unexpected error processing {source_file}: {result}", exc_info=result)
            elif result:
                links.append(result)
        return links

    @staticmethod
    def _top_level_folder(source_folder: str, path: str) -> str:
        relative = os.path.relpath(path, source_folder)
        if relative == os.curdir:
            return source_folder
        return os.path.join(source_folder, relative.split(os.sep)[0])

    @staticmethod
    def _changed_paths(mapping: FolderMapping, dest_files: Iterable[str]) -> List[str]:
        """Top-level destination folders (movie or show folder) containing dest_files."""
        root = mapping.destination_folder
        paths = []
        for dest_file in dest_files:
            relative = os.path.relpath(dest_file, root)
            if relative.startswith(os.pardir):
                continue
            path = os.path.join(root, relative.split(os.sep)[0])
            if path not in paths:
                paths.append(path)
        return paths

    async def _notify(self, paths: List[str]) -> None:
        for path in paths:
            try:
                await self.notifier.notify_path_changed(path)
            except Exception as e:
                logger.warning(f"⚠ Plex notification failed for {path}: {e}")

    # ============================================================================
    # Manual match
    # ============================================================================

    def mapping_for(self, source_file: str) -> Optional[FolderMapping]:
        """Mapping whose source folder contains source_file."""
        for mapping in self.mappings:
            if source_file.startswith(_folder_prefix(mapping.source_folder)):
                return mapping
        return None

    async def apply_manual_match(
        self,
        tracked_file_id: int,
        tmdb_id: int,
        season_number: Optional[int] = None,
        episode_number: Optional[int] = None,
        episode_number2: Optional[int] = None
    ) -> Optional[TrackedFile]:
        """
        Identify a tracked file from provider ids given by an operator, then relink it.

        A season/episode pair means a TV episode, otherwise a movie.

        Returns:
            Updated row, or None if the row does not exist

        Raises:
            ValueError: The file is not under any configured mapping
        """
        media_type = MediaType.TV_SHOWS if season_number is not None else MediaType.MOVIES

        async with self._lock:
            row = await asyncio.to_thread(self.store.get_by_id, tracked_file_id)
            if row is None:
                return None

            dest_file = await self._link_by_id(
                row, media_type, tmdb_id, season_number, episode_number, episode_number2
            )
            if dest_file:
                logger.info(f"✓ Manual match applied: {row.source_file} -> {dest_file}")

            return await asyncio.to_thread(self.store.get_by_id, tracked_file_id)

    async def recreate_link(self, tracked_file_id: int) -> Optional[TrackedFile]:
        """
        Rebuild the link of an identified file from its stored provider ids.

        The provider is asked again for the canonical names, so a renamed title
        or episode moves the link to its new path.

        Returns:
            Updated row, or None if the row does not exist

        Raises:
            ValueError: The row has no identification, or is outside every mapping
        """
        async with self._lock:
            row = await asyncio.to_thread(self.store.get_by_id, tracked_file_id)
            if row is None:
                return None
            await self._recreate_row(row)
            return await asyncio.to_thread(self.store.get_by_id, tracked_file_id)

    async def recreate_all_links(self) -> int:
        """
        Rebuild the link of every Success row.

        Returns:
            Number of rows that are Success afterwards
        """
        async with self._lock:
            ids = await asyncio.to_thread(self.store.list_ids, FileStatus.SUCCESS)
            logger.info(f"Recreating links for {len(ids)} file(s)")
            success_count = 0
            for row in await asyncio.to_thread(self.store.get_many, ids):
                try:
                    if await self._recreate_row(row):
                        success_count += 1
                except ValueError as e:
                    logger.warning(f"⚠ Skipping {row.source_file}: {e}")
            logger.info(f"✓ Recreated {success_count}/{len(ids)} link(s)")
            return success_count

    async def delete_tracked_files(self, ids: List[int]) -> int:
        """
        Remove the links of these rows, then the rows, in one transaction.

        A source file that still exists is discovered again on the next pass.

        Returns:
            Number of rows deleted
        """
        async with self._lock:
            rows = await asyncio.to_thread(self.store.get_many, ids)
            changed: List[str] = []
            for row in rows:
                if not row.dest_file:
                    continue
                mapping = self.mapping_for(row.source_file)
                root = mapping.destination_folder if mapping else None
                try:
                    if await asyncio.to_thread(self.symlinks.remove_link, row.dest_file, root) and mapping:
                        changed.extend(self._changed_paths(mapping, [row.dest_file]))
                except SymlinkError as e:
                    logger.warning(f"⚠ Could not remove link for {row.source_file}: {e}")

            deleted = await asyncio.to_thread(self.store.delete_batch, [row.id for row in rows])
            logger.info(f"Deleted {deleted} tracked file(s)")
            await self._notify(list(dict.fromkeys(changed)))
            return deleted

    async def cleanup_dead_links(self) -> int:
        """
        Sweep dead links and empty directories from every destination folder.

        Returns:
            Number of dead links removed
        """
        async with self._lock:
            removed = 0
            for mapping in self.mappings:
                removed += await asyncio.to_thread(self.symlinks.sweep_dead_links, mapping.destination_folder)
            return removed

    async def _recreate_row(self, row: TrackedFile) -> bool:
        if row.tmdb_id is None or row.media_type not in (MediaType.MOVIES, MediaType.TV_SHOWS):
            raise ValueError(f"{row.source_file} has no identification to rebuild a link from")
        dest_file = await self._link_by_id(
            row, row.media_type, row.tmdb_id,
            row.season_number, row.episode_number, row.episode_number2
        )
        return dest_file is not None

    async def _link_by_id(
        self,
        row: TrackedFile,
        media_type: MediaType,
        tmdb_id: int,
        season_number: Optional[int],
        episode_number: Optional[int],
        episode_number2: Optional[int]
    ) -> Optional[str]:
        """Identify row from provider ids and relink it. Caller holds the lock."""
        mapping = self.mapping_for(row.source_file)
        if mapping is None:
            raise ValueError(f"{row.source_file} is not under any configured source folder")

        current_dest = row.dest_file if row.status == FileStatus.SUCCESS else None

        with CorrelationContext(source_file=row.source_file, mapping=mapping.source_folder):
            try:
                media_info = await self.identifier.identify_by_id(
                    media_type, tmdb_id, season_number, episode_number, episode_number2
                )
            except IdentificationError as e:
                await self._record_failure(
                    mapping, row.source_file, current_dest, e.message,
                    row.target_detection_version, media_type
                )
                return None

            dest_file = await self._link_identified(
                mapping, row.source_file, media_info, current_dest, row.target_detection_version
            )
            if dest_file:
                changed = [dest_file] if dest_file == current_dest else [current_dest, dest_file]
                await self._notify(self._changed_paths(mapping, [path for path in changed if path]))
            return dest_file

    # ============================================================================
    # Status
    # ============================================================================

    def get_status(self) -> dict:
        """Get reconciler status."""
        return {
            "running": self._running,
            "pass_count": self._pass_count,
            "last_pass_started": self._last_pass_started.isoformat() if self._last_pass_started else None,
            "last_pass_finished": self._last_pass_finished.isoformat() if self._last_pass_finished else None,
            "last_pass_duration": self._last_pass_duration,
            "last_error": self._last_error,
            "active_files": len(self._active_files),
            "max_concurrent": self.max_concurrent,
            "poll_interval": self.poll_interval,
            "detection_version": self.detection_version,
            "redetect_scope": self.redetect_scope,
            "mappings": [
                {
                    "source_folder": mapping.source_folder,
                    "destination_folder": mapping.destination_folder,
                    "media_type": mapping.media_type.value,
                    "known_folders": len(self._known_folders.get(mapping.source_folder, ())),
                }
                for mapping in self.mappings
            ],
        }


# Global reconciler instance
_reconciler: Optional[Reconciler] = None


def get_reconciler() -> Reconciler:
    """Get or create the global reconciler from configuration."""
    global _reconciler
    if _reconciler is None:
        from linkarr.services.tmdb_client import get_tmdb_client

        _reconciler = Reconciler(
            mappings=load_folder_mappings(),
            cache_cleanup=get_tmdb_client().cleanup_cache
        )
    return _reconciler


async def start_reconciler() -> Reconciler:
    """Start the global reconciler."""
    reconciler = get_reconciler()
    await reconciler.start()
    return reconciler


async def stop_reconciler() -> None:
    """Stop the global reconciler."""
    global _reconciler
    if _reconciler:
        await _reconciler.stop()
