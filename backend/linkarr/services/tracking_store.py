"""
Tracking Store for Linkarr

Durable record of every source file under reconciliation, on top of the
TrackedFile model. Each public method opens its own session and commits its own
transaction, so every operation is atomic on its own and the store can be
called from worker threads (asyncio.to_thread) concurrently.

Core operations used by the reconciler:
    - upsert_working(source_file, hint)   -> row, or None when already tracked
    - update_result(source_file, ...)      -> write identification + status
    - find_by_path_prefix(prefix)          -> (id, source_file, dest_file) projection
    - delete_batch(ids)                    -> all-or-nothing bulk delete
    - release_stale_working(prefix)        -> drop WORKING rows of an interrupted pass

Re-detection and reporting:
    - find_pending_redetection(prefix)
    - raise_target_version(version, scope) / reset_for_redetection(scope, ids)
    - get_stats(), list_files(...), get_by_id(id)
"""

import logging
from typing import Optional, List, Dict, Any, Callable, Iterable, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from linkarr.config import Config
from linkarr.database import SessionLocal
from linkarr.models.tracked_file import TrackedFile, TrackedFileRef, FileStatus, MediaType
from linkarr.schemas.media_info import MediaInfo

logger = logging.getLogger(__name__)

REDETECT_SCOPES = ("failed", "all")

SORTABLE_COLUMNS = {
    "created_at": TrackedFile.created_at,
    "updated_at": TrackedFile.updated_at,
    "source_file": TrackedFile.source_file,
    "title": TrackedFile.title,
}


def scope_statuses(scope: str) -> List[FileStatus]:
    """
    Statuses affected by a re-detection scope.

    Raises:
        ValueError: Unknown scope
    """
    if scope == "failed":
        return [FileStatus.FAILED, FileStatus.DUPLICATE]
    if scope == "all":
        return [FileStatus.SUCCESS, FileStatus.FAILED, FileStatus.DUPLICATE]
    raise ValueError(f"Unknown re-detection scope: {scope!r} (expected one of {REDETECT_SCOPES})")


class TrackingStore:
    """
    Session-per-operation access to tracked files.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
        detection_version: Version stamped on new rows
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        detection_version: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.detection_version = Config.DETECTION_VERSION if detection_version is None else detection_version

    # ============================================================================
    # Core operations
    # ============================================================================

    def upsert_working(self, source_file: str, media_type_hint: Optional[MediaType]) -> Optional[TrackedFile]:
        """
        Start tracking a file.

        Returns:
            The new WORKING row, or None if source_file is already tracked
        """
        db = self.session_factory()
        try:
            row = TrackedFile.create_working(db, source_file, media_type_hint, self.detection_version)
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    def update_result(
        self,
        source_file: str,
        media_info: Optional[MediaInfo],
        dest_file: Optional[str],
        status: FileStatus,
        error_message: Optional[str] = None,
        detection_version: Optional[int] = None,
        media_type: Optional[MediaType] = None
    ) -> Optional[TrackedFile]:
        """
        Write the outcome of identification and linking.

        dest_file is only stored for SUCCESS. detection_version defaults to the
        row's target version, which clears any pending re-detection.

        Args:
            source_file: Natural key of the row
            media_info: Identification result (None when identification failed)
            dest_file: Created link (SUCCESS only)
            status: SUCCESS, FAILED or DUPLICATE
            error_message: Failure reason
            detection_version: Version to stamp
            media_type: Media type to record when media_info is None

        Returns:
            Updated row, or None if the row vanished meanwhile
        """
        db = self.session_factory()
        try:
            row = TrackedFile.get_by_source(db, source_file)
            if row is None:
                logger.warning(f"⚠ update_result on untracked file: {source_file}")
                return None

            row.clear_identification()
            if media_info is not None:
                row.media_type = media_info.media_type
                row.tmdb_id = media_info.tmdb_id
                row.imdb_id = media_info.imdb_id
                row.season_number = media_info.season_number
                row.episode_number = media_info.episode_number
                row.episode_number2 = media_info.episode_number2
                row.title = media_info.title
                row.year = media_info.year
                row.genres = list(media_info.genres)
            elif media_type is not None:
                row.media_type = media_type

            row.status = status
            row.dest_file = dest_file if status == FileStatus.SUCCESS else None
            row.error_message = error_message if status != FileStatus.SUCCESS else None
            row.detection_version = (
                detection_version if detection_version is not None
                else max(row.target_detection_version, self.detection_version)
            )
            if row.target_detection_version < row.detection_version:
                row.target_detection_version = row.detection_version

            db.commit()
            db.refresh(row)
            db.expunge(row)
            return row
        finally:
            db.close()

    def find_by_path_prefix(self, prefix: str) -> List[TrackedFileRef]:
        """Rows whose source_file starts with prefix (literal match)."""
        db = self.session_factory()
        try:
            return TrackedFile.find_refs_by_prefix(db, prefix)
        finally:
            db.close()

    def delete_batch(self, ids: Iterable[int]) -> int:
        """
        Delete rows by id in a single transaction.

        Returns:
            Number of rows deleted
        """
        ids = list(ids)
        if not ids:
            return 0

        db = self.session_factory()
        try:
            deleted = TrackedFile.delete_ids(db, ids)
            db.commit()
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def release_stale_working(self, prefix: str, active: Iterable[str] = ()) -> int:
        """
        Delete WORKING rows under prefix that no worker is processing.

        Such rows are left behind when a pass is interrupted between tracking a
        file and writing its result. Once deleted, the file is discovered again
        as new.

        Args:
            prefix: Path prefix, matched literally
            active: Source files currently being processed (kept)

        Returns:
            Number of rows released
        """
        active = set(active)
        db = self.session_factory()
        try:
            refs = TrackedFile.find_refs_by_prefix(db, prefix, status=FileStatus.WORKING)
            stale = [ref.id for ref in refs if ref.source_file not in active]
            if not stale:
                return 0
            released = TrackedFile.delete_ids(db, stale)
            db.commit()
            return released
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ============================================================================
    # Re-detection
    # ============================================================================

    def find_pending_redetection(self, prefix: str) -> List[TrackedFile]:
        """Rows under prefix due for re-identification (detached from the session)."""
        db = self.session_factory()
        try:
            rows = TrackedFile.find_pending_redetection(db, prefix)
            for row in rows:
                db.expunge(row)
            return rows
        finally:
            db.close()

    def raise_target_version(self, version: int, scope: str) -> int:
        """
        Lift target_detection_version to version for in-scope rows below it.

        Called at startup with the configured DETECTION_VERSION.

        Returns:
            Number of rows scheduled for re-detection
        """
        statuses = scope_statuses(scope)
        db = self.session_factory()
        try:
            count = (
                db.query(TrackedFile)
                .filter(TrackedFile.status.in_(statuses))
                .filter(TrackedFile.target_detection_version < version)
                .update({TrackedFile.target_detection_version: version}, synchronize_session=False)
            )
            db.commit()
            return count
        finally:
            db.close()

    def reset_for_redetection(self, scope: str, ids: Optional[List[int]] = None) -> int:
        """
        Operator-triggered re-detection: target = detection_version + 1.

        Args:
            scope: "failed" or "all"
            ids: Restrict to these rows

        Returns:
            Number of rows scheduled
        """
        statuses = scope_statuses(scope)
        db = self.session_factory()
        try:
            query = db.query(TrackedFile).filter(TrackedFile.status.in_(statuses))
            if ids:
                query = query.filter(TrackedFile.id.in_(ids))
            count = query.update(
                {TrackedFile.target_detection_version: TrackedFile.detection_version + 1},
                synchronize_session=False
            )
            db.commit()
            return count
        finally:
            db.close()

    # ============================================================================
    # Reporting
    # ============================================================================

    def get_by_id(self, tracked_file_id: int) -> Optional[TrackedFile]:
        db = self.session_factory()
        try:
            row = TrackedFile.get_by_id(db, tracked_file_id)
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    def get_many(self, ids: Iterable[int]) -> List[TrackedFile]:
        """Rows with these ids, in id order (unknown ids are skipped)."""
        ids = list(ids)
        if not ids:
            return []
        db = self.session_factory()
        try:
            rows = db.query(TrackedFile).filter(TrackedFile.id.in_(ids)).order_by(TrackedFile.id).all()
            for row in rows:
                db.expunge(row)
            return rows
        finally:
            db.close()

    def list_ids(self, status: FileStatus) -> List[int]:
        """Ids of every row in status."""
        db = self.session_factory()
        try:
            return [
                row.id for row in
                db.query(TrackedFile.id).filter(TrackedFile.status == status).order_by(TrackedFile.id).all()
            ]
        finally:
            db.close()

    def get_stats(self) -> Dict[str, Any]:
        """Totals per status and per media type."""
        db = self.session_factory()
        try:
            by_status = TrackedFile.count_by_status(db)
            return {
                "total": sum(by_status.values()),
                "by_status": by_status,
                "by_media_type": TrackedFile.count_by_media_type(db),
            }
        finally:
            db.close()

    def list_files(
        self,
        status: Optional[FileStatus] = None,
        media_type: Optional[MediaType] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[TrackedFile], int]:
        """
        Filtered, sorted, paginated listing.

        Returns:
            (rows for the page, total matching rows)

        Raises:
            ValueError: Unknown sort column
        """
        column = SORTABLE_COLUMNS.get(sort_by)
        if column is None:
            raise ValueError(f"Cannot sort by {sort_by!r}; expected one of {sorted(SORTABLE_COLUMNS)}")

        db = self.session_factory()
        try:
            query = db.query(TrackedFile)
            if status is not None:
                query = query.filter(TrackedFile.status == status)
            if media_type is not None:
                query = query.filter(TrackedFile.media_type == media_type)
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(
                    TrackedFile.source_file.ilike(pattern),
                    TrackedFile.dest_file.ilike(pattern),
                    TrackedFile.title.ilike(pattern),
                ))

            total = query.count()
            ordering = column.asc() if sort_order == "asc" else column.desc()
            rows = (
                query.order_by(ordering, TrackedFile.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            for row in rows:
                db.expunge(row)
            return rows, total
        finally:
            db.close()


_tracking_store: Optional[TrackingStore] = None


def get_tracking_store() -> TrackingStore:
    """Get the global tracking store instance."""
    global _tracking_store
    if _tracking_store is None:
        _tracking_store = TrackingStore()
    return _tracking_store
