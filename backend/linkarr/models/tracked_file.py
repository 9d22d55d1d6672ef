"""
TrackedFile Database Model for Linkarr

One row per source media file seen under a folder mapping, holding the
identification result and the symlink created for it.

Lifecycle:
    1. WORKING   - File discovered, identification in progress
    2. SUCCESS   - Identified and linked (dest_file is set)
    3. FAILED    - No filename pattern matched, provider had no match, or link failed
    4. DUPLICATE - Destination path already taken by another source file

    A WORKING row whose pass was interrupted is deleted on the next pass, and
    the file is discovered again.

Re-detection:
    Every row carries two integers. detection_version is stamped when the
    identification result is written; target_detection_version is the version
    the row should be evaluated against. Rows where
    detection_version < target_detection_version are identified again on the
    next reconciliation pass. Raising the target is the only way a Failed or
    Duplicate row gets another attempt.

Invariants:
    - source_file is unique across all rows (database constraint)
    - dest_file is only set while status is SUCCESS
"""

import enum
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable, NamedTuple

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum as SQLEnum, JSON, Index, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .base import Base


class FileStatus(str, enum.Enum):
    """Tracked file lifecycle status."""
    WORKING = "Working"
    SUCCESS = "Success"
    FAILED = "Failed"
    DUPLICATE = "Duplicate"


class MediaType(str, enum.Enum):
    """Media kind, used both as mapping hint and as identification result."""
    MOVIES = "Movies"
    TV_SHOWS = "TvShows"
    EXTRAS = "Extras"
    UNKNOWN = "Unknown"


class TrackedFileRef(NamedTuple):
    """Lightweight projection used for deletion scans."""
    id: int
    source_file: str
    dest_file: Optional[str]


def escape_like(value: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so a path is matched literally."""
    return (
        value.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


class TrackedFile(Base):
    """
    Database model for a source file under reconciliation.

    Table Structure:
        - id: Primary key (auto-increment)
        - source_file: Absolute path of the source file (unique)
        - dest_file: Absolute path of the symlink created for it
        - media_type, tmdb_id, imdb_id, season_number, episode_number,
          episode_number2, title, year, genres: identification result
        - status: Lifecycle status (enum)
        - error_message: Why the row is FAILED or DUPLICATE
        - created_at / updated_at: Timestamps
        - detection_version / target_detection_version: re-detection stamps

    Example:
        >>> row = TrackedFile.create_working(db, "/downloads/Movie.2020.mkv", MediaType.MOVIES, 1)
        >>> row.status
        <FileStatus.WORKING: 'Working'>
        >>> TrackedFile.create_working(db, "/downloads/Movie.2020.mkv", MediaType.MOVIES, 1) is None
        True
    """

    __tablename__ = 'tracked_files'

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_file = Column(String(1000), nullable=False, unique=True)
    dest_file = Column(String(1000), nullable=True)

    # Identification result
    media_type = Column(SQLEnum(MediaType), nullable=True)
    tmdb_id = Column(Integer, nullable=True)
    imdb_id = Column(String(20), nullable=True)
    season_number = Column(Integer, nullable=True)
    episode_number = Column(Integer, nullable=True)
    episode_number2 = Column(Integer, nullable=True)  # Second episode of a multi-episode file
    title = Column(String(500), nullable=True)
    year = Column(Integer, nullable=True)
    genres = Column(JSON, nullable=True)

    status = Column(SQLEnum(FileStatus), nullable=False, default=FileStatus.WORKING)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    detection_version = Column(Integer, nullable=False, default=1)
    target_detection_version = Column(Integer, nullable=False, default=1)

    def __init__(self, source_file: str, media_type: Optional[MediaType] = None, detection_version: int = 1):
        """
        Initialize a WORKING row.

        Args:
            source_file: Absolute path of the source file
            media_type: Media type hint of the mapping the file belongs to
            detection_version: Current detection version (stamped on both version columns)
        """
        self.source_file = source_file
        self.media_type = media_type
        self.status = FileStatus.WORKING
        self.detection_version = detection_version
        self.target_detection_version = detection_version
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    @property
    def needs_redetection(self) -> bool:
        """True when the row must be identified again."""
        return self.detection_version < self.target_detection_version

    def clear_identification(self) -> None:
        """Drop every identification field (used before writing a new result)."""
        self.dest_file = None
        self.tmdb_id = None
        self.imdb_id = None
        self.season_number = None
        self.episode_number = None
        self.episode_number2 = None
        self.title = None
        self.year = None
        self.genres = None
        self.error_message = None

    # ============================================================================
    # Queries
    # ============================================================================

    @classmethod
    def get_by_source(cls, db: Session, source_file: str) -> Optional['TrackedFile']:
        """Get a row by its source file path."""
        return db.query(cls).filter(cls.source_file == source_file).first()

    @classmethod
    def get_by_id(cls, db: Session, tracked_file_id: int) -> Optional['TrackedFile']:
        """Get a row by primary key."""
        return db.query(cls).filter(cls.id == tracked_file_id).first()

    @classmethod
    def create_working(
        cls,
        db: Session,
        source_file: str,
        media_type: Optional[MediaType],
        detection_version: int
    ) -> Optional['TrackedFile']:
        """
        Insert a WORKING row unless the source file is already tracked.

        The unique constraint on source_file is the arbiter: a concurrent insert
        of the same path loses with an IntegrityError and gets None.

        Args:
            db: SQLAlchemy database session
            source_file: Absolute path of the source file
            media_type: Mapping media type hint
            detection_version: Current detection version

        Returns:
            The new row, or None if a row already exists for source_file
        """
        if cls.get_by_source(db, source_file) is not None:
            return None

        row = cls(source_file=source_file, media_type=media_type, detection_version=detection_version)
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None

        db.refresh(row)
        return row

    @classmethod
    def prefix_filter(cls, prefix: str):
        """SQL filter matching source files that start with prefix."""
        return cls.source_file.like(escape_like(prefix) + "%", escape="\\")

    @classmethod
    def find_refs_by_prefix(
        cls,
        db: Session,
        prefix: str,
        status: Optional[FileStatus] = None
    ) -> List[TrackedFileRef]:
        """
        Get (id, source_file, dest_file) for every row under prefix.

        Args:
            db: SQLAlchemy database session
            prefix: Path prefix, matched literally
            status: Only rows in this status

        Returns:
            List of TrackedFileRef
        """
        query = db.query(cls.id, cls.source_file, cls.dest_file).filter(cls.prefix_filter(prefix))
        if status is not None:
            query = query.filter(cls.status == status)
        return [TrackedFileRef(row.id, row.source_file, row.dest_file) for row in query.all()]

    @classmethod
    def find_pending_redetection(cls, db: Session, prefix: str) -> List['TrackedFile']:
        """Get rows under prefix whose detection_version is behind their target."""
        return (
            db.query(cls)
            .filter(cls.prefix_filter(prefix))
            .filter(cls.detection_version < cls.target_detection_version)
            .filter(cls.status != FileStatus.WORKING)
            .order_by(cls.id)
            .all()
        )

    @classmethod
    def delete_ids(cls, db: Session, ids: Iterable[int]) -> int:
        """
        Delete rows by id in the current transaction (caller commits).

        Returns:
            Number of rows deleted
        """
        ids = list(ids)
        if not ids:
            return 0
        return db.query(cls).filter(cls.id.in_(ids)).delete(synchronize_session=False)

    @classmethod
    def count_by_status(cls, db: Session) -> Dict[str, int]:
        """Count rows per status."""
        counts = {status.value: 0 for status in FileStatus}
        for status, count in db.query(cls.status, func.count(cls.id)).group_by(cls.status).all():
            counts[status.value] = count
        return counts

    @classmethod
    def count_by_media_type(cls, db: Session) -> Dict[str, int]:
        """Count rows per media type (rows without a type count as Unknown)."""
        counts = {media_type.value: 0 for media_type in MediaType}
        for media_type, count in db.query(cls.media_type, func.count(cls.id)).group_by(cls.media_type).all():
            key = media_type.value if media_type else MediaType.UNKNOWN.value
            counts[key] += count
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert row to dictionary."""
        return {
            'id': self.id,
            'source_file': self.source_file,
            'dest_file': self.dest_file,
            'media_type': self.media_type.value if self.media_type else None,
            'tmdb_id': self.tmdb_id,
            'imdb_id': self.imdb_id,
            'season_number': self.season_number,
            'episode_number': self.episode_number,
            'episode_number2': self.episode_number2,
            'title': self.title,
            'year': self.year,
            'genres': self.genres or [],
            'status': self.status.value,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'detection_version': self.detection_version,
            'target_detection_version': self.target_detection_version,
            'version_outdated': self.needs_redetection,
        }

    def __repr__(self) -> str:
        return (
            f"<TrackedFile(id={self.id}, source='{self.source_file}', "
            f"status={self.status.value})>"
        )


Index('idx_tracked_files_status', TrackedFile.status)
Index('idx_tracked_files_media_type', TrackedFile.media_type)
