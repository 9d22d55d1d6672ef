"""
SymlinkManager Service for Linkarr

Builds and maintains the destination tree: one symbolic link per identified
source file, named from its metadata. Source files are never moved, copied or
modified.

Destination Layout:
    Movies:
        {destination}/{Title} ({Year})/{Title} ({Year}).{ext}
    TV episodes:
        {destination}/{Show}/Season {NN}/{Show} - S{NN}E{EE}[-E{EE2}] - {Episode Title}.{ext}

Conflict Rules:
    - Link already pointing at the same source: nothing to do
    - Link pointing at a missing target (stale): replaced
    - Link pointing at another existing source, or a regular file: DuplicateLinkError

Every operation is idempotent. Directories emptied by a removal are pruned
bottom-up, never above the destination root.

Usage Example:
    manager = SymlinkManager()
    dest = manager.create_link(
        source_file="/downloads/Movie.Title.2020.1080p.mkv",
        destination_folder="/media/movies",
        media_info=info,
        media_type=MediaType.MOVIES
    )
    # dest = '/media/movies/Movie Title (2020)/Movie Title (2020).mkv'
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from linkarr.models.tracked_file import MediaType
from linkarr.schemas.media_info import MediaInfo
from linkarr.services.exceptions import SymlinkError, DuplicateLinkError

logger = logging.getLogger(__name__)

_INVALID_CHARS_RE = re.compile(r'[<>"/\\|?*\x00-\x1f]')
_SPACES_RE = re.compile(r'\s+')


def sanitize_filename(name: str) -> str:
    """
    Make a metadata string safe as a single path component.

    "Star Wars: Episode IV" -> "Star Wars - Episode IV"
    """
    if not name:
        return "_"
    name = name.replace(':', ' - ')
    name = _INVALID_CHARS_RE.sub('', name)
    name = _SPACES_RE.sub(' ', name)
    # Windows/SMB clients reject trailing dots and spaces
    name = name.strip().rstrip('. ')
    return name or "_"


def _link_target(link_path: Path) -> str:
    """Absolute, normalized target of a symlink."""
    target = os.readlink(link_path)
    if not os.path.isabs(target):
        target = os.path.join(os.path.dirname(link_path), target)
    return os.path.normpath(target)


class SymlinkManager:
    """
    Creates, replaces and removes destination symlinks.

    Safe to call concurrently for different source files: a race on the same
    destination path resolves to one winner and one DuplicateLinkError.
    """

    def build_destination_path(
        self,
        destination_folder: str,
        media_info: MediaInfo,
        media_type: MediaType,
        extension: str
    ) -> Path:
        """
        Compute the deterministic destination path for a file.

        Args:
            destination_folder: Mapping destination root
            media_info: Identification result
            media_type: Identified media type (TvShows uses episode naming)
            extension: Source file extension including the dot

        Returns:
            Absolute destination path

        Raises:
            SymlinkError: Episode naming requested without season/episode numbers
        """
        root = Path(destination_folder)
        extension = extension.lower()
        title = sanitize_filename(media_info.title)

        if media_type == MediaType.TV_SHOWS:
            if media_info.season_number is None or media_info.episode_number is None:
                raise SymlinkError(f"Episode numbers missing for '{media_info.title}'")

            season = media_info.season_number
            code = f"S{season:02d}E{media_info.episode_number:02d}"
            if media_info.episode_number2:
                code += f"-E{media_info.episode_number2:02d}"

            filename = f"{title} - {code}"
            if media_info.episode_title:
                filename += f" - {sanitize_filename(media_info.episode_title)}"

            return root / title / f"Season {season:02d}" / f"{filename}{extension}"

        base = f"{title} ({media_info.year})" if media_info.year else title
        return root / base / f"{base}{extension}"

    def create_link(
        self,
        source_file: str,
        destination_folder: str,
        media_info: MediaInfo,
        media_type: MediaType
    ) -> str:
        """
        Link a source file into the destination tree.

        Returns:
            Destination path of the link

        Raises:
            DuplicateLinkError: Destination taken by another source
            SymlinkError: Source missing or filesystem error
        """
        dest_path = self.build_destination_path(
            destination_folder, media_info, media_type, Path(source_file).suffix
        )
        return self._place_link(source_file, dest_path)

    def recreate_link(
        self,
        current_dest: Optional[str],
        source_file: str,
        destination_folder: str,
        media_info: MediaInfo,
        media_type: MediaType
    ) -> str:
        """
        Replace a row's link after its identification changed.

        The link at current_dest is removed when it still points at source_file,
        then the link is created at the path derived from media_info.

        Returns:
            New destination path
        """
        if current_dest:
            current = Path(current_dest)
            if current.is_symlink() and _link_target(current) == os.path.abspath(source_file):
                self.remove_link(current_dest, destination_folder)
        return self.create_link(source_file, destination_folder, media_info, media_type)

    def remove_link(self, dest_file: str, destination_root: Optional[str] = None) -> bool:
        """
        Remove a destination link and prune the directories it leaves empty.

        Regular files are never removed.

        Args:
            dest_file: Destination link path
            destination_root: Pruning stops at (and never removes) this folder

        Returns:
            True if a link was removed
        """
        path = Path(dest_file)

        if not path.is_symlink():
            if path.exists():
                logger.warning(f"⚠ Not removing {dest_file}: not a symlink")
            return False

        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SymlinkError(f"Failed to remove link {dest_file}: {e}", path=dest_file) from e

        logger.info(f"✓ Removed link: {dest_file}")
        if destination_root:
            self._prune_empty_parents(path.parent, Path(destination_root))
        return True

    def sweep_dead_links(self, destination_root: str) -> int:
        """
        Remove links whose target no longer exists, then empty directories.

        Walks bottom-up so a directory emptied by removals is pruned in the same
        sweep. The root itself is kept.

        Returns:
            Number of dead links removed
        """
        root = os.path.normpath(destination_root)
        if not os.path.isdir(root):
            return 0

        removed = 0
        for dirpath, dirnames, filenames in os.walk(root, topdown=False):
            for name in filenames + dirnames:
                path = os.path.join(dirpath, name)
                if os.path.islink(path) and not os.path.exists(path):
                    try:
                        os.unlink(path)
                        removed += 1
                        logger.info(f"✓ Removed dead link: {path}")
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        logger.warning(f"⚠ Could not remove dead link {path}: {e}")

            if os.path.normpath(dirpath) != root:
                try:
                    if not os.listdir(dirpath):
                        os.rmdir(dirpath)
                        logger.debug(f"Removed empty directory: {dirpath}")
                except OSError as e:
                    logger.debug(f"Could not prune {dirpath}: {e}")

        if removed:
            logger.info(f"Dead link sweep of {root}: {removed} link(s) removed")
        return removed

    # ============================================================================
    # Internals
    # ============================================================================

    def _place_link(self, source_file: str, dest_path: Path) -> str:
        source_abs = os.path.normpath(os.path.abspath(source_file))
        if not os.path.exists(source_abs):
            raise SymlinkError(f"Source file not found: {source_file}", path=source_file)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SymlinkError(f"Cannot create directory {dest_path.parent}: {e}", path=str(dest_path)) from e

        # Second round only happens when another worker created the path meanwhile
        for _ in range(2):
            if dest_path.is_symlink():
                target = _link_target(dest_path)
                if target == source_abs:
                    logger.debug(f"Link already in place: {dest_path}")
                    return str(dest_path)
                if os.path.exists(target):
                    raise DuplicateLinkError(str(dest_path), target)

                logger.info(f"Replacing stale link {dest_path} (target gone: {target})")
                try:
                    dest_path.unlink()
                except FileNotFoundError:
                    pass

            elif os.path.lexists(dest_path):
                raise DuplicateLinkError(str(dest_path), str(dest_path))

            try:
                os.symlink(source_abs, dest_path)
            except FileExistsError:
                continue
            except OSError as e:
                raise SymlinkError(f"Failed to create link {dest_path}: {e}", path=str(dest_path)) from e

            logger.info(f"✓ Created link: {dest_path.name}")
            return str(dest_path)

        raise SymlinkError(f"Destination kept changing while linking: {dest_path}", path=str(dest_path))

    def _prune_empty_parents(self, directory: Path, root: Path) -> None:
        root = Path(os.path.normpath(root))
        current = Path(os.path.normpath(directory))
        while current != root and root in current.parents:
            try:
                current.rmdir()
            except OSError:
                # Not empty (or already gone): stop climbing
                break
            current = current.parent


_symlink_manager: Optional[SymlinkManager] = None


def get_symlink_manager() -> SymlinkManager:
    """Get the global symlink manager instance."""
    global _symlink_manager
    if _symlink_manager is None:
        _symlink_manager = SymlinkManager()
    return _symlink_manager
