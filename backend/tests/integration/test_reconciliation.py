"""
Integration tests for the Reconciler

Real filesystem (tmp_path), real SQLite tracking store and real SymlinkManager.
Only the metadata provider (FakeIdentifier) and Plex (AsyncMock) are replaced.
"""

import asyncio
import os
import shutil

import httpx
import pytest
from unittest.mock import AsyncMock

from linkarr.config import FolderMapping
from linkarr.models.tracked_file import FileStatus, MediaType
from linkarr.schemas.media_info import MediaInfo
from linkarr.services.exceptions import IdentificationError
from linkarr.services.symlink_manager import SymlinkManager
from linkarr.workers.reconciler import Reconciler

pytestmark = pytest.mark.integration


def movie(title, year):
    return MediaInfo(title=title, year=year, tmdb_id=hash(title) % 100000, media_type=MediaType.MOVIES)


def episode(show, season, number, name=None):
    return MediaInfo(
        title=show, year=2018, tmdb_id=10, media_type=MediaType.TV_SHOWS,
        season_number=season, episode_number=number, episode_title=name
    )


class FakeIdentifier:
    """Identification results keyed by file basename; anything unknown fails."""

    def __init__(self):
        self.results = {}
        self.by_id = {}
        self.calls = []

    async def identify(self, file_path, media_type_hint=MediaType.UNKNOWN):
        self.calls.append(file_path)
        result = self.results.get(os.path.basename(file_path))
        if isinstance(result, Exception):
            raise result
        if result is None:
            raise IdentificationError(f"No match for {os.path.basename(file_path)}", media_type=media_type_hint)
        return result

    async def identify_by_id(self, media_type, tmdb_id, season_number=None, episode_number=None,
                             episode_number2=None):
        if tmdb_id not in self.by_id:
            raise IdentificationError(f"TMDb id {tmdb_id} not found", media_type=media_type)
        return self.by_id[tmdb_id]


class GatedIdentifier(FakeIdentifier):
    """Holds every identify() call until release is set."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def identify(self, file_path, media_type_hint=MediaType.UNKNOWN):
        self.entered.set()
        await self.release.wait()
        return await super().identify(file_path, media_type_hint)


def touch(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(b"\x00")
    return str(path)


@pytest.fixture
def layout(tmp_path):
    downloads = tmp_path / "downloads"
    library = tmp_path / "library"
    for folder in ("movies", "tv"):
        (downloads / folder).mkdir(parents=True)
    library.mkdir()
    return downloads, library


@pytest.fixture
def identifier():
    return FakeIdentifier()


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.notify_path_changed.return_value = True
    return mock


@pytest.fixture
def make_reconciler(store, identifier, notifier):
    def factory(mappings, **overrides):
        options = dict(
            store=store,
            identifier=identifier,
            symlinks=SymlinkManager(),
            notifier=notifier,
            poll_interval=0.01,
            error_backoff=0.01,
            batch_size=10,
            batch_pause=0,
            max_concurrent=2,
            new_folder_delay=0,
            media_extensions=[".mkv"],
            detection_version=1,
            redetect_scope="failed",
        )
        options.update(overrides)
        return Reconciler(mappings, **options)
    return factory


def movies_mapping(downloads, library):
    return FolderMapping(str(downloads / "movies"), str(library / "movies"), MediaType.MOVIES)


def tv_mapping(downloads, library):
    return FolderMapping(str(downloads / "tv"), str(library / "tv"), MediaType.TV_SHOWS)


def row_for(store, source_file):
    rows, _ = store.list_files(search=source_file, page_size=200)
    matches = [row for row in rows if row.source_file == source_file]
    return matches[0] if matches else None


def notified_paths(notifier):
    return [call.args[0] for call in notifier.notify_path_changed.await_args_list]


class TestNewFiles:
    """New files are tracked, identified and linked."""

    @pytest.mark.asyncio
    async def test_movie_linked(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.Title.2020.1080p" / "Movie.Title.2020.1080p.mkv")
        identifier.results["Movie.Title.2020.1080p.mkv"] = movie("Movie Title", 2020)

        await make_reconciler([movies_mapping(downloads, library)]).run_pass()

        dest = library / "movies" / "Movie Title (2020)" / "Movie Title (2020).mkv"
        row = row_for(store, source)
        assert row.status == FileStatus.SUCCESS
        assert row.dest_file == str(dest)
        assert os.readlink(dest) == source
        assert notified_paths(notifier) == [str(library / "movies" / "Movie Title (2020)")]

    @pytest.mark.asyncio
    async def test_episode_linked(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "tv" / "Show.Name.S01E02.mkv")
        identifier.results["Show.Name.S01E02.mkv"] = episode("Show Name", 1, 2, "Second")

        await make_reconciler([tv_mapping(downloads, library)]).run_pass()

        dest = library / "tv" / "Show Name" / "Season 01" / "Show Name - S01E02 - Second.mkv"
        assert os.path.islink(dest)
        assert row_for(store, source).season_number == 1

    @pytest.mark.asyncio
    async def test_unidentified_file_failed_once(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "holiday.mkv")
        reconciler = make_reconciler([movies_mapping(downloads, library)])

        await reconciler.run_pass()
        await reconciler.run_pass()

        row = row_for(store, source)
        assert row.status == FileStatus.FAILED
        assert row.dest_file is None
        assert "No match" in row.error_message
        assert identifier.calls == [source]
        assert not (library / "movies").exists()

    @pytest.mark.asyncio
    async def test_duplicate_destination(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        first = touch(downloads / "movies" / "a" / "Movie.Title.2020.mkv")
        second = touch(downloads / "movies" / "b" / "Movie.Title.2020.REPACK.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        identifier.results["Movie.Title.2020.REPACK.mkv"] = movie("Movie Title", 2020)

        await make_reconciler([movies_mapping(downloads, library)]).run_pass()

        assert row_for(store, first).status == FileStatus.SUCCESS
        duplicate = row_for(store, second)
        assert duplicate.status == FileStatus.DUPLICATE
        assert duplicate.dest_file is None
        assert duplicate.title == "Movie Title"
        assert os.readlink(library / "movies" / "Movie Title (2020)" / "Movie Title (2020).mkv") == first

    @pytest.mark.asyncio
    async def test_non_media_files_ignored(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        touch(downloads / "movies" / "Movie" / "readme.txt")
        touch(downloads / "movies" / "Movie" / "Movie.2020.nfo")

        await make_reconciler([movies_mapping(downloads, library)]).run_pass()

        assert store.get_stats()["total"] == 0
        assert identifier.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_isolated(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        broken = touch(downloads / "movies" / "Broken.2001.mkv")
        fine = touch(downloads / "movies" / "Fine.2002.mkv")
        identifier.results["Broken.2001.mkv"] = RuntimeError("parser exploded")
        identifier.results["Fine.2002.mkv"] = movie("Fine", 2002)

        await make_reconciler([movies_mapping(downloads, library)]).run_pass()

        assert row_for(store, broken).status == FileStatus.FAILED
        assert "Unexpected error" in row_for(store, broken).error_message
        assert row_for(store, fine).status == FileStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_idempotent_passes(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        reconciler = make_reconciler([movies_mapping(downloads, library)])

        await reconciler.run_pass()
        first_row = row_for(store, source)
        await reconciler.run_pass()

        assert identifier.calls == [source]
        assert row_for(store, source).updated_at == first_row.updated_at
        assert notifier.notify_path_changed.await_count == 1
        assert reconciler.get_status()["pass_count"] == 2


class TestDeletions:
    """Removed sources take their links and rows with them."""

    @pytest.mark.asyncio
    async def test_file_removed(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "tv" / "Show.Name.S01E02.mkv")
        identifier.results["Show.Name.S01E02.mkv"] = episode("Show Name", 1, 2)
        reconciler = make_reconciler([tv_mapping(downloads, library)])
        await reconciler.run_pass()
        dest = row_for(store, source).dest_file

        os.remove(source)
        notifier.notify_path_changed.reset_mock()
        await reconciler.run_pass()

        assert row_for(store, source) is None
        assert not os.path.lexists(dest)
        assert not (library / "tv" / "Show Name").exists()
        assert notified_paths(notifier) == [str(library / "tv" / "Show Name")]

    @pytest.mark.asyncio
    async def test_folder_removed(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        season = downloads / "tv" / "Show.Name.S01"
        for number in (1, 2):
            touch(season / f"Show.Name.S01E0{number}.mkv")
            identifier.results[f"Show.Name.S01E0{number}.mkv"] = episode("Show Name", 1, number)
        reconciler = make_reconciler([tv_mapping(downloads, library)])
        await reconciler.run_pass()
        assert store.get_stats()["by_status"]["Success"] == 2

        shutil.rmtree(season)
        notifier.notify_path_changed.reset_mock()
        await reconciler.run_pass()

        assert store.get_stats()["total"] == 0
        assert os.listdir(library / "tv") == []
        assert notified_paths(notifier) == [str(library / "tv" / "Show Name")]

    @pytest.mark.asyncio
    async def test_source_folder_missing(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()

        shutil.rmtree(downloads / "movies")
        await reconciler.run_pass()

        assert store.get_stats()["total"] == 0
        assert not (library / "movies" / "Movie Title (2020)").exists()

    @pytest.mark.asyncio
    async def test_sibling_mapping_untouched(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        kept = touch(downloads / "movies" / "Kept.1999.mkv")
        gone = touch(downloads / "movies2" / "Gone.2000.mkv")
        identifier.results["Kept.1999.mkv"] = movie("Kept", 1999)
        identifier.results["Gone.2000.mkv"] = movie("Gone", 2000)
        reconciler = make_reconciler([
            movies_mapping(downloads, library),
            FolderMapping(str(downloads / "movies2"), str(library / "movies2"), MediaType.MOVIES),
        ])
        await reconciler.run_pass()

        shutil.rmtree(downloads / "movies2")
        await reconciler.run_pass()

        assert row_for(store, kept).status == FileStatus.SUCCESS
        assert row_for(store, gone) is None
        assert os.path.islink(row_for(store, kept).dest_file)


class TestRedetection:
    """Version bumps send finished rows through identification again."""

    @pytest.mark.asyncio
    async def test_failed_scope(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Obscure.Film.mkv")
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()
        assert row_for(store, source).status == FileStatus.FAILED

        identifier.results["Obscure.Film.mkv"] = movie("Obscure Film", 1971)
        store.reset_for_redetection("failed")
        await reconciler.run_pass()

        row = row_for(store, source)
        assert row.status == FileStatus.SUCCESS
        assert row.detection_version == 2
        assert not row.needs_redetection
        assert os.path.islink(row.dest_file)

    @pytest.mark.asyncio
    async def test_all_scope_relinks(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.2020.mkv")
        identifier.results["Movie.2020.mkv"] = movie("Wrong Title", 2001)
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()
        old_dest = row_for(store, source).dest_file

        identifier.results["Movie.2020.mkv"] = movie("Right Title", 2020)
        store.reset_for_redetection("all")
        await reconciler.run_pass()

        row = row_for(store, source)
        assert row.dest_file == str(library / "movies" / "Right Title (2020)" / "Right Title (2020).mkv")
        assert os.readlink(row.dest_file) == source
        assert not os.path.lexists(old_dest)
        assert not (library / "movies" / "Wrong Title (2001)").exists()

    @pytest.mark.asyncio
    async def test_startup_version_bump(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Obscure.Film.mkv")
        await make_reconciler([movies_mapping(downloads, library)]).run_pass()

        identifier.results["Obscure.Film.mkv"] = movie("Obscure Film", 1971)
        upgraded = make_reconciler([movies_mapping(downloads, library)], detection_version=2)
        await upgraded.start()
        try:
            for _ in range(200):
                if upgraded.get_status()["pass_count"]:
                    break
                await asyncio.sleep(0.01)
        finally:
            await upgraded.stop()

        row = row_for(store, source)
        assert row.status == FileStatus.SUCCESS
        assert row.detection_version == 2

    @pytest.mark.asyncio
    async def test_success_untouched_by_failed_scope(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        touch(downloads / "movies" / "Movie.2020.mkv")
        identifier.results["Movie.2020.mkv"] = movie("Movie", 2020)
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()

        store.reset_for_redetection("failed")
        await reconciler.run_pass()

        assert len(identifier.calls) == 1


class TestManualMatch:
    """Operator-provided ids fix a Failed file."""

    @pytest.mark.asyncio
    async def test_failed_file_linked(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "holiday.mkv")
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()
        identifier.by_id[603] = movie("The Matrix", 1999)

        row = await reconciler.apply_manual_match(row_for(store, source).id, 603)

        assert row.status == FileStatus.SUCCESS
        assert row.dest_file == str(library / "movies" / "The Matrix (1999)" / "The Matrix (1999).mkv")
        assert os.readlink(row.dest_file) == source
        assert notified_paths(notifier)[-1] == str(library / "movies" / "The Matrix (1999)")

    @pytest.mark.asyncio
    async def test_unknown_id_recorded_as_failed(self, layout, store, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "holiday.mkv")
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()

        row = await reconciler.apply_manual_match(row_for(store, source).id, 999)

        assert row.status == FileStatus.FAILED
        assert "999" in row.error_message

    @pytest.mark.asyncio
    async def test_missing_row(self, layout, make_reconciler):
        downloads, library = layout
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        assert await reconciler.apply_manual_match(12345, 603) is None


class TestLifecycle:
    """start() / stop()."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, layout, make_reconciler):
        downloads, library = layout
        reconciler = make_reconciler([movies_mapping(downloads, library)], poll_interval=30)

        await reconciler.start()
        assert reconciler.is_running
        for _ in range(200):
            if reconciler.get_status()["pass_count"]:
                break
            await asyncio.sleep(0.01)

        await reconciler.stop()

        status = reconciler.get_status()
        assert status["running"] is False
        assert status["pass_count"] == 1
        assert status["last_error"] is None

    @pytest.mark.asyncio
    async def test_run_forever_returns_after_stop(self, layout, make_reconciler):
        downloads, library = layout
        reconciler = make_reconciler([movies_mapping(downloads, library)], poll_interval=30)

        runner = asyncio.create_task(reconciler.run_forever())
        for _ in range(200):
            if reconciler.get_status()["pass_count"]:
                break
            await asyncio.sleep(0.01)
        await reconciler.stop()

        await asyncio.wait_for(runner, timeout=2)
        assert runner.exception() is None

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, layout, make_reconciler):
        downloads, library = layout
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.stop()
        assert not reconciler.is_running

    @pytest.mark.asyncio
    async def test_stop_mid_identify_releases_file(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        gated = GatedIdentifier()
        reconciler = make_reconciler([movies_mapping(downloads, library)], identifier=gated, poll_interval=30)

        await reconciler.start()
        await asyncio.wait_for(gated.entered.wait(), timeout=2)
        assert row_for(store, source).status == FileStatus.WORKING

        await reconciler.stop()

        assert row_for(store, source) is None
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        await make_reconciler([movies_mapping(downloads, library)]).run_pass()
        assert row_for(store, source).status == FileStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_working_row_of_crashed_run_reprocessed(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        store.upsert_working(source, MediaType.MOVIES)

        await make_reconciler([movies_mapping(downloads, library)]).run_pass()

        row = row_for(store, source)
        assert row.status == FileStatus.SUCCESS
        assert os.path.islink(row.dest_file)

    @pytest.mark.asyncio
    async def test_cancel_mid_pass_keeps_queued_rows(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        removed = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        mappings = [movies_mapping(downloads, library), tv_mapping(downloads, library)]
        await make_reconciler(mappings).run_pass()
        os.remove(removed)
        new_episode = touch(downloads / "tv" / "Show.Name.S01E01.mkv")

        gated = GatedIdentifier()
        reconciler = make_reconciler(mappings, identifier=gated, poll_interval=30)
        await reconciler.start()
        await asyncio.wait_for(gated.entered.wait(), timeout=2)
        await reconciler.stop()

        assert row_for(store, removed) is not None
        assert row_for(store, new_episode) is None

        identifier.results["Show.Name.S01E01.mkv"] = episode("Show Name", 1, 1)
        await make_reconciler(mappings).run_pass()
        assert row_for(store, removed) is None
        assert row_for(store, new_episode).status == FileStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_stop_between_mappings_abandons_deletions(self, layout, store, identifier, notifier,
                                                            make_reconciler):
        downloads, library = layout
        removed = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        mappings = [movies_mapping(downloads, library), tv_mapping(downloads, library)]
        await make_reconciler(mappings).run_pass()
        os.remove(removed)
        touch(downloads / "tv" / "Show.Name.S01E01.mkv")
        identifier.calls.clear()

        reconciler = make_reconciler(mappings)
        notifier.notify_path_changed.side_effect = lambda path: reconciler._stop_event.set()
        await reconciler.run_pass()

        assert row_for(store, removed) is not None
        assert identifier.calls == []
        assert reconciler.get_status()["pass_count"] == 0

        notifier.notify_path_changed.side_effect = None
        await make_reconciler(mappings).run_pass()
        assert row_for(store, removed) is None


class TestNotifications:
    """Plex problems never block a pass."""

    @pytest.mark.asyncio
    async def test_unexpected_notifier_error(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        source = touch(downloads / "movies" / "Movie.Title.2020" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        dead = library / "movies" / "Gone (2001)" / "Gone (2001).mkv"
        dead.parent.mkdir(parents=True)
        os.symlink(str(downloads / "missing.mkv"), str(dead))
        notifier.notify_path_changed.side_effect = httpx.InvalidURL("Invalid URL 'plex:abc'")

        await reconciler.run_pass()

        assert row_for(store, source).status == FileStatus.SUCCESS
        assert not os.path.lexists(dead)
        status = reconciler.get_status()
        assert status["pass_count"] == 1
        assert status["mappings"][0]["known_folders"] == 1


class TestOperatorActions:
    """Relink, delete and cleanup requests."""

    @pytest.mark.asyncio
    async def test_manual_match_waits_for_pass(self, layout, store, make_reconciler):
        downloads, library = layout
        failed = touch(downloads / "movies" / "holiday.mkv")
        gated = GatedIdentifier()
        gated.release.set()
        reconciler = make_reconciler([movies_mapping(downloads, library)], identifier=gated)
        await reconciler.run_pass()
        failed_id = row_for(store, failed).id

        gated.release.clear()
        gated.entered.clear()
        touch(downloads / "movies" / "Movie.Title.2020.mkv")
        gated.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        gated.by_id[603] = movie("The Matrix", 1999)

        pass_task = asyncio.create_task(reconciler.run_pass())
        await asyncio.wait_for(gated.entered.wait(), timeout=2)
        match_task = asyncio.create_task(reconciler.apply_manual_match(failed_id, 603))
        await asyncio.sleep(0.05)
        assert not match_task.done()

        gated.release.set()
        await asyncio.wait_for(pass_task, timeout=2)
        row = await asyncio.wait_for(match_task, timeout=2)

        assert row.status == FileStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_recreate_link_restores_missing_link(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()
        row = row_for(store, source)
        identifier.by_id[row.tmdb_id] = movie("Movie Title", 2020)
        os.remove(row.dest_file)

        updated = await reconciler.recreate_link(row.id)

        assert updated.status == FileStatus.SUCCESS
        assert os.readlink(updated.dest_file) == source

    @pytest.mark.asyncio
    async def test_recreate_link_follows_renamed_title(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()
        row = row_for(store, source)
        identifier.by_id[row.tmdb_id] = movie("Renamed Title", 2020)
        notifier.notify_path_changed.reset_mock()

        updated = await reconciler.recreate_link(row.id)

        assert updated.dest_file == str(library / "movies" / "Renamed Title (2020)" / "Renamed Title (2020).mkv")
        assert not os.path.lexists(row.dest_file)
        assert notified_paths(notifier) == [
            str(library / "movies" / "Movie Title (2020)"),
            str(library / "movies" / "Renamed Title (2020)"),
        ]

    @pytest.mark.asyncio
    async def test_recreate_link_needs_identification(self, layout, store, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "holiday.mkv")
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()

        with pytest.raises(ValueError, match="no identification"):
            await reconciler.recreate_link(row_for(store, source).id)

    @pytest.mark.asyncio
    async def test_recreate_all_links(self, layout, store, identifier, make_reconciler):
        downloads, library = layout
        sources = [
            touch(downloads / "movies" / "Movie.Title.2020.mkv"),
            touch(downloads / "movies" / "Other.Film.2011.mkv"),
        ]
        touch(downloads / "movies" / "holiday.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        identifier.results["Other.Film.2011.mkv"] = movie("Other Film", 2011)
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()
        for source in sources:
            row = row_for(store, source)
            identifier.by_id[row.tmdb_id] = identifier.results[os.path.basename(source)]
            os.remove(row.dest_file)

        assert await reconciler.recreate_all_links() == 2
        assert all(os.path.islink(row_for(store, source).dest_file) for source in sources)

    @pytest.mark.asyncio
    async def test_delete_tracked_files(self, layout, store, identifier, notifier, make_reconciler):
        downloads, library = layout
        source = touch(downloads / "movies" / "Movie.Title.2020.mkv")
        identifier.results["Movie.Title.2020.mkv"] = movie("Movie Title", 2020)
        reconciler = make_reconciler([movies_mapping(downloads, library)])
        await reconciler.run_pass()
        row = row_for(store, source)
        notifier.notify_path_changed.reset_mock()

        assert await reconciler.delete_tracked_files([row.id, 999]) == 1

        assert row_for(store, source) is None
        assert not os.path.lexists(row.dest_file)
        assert notified_paths(notifier) == [str(library / "movies" / "Movie Title (2020)")]

        await reconciler.run_pass()
        assert row_for(store, source).status == FileStatus.SUCCESS
        assert identifier.calls.count(source) == 2

    @pytest.mark.asyncio
    async def test_cleanup_dead_links(self, layout, make_reconciler):
        downloads, library = layout
        dead = library / "tv" / "Gone Show" / "Season 01" / "Gone Show - S01E01.mkv"
        dead.parent.mkdir(parents=True)
        os.symlink(str(downloads / "tv" / "missing.mkv"), str(dead))
        reconciler = make_reconciler([movies_mapping(downloads, library), tv_mapping(downloads, library)])

        assert await reconciler.cleanup_dead_links() == 1

        assert not (library / "tv" / "Gone Show").exists()
        assert (library / "tv").is_dir()
