"""
Unit tests for TrackingStore

Runs against a temporary SQLite database (see conftest.session_factory).
"""

import pytest

from linkarr.models.tracked_file import FileStatus, MediaType, TrackedFile
from linkarr.schemas.media_info import MediaInfo
from linkarr.services.tracking_store import TrackingStore, scope_statuses


def movie_info(title="Movie Title", year=2020):
    return MediaInfo(
        title=title, year=year, tmdb_id=603, imdb_id="tt0133093",
        media_type=MediaType.MOVIES, genres=["Action"]
    )


def add_row(store, path, status, dest=None, hint=MediaType.MOVIES):
    store.upsert_working(path, hint)
    info = movie_info() if status != FileStatus.FAILED else None
    return store.update_result(path, info, dest, status, error_message=None if dest else "reason")


class TestUpsertWorking:
    """Test row creation."""

    def test_creates_working_row(self, store):
        row = store.upsert_working("/dl/movies/a.mkv", MediaType.MOVIES)

        assert row.status == FileStatus.WORKING
        assert row.media_type == MediaType.MOVIES
        assert row.detection_version == 1
        assert row.target_detection_version == 1

    def test_second_insert_returns_none(self, store):
        store.upsert_working("/dl/movies/a.mkv", MediaType.MOVIES)
        assert store.upsert_working("/dl/movies/a.mkv", MediaType.MOVIES) is None

    def test_new_rows_get_configured_version(self, session_factory):
        store = TrackingStore(session_factory=session_factory, detection_version=3)
        row = store.upsert_working("/dl/a.mkv", None)
        assert (row.detection_version, row.target_detection_version) == (3, 3)


class TestUpdateResult:
    """Test result writing."""

    def test_success(self, store):
        store.upsert_working("/dl/a.mkv", MediaType.MOVIES)

        row = store.update_result("/dl/a.mkv", movie_info(), "/lib/Movie Title (2020)/Movie Title (2020).mkv",
                                  FileStatus.SUCCESS)

        assert row.status == FileStatus.SUCCESS
        assert row.dest_file.endswith("Movie Title (2020).mkv")
        assert row.tmdb_id == 603
        assert row.imdb_id == "tt0133093"
        assert row.genres == ["Action"]
        assert row.error_message is None

    def test_failure_without_media_info(self, store):
        store.upsert_working("/dl/clip.mkv", MediaType.UNKNOWN)

        row = store.update_result("/dl/clip.mkv", None, None, FileStatus.FAILED, "No match",
                                  media_type=MediaType.UNKNOWN)

        assert row.status == FileStatus.FAILED
        assert row.error_message == "No match"
        assert row.dest_file is None
        assert row.title is None

    def test_dest_only_kept_on_success(self, store):
        store.upsert_working("/dl/a.mkv", MediaType.MOVIES)
        row = store.update_result("/dl/a.mkv", movie_info(), "/lib/x.mkv", FileStatus.DUPLICATE, "taken")
        assert row.dest_file is None
        assert row.title == "Movie Title"

    def test_stamps_target_version(self, store, session_factory):
        store.upsert_working("/dl/a.mkv", MediaType.MOVIES)
        db = session_factory()
        row = TrackedFile.get_by_source(db, "/dl/a.mkv")
        row.target_detection_version = 4
        db.commit()
        db.close()

        row = store.update_result("/dl/a.mkv", movie_info(), "/lib/x.mkv", FileStatus.SUCCESS)

        assert row.detection_version == 4
        assert not row.needs_redetection

    def test_explicit_version(self, store):
        store.upsert_working("/dl/a.mkv", MediaType.MOVIES)
        row = store.update_result("/dl/a.mkv", movie_info(), "/lib/x.mkv", FileStatus.SUCCESS, detection_version=2)
        assert (row.detection_version, row.target_detection_version) == (2, 2)

    def test_untracked_file(self, store):
        assert store.update_result("/dl/none.mkv", None, None, FileStatus.FAILED, "x") is None


class TestPrefixQueries:
    """Test prefix matching and batch deletion."""

    def test_prefix_does_not_match_sibling_folder(self, store):
        store.upsert_working("/dl/movies/a.mkv", MediaType.MOVIES)
        store.upsert_working("/dl/movies2/b.mkv", MediaType.MOVIES)

        refs = store.find_by_path_prefix("/dl/movies/")

        assert [ref.source_file for ref in refs] == ["/dl/movies/a.mkv"]

    def test_like_wildcards_are_literal(self, store):
        store.upsert_working("/dl/a_b/one.mkv", MediaType.MOVIES)
        store.upsert_working("/dl/axb/two.mkv", MediaType.MOVIES)
        store.upsert_working("/dl/100%/three.mkv", MediaType.MOVIES)

        assert [r.source_file for r in store.find_by_path_prefix("/dl/a_b/")] == ["/dl/a_b/one.mkv"]
        assert [r.source_file for r in store.find_by_path_prefix("/dl/100%/")] == ["/dl/100%/three.mkv"]

    def test_projection_fields(self, store):
        add_row(store, "/dl/movies/a.mkv", FileStatus.SUCCESS, dest="/lib/a.mkv")

        ref = store.find_by_path_prefix("/dl/movies/")[0]

        assert ref.source_file == "/dl/movies/a.mkv"
        assert ref.dest_file == "/lib/a.mkv"
        assert isinstance(ref.id, int)

    def test_delete_batch(self, store):
        for name in ("a", "b", "c"):
            store.upsert_working(f"/dl/{name}.mkv", MediaType.MOVIES)
        ids = [ref.id for ref in store.find_by_path_prefix("/dl/") if not ref.source_file.endswith("c.mkv")]

        assert store.delete_batch(ids) == 2

        assert [ref.source_file for ref in store.find_by_path_prefix("/dl/")] == ["/dl/c.mkv"]

    def test_delete_nothing(self, store):
        assert store.delete_batch([]) == 0


class TestReleaseStaleWorking:
    """Test cleanup of rows left in WORKING by an interrupted pass."""

    def test_only_working_rows_released(self, store):
        store.upsert_working("/dl/stuck.mkv", MediaType.MOVIES)
        add_row(store, "/dl/done.mkv", FileStatus.SUCCESS, dest="/lib/done.mkv")
        add_row(store, "/dl/failed.mkv", FileStatus.FAILED)

        assert store.release_stale_working("/dl/") == 1

        remaining = sorted(ref.source_file for ref in store.find_by_path_prefix("/dl/"))
        assert remaining == ["/dl/done.mkv", "/dl/failed.mkv"]

    def test_active_files_kept(self, store):
        store.upsert_working("/dl/a.mkv", MediaType.MOVIES)
        store.upsert_working("/dl/b.mkv", MediaType.MOVIES)

        assert store.release_stale_working("/dl/", active={"/dl/a.mkv"}) == 1

        assert [ref.source_file for ref in store.find_by_path_prefix("/dl/")] == ["/dl/a.mkv"]

    def test_other_folders_untouched(self, store):
        store.upsert_working("/dl2/a.mkv", MediaType.MOVIES)
        assert store.release_stale_working("/dl/") == 0
        assert store.upsert_working("/dl2/a.mkv", MediaType.MOVIES) is None


class TestBulkLookups:
    """Test get_many / list_ids."""

    def test_get_many_skips_unknown_ids(self, store):
        first = add_row(store, "/dl/a.mkv", FileStatus.SUCCESS, dest="/lib/a.mkv")
        second = add_row(store, "/dl/b.mkv", FileStatus.FAILED)

        rows = store.get_many([second.id, 999, first.id])

        assert [row.source_file for row in rows] == ["/dl/a.mkv", "/dl/b.mkv"]

    def test_list_ids_by_status(self, store):
        success = add_row(store, "/dl/a.mkv", FileStatus.SUCCESS, dest="/lib/a.mkv")
        add_row(store, "/dl/b.mkv", FileStatus.FAILED)

        assert store.list_ids(FileStatus.SUCCESS) == [success.id]


class TestRedetection:
    """Test version bumps."""

    def test_scope_statuses(self):
        assert set(scope_statuses("failed")) == {FileStatus.FAILED, FileStatus.DUPLICATE}
        assert FileStatus.SUCCESS in scope_statuses("all")
        assert FileStatus.WORKING not in scope_statuses("all")
        with pytest.raises(ValueError):
            scope_statuses("some")

    def test_raise_target_failed_scope(self, store):
        add_row(store, "/dl/ok.mkv", FileStatus.SUCCESS, dest="/lib/ok.mkv")
        add_row(store, "/dl/bad.mkv", FileStatus.FAILED)
        add_row(store, "/dl/dup.mkv", FileStatus.DUPLICATE)
        store.upsert_working("/dl/busy.mkv", MediaType.MOVIES)

        assert store.raise_target_version(2, "failed") == 2

        pending = {row.source_file for row in store.find_pending_redetection("/dl/")}
        assert pending == {"/dl/bad.mkv", "/dl/dup.mkv"}

    def test_raise_target_all_scope(self, store):
        add_row(store, "/dl/ok.mkv", FileStatus.SUCCESS, dest="/lib/ok.mkv")
        add_row(store, "/dl/bad.mkv", FileStatus.FAILED)

        assert store.raise_target_version(2, "all") == 2

    def test_raise_target_never_lowers(self, store):
        add_row(store, "/dl/bad.mkv", FileStatus.FAILED)
        store.raise_target_version(3, "failed")

        assert store.raise_target_version(2, "failed") == 0
        assert store.find_pending_redetection("/dl/")[0].target_detection_version == 3

    def test_reset_for_redetection(self, store):
        add_row(store, "/dl/ok.mkv", FileStatus.SUCCESS, dest="/lib/ok.mkv")
        add_row(store, "/dl/bad.mkv", FileStatus.FAILED)

        assert store.reset_for_redetection("failed") == 1

        rows = store.find_pending_redetection("/dl/")
        assert [(r.source_file, r.detection_version, r.target_detection_version) for r in rows] == [
            ("/dl/bad.mkv", 1, 2)
        ]

    def test_reset_restricted_to_ids(self, store):
        first = add_row(store, "/dl/a.mkv", FileStatus.FAILED)
        add_row(store, "/dl/b.mkv", FileStatus.FAILED)

        assert store.reset_for_redetection("all", ids=[first.id]) == 1

    def test_result_clears_pending_state(self, store):
        add_row(store, "/dl/bad.mkv", FileStatus.FAILED)
        store.reset_for_redetection("failed")

        store.update_result("/dl/bad.mkv", movie_info(), "/lib/x.mkv", FileStatus.SUCCESS)

        assert store.find_pending_redetection("/dl/") == []


class TestReporting:
    """Test stats and listing."""

    def test_stats(self, store):
        add_row(store, "/dl/ok.mkv", FileStatus.SUCCESS, dest="/lib/ok.mkv")
        add_row(store, "/dl/bad.mkv", FileStatus.FAILED)
        store.upsert_working("/dl/busy.mkv", None)

        stats = store.get_stats()

        assert stats["total"] == 3
        assert stats["by_status"] == {"Working": 1, "Success": 1, "Failed": 1, "Duplicate": 0}
        assert stats["by_media_type"]["Movies"] == 2
        assert stats["by_media_type"]["Unknown"] == 1

    def test_list_filter_and_search(self, store):
        add_row(store, "/dl/ok.mkv", FileStatus.SUCCESS, dest="/lib/ok.mkv")
        add_row(store, "/dl/bad.mkv", FileStatus.FAILED)

        rows, total = store.list_files(status=FileStatus.FAILED)
        assert total == 1
        assert rows[0].source_file == "/dl/bad.mkv"

        rows, total = store.list_files(search="ok")
        assert [r.source_file for r in rows] == ["/dl/ok.mkv"]

    def test_list_pagination(self, store):
        for index in range(5):
            store.upsert_working(f"/dl/{index}.mkv", MediaType.MOVIES)

        rows, total = store.list_files(sort_order="asc", page=2, page_size=2)

        assert total == 5
        assert [r.source_file for r in rows] == ["/dl/2.mkv", "/dl/3.mkv"]

    def test_list_unknown_sort(self, store):
        with pytest.raises(ValueError):
            store.list_files(sort_by="size")

    def test_get_by_id(self, store):
        row = store.upsert_working("/dl/a.mkv", MediaType.MOVIES)
        assert store.get_by_id(row.id).source_file == "/dl/a.mkv"
        assert store.get_by_id(9999) is None
