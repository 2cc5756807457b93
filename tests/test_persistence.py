"""Both persistence strategies behind the same interface."""
import json

import pytest

from screencast.core.config import Settings
from screencast.errors import NotFoundError
from screencast.services.persistence import (
    BlobPersistence,
    CommentInfo,
    RecordPersistence,
    build_persistence,
    comments_path,
    metadata_path,
    thumbnail_path,
    video_path,
)


def _store_video(persistence, share_id="abc123", title="Q1 Review", client="Acme", duration=10, thumbnail=True):
    persistence.storage.upload(video_path(share_id), b"video", content_type="video/webm")
    if thumbnail:
        persistence.storage.upload(thumbnail_path(share_id), b"jpeg", content_type="image/jpeg")
    return persistence.create_video(share_id, title, client, duration, file_size=5, has_thumbnail=thumbnail)


class TestVideos:
    def test_create_and_get(self, persistence):
        created = _store_video(persistence)
        video = persistence.get_video("abc123")

        assert video.title == created.title == "Q1 Review"
        assert video.client == "Acme"
        assert video.duration == 10
        assert video.file_size == 5
        assert video.video_url.endswith("/media/videos/abc123.webm")
        assert video.thumbnail_url.endswith("/media/videos/abc123.jpg")

    def test_missing_video_is_none(self, persistence):
        assert persistence.get_video("nope") is None

    def test_default_title(self, persistence):
        persistence.create_video("untitled", "", "", 3, file_size=1)
        assert persistence.get_video("untitled").title == "Untitled Recording"

    def test_list_newest_first(self, persistence):
        _store_video(persistence, "first")
        _store_video(persistence, "second")
        _store_video(persistence, "third")
        listed = [v.share_id for v in persistence.list_videos()]
        assert sorted(listed) == ["first", "second", "third"]
        created = [v.created_at for v in persistence.list_videos()]
        assert created == sorted(created, reverse=True)

    def test_delete_cascades(self, persistence):
        _store_video(persistence)
        persistence.add_comment("abc123", "Jane", "Looks great", 7)

        assert persistence.delete_video("abc123") is True

        assert persistence.get_video("abc123") is None
        assert persistence.list_comments("abc123") == []
        assert persistence.list_videos() == []
        for path in (video_path("abc123"), thumbnail_path("abc123"), comments_path("abc123")):
            assert not persistence.storage.exists(path)

    def test_delete_missing(self, persistence):
        assert persistence.delete_video("nope") is False


class TestComments:
    def test_round_trip(self, persistence):
        _store_video(persistence)
        created = persistence.add_comment("abc123", "Jane", "Looks great", 7, "win")

        reloaded = persistence.list_comments("abc123")
        assert len(reloaded) == 1
        comment = reloaded[0]
        assert comment.id == created.id
        assert (comment.author, comment.text, comment.timestamp) == ("Jane", "Looks great", 7)
        if persistence.supports_categories:
            assert comment.category == "win"

    def test_delete_removes_only_that_comment(self, persistence):
        _store_video(persistence)
        keep = persistence.add_comment("abc123", "Ann", "Intro", 1)
        drop = persistence.add_comment("abc123", "Bob", "Typo here", 4)

        assert persistence.delete_comment("abc123", drop.id) is True
        assert [c.id for c in persistence.list_comments("abc123")] == [keep.id]
        assert persistence.delete_comment("abc123", drop.id) is False

    def test_comment_on_missing_video(self, persistence):
        with pytest.raises(NotFoundError):
            persistence.add_comment("nope", "Jane", "hi", 1)

    def test_replace_comments_overwrites_collection(self, persistence):
        _store_video(persistence)
        persistence.add_comment("abc123", "Ann", "old", 1)
        persistence.replace_comments(
            "abc123",
            [CommentInfo(id="x", author="Cy", text="new", timestamp=2, category="issue")],
        )
        comments = persistence.list_comments("abc123")
        assert [(c.author, c.text, c.timestamp) for c in comments] == [("Cy", "new", 2)]

    def test_replace_comments_keeps_identity(self, persistence):
        _store_video(persistence)
        first = persistence.add_comment("abc123", "A", "one", 1)
        second = persistence.add_comment("abc123", "B", "two", 2)
        third = persistence.add_comment("abc123", "C", "three", 3)

        persistence.replace_comments("abc123", [first, third])

        comments = persistence.list_comments("abc123")
        assert [c.id for c in comments] == [first.id, third.id]
        assert [c.created_at for c in comments] == [first.created_at, third.created_at]
        assert persistence.delete_comment("abc123", second.id) is False

        # A new comment never takes over a dropped id
        fourth = persistence.add_comment("abc123", "D", "four", 4)
        assert fourth.id != second.id

    @pytest.mark.parametrize("comment_id", ["²", "-1", "0", "abc", ""])
    def test_delete_with_malformed_id(self, persistence, comment_id):
        _store_video(persistence)
        persistence.add_comment("abc123", "Ann", "Intro", 1)
        assert persistence.delete_comment("abc123", comment_id) is False
        assert len(persistence.list_comments("abc123")) == 1


class TestRecordPersistence:
    def test_comments_ordered_by_anchor(self, record_persistence):
        _store_video(record_persistence)
        record_persistence.add_comment("abc123", "A", "late", 9)
        record_persistence.add_comment("abc123", "B", "general", None)
        record_persistence.add_comment("abc123", "C", "early", 2)
        texts = [c.text for c in record_persistence.list_comments("abc123")]
        assert texts == ["early", "late", "general"]

    def test_views(self, record_persistence):
        _store_video(record_persistence)
        assert record_persistence.increment_views("abc123") == 1
        assert record_persistence.increment_views("abc123") == 2
        assert record_persistence.get_video("abc123").views == 2

    def test_views_on_missing_video(self, record_persistence):
        with pytest.raises(NotFoundError):
            record_persistence.increment_views("nope")

    def test_rejects_unknown_category(self, record_persistence):
        _store_video(record_persistence)
        with pytest.raises(ValueError):
            record_persistence.add_comment("abc123", "A", "x", 1, "praise")


class TestBlobPersistence:
    def test_sidecar_layout(self, blob_persistence):
        _store_video(blob_persistence)
        blob_persistence.add_comment("abc123", "Jane", "Looks great", 7)

        meta = json.loads(blob_persistence.storage.download(metadata_path("abc123")))
        assert meta["title"] == "Q1 Review"
        assert meta["client"] == "Acme"
        assert meta["duration"] == 10
        assert meta["shareId"] == "abc123"

        comments = json.loads(blob_persistence.storage.download(comments_path("abc123")))
        assert list(comments[0].keys()) == ["id", "name", "text", "timestamp", "createdAt"]

    def test_no_views_or_categories(self, blob_persistence):
        _store_video(blob_persistence)
        assert blob_persistence.increment_views("abc123") is None
        comment = blob_persistence.add_comment("abc123", "Jane", "hi", 1, "issue")
        assert comment.category is None

    def test_malformed_sidecars_read_as_empty(self, blob_persistence):
        storage = blob_persistence.storage
        storage.upload(video_path("bad"), b"video", content_type="video/webm")
        storage.upload(metadata_path("bad"), b"{not json", content_type="application/json")
        storage.upload(comments_path("bad"), b"[oops", content_type="application/json")

        video = blob_persistence.get_video("bad")
        assert video is not None
        assert video.title == "Untitled Recording"
        assert blob_persistence.list_comments("bad") == []
        assert blob_persistence.list_videos() == []

    def test_listing_skips_comment_sidecars(self, blob_persistence):
        _store_video(blob_persistence)
        blob_persistence.add_comment("abc123", "Jane", "hi", 1)
        assert [v.share_id for v in blob_persistence.list_videos()] == ["abc123"]

    def test_concurrent_editors_last_write_wins(self, blob_persistence):
        """Known gap of whole-file overwrite: a concurrent addition is lost."""
        _store_video(blob_persistence)
        seen_by_alice = blob_persistence.list_comments("abc123")
        seen_by_bob = blob_persistence.list_comments("abc123")

        alice = CommentInfo(id="a", author="Alice", text="first", timestamp=1)
        bob = CommentInfo(id="b", author="Bob", text="second", timestamp=2)
        blob_persistence.replace_comments("abc123", seen_by_alice + [alice])
        blob_persistence.replace_comments("abc123", seen_by_bob + [bob])

        assert [c.author for c in blob_persistence.list_comments("abc123")] == ["Bob"]


def test_build_persistence_selects_one_strategy(storage):
    records = build_persistence(Settings(PERSISTENCE="records", DATABASE_URL="sqlite://"), storage)
    assert isinstance(records, RecordPersistence)
    records.close()
    assert isinstance(build_persistence(Settings(PERSISTENCE="blobs"), storage), BlobPersistence)
    with pytest.raises(ValueError):
        build_persistence(Settings(PERSISTENCE="both"), storage)
