import re

import pytest

from conftest import BASE_URL, FAKE_JPEG
from screencast.errors import StorageError, UploadError
from screencast.services.persistence import thumbnail_path, video_path
from screencast.services.uploads import UploadService, build_share_url, generate_share_id


def test_share_id_is_short_token():
    ids = {generate_share_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(re.fullmatch(r"[0-9a-f]{8}", i) for i in ids)


def test_share_url_joins_origin():
    assert build_share_url("https://x.io/", "abc") == "https://x.io/v/abc"


class TestUploadService:
    def test_upload_reports_milestones_and_persists(self, upload_service, thumbnailer):
        progress = []
        result = upload_service.upload(
            b"webm-bytes", title="Q1 Review", client="Acme", duration=10, progress=progress.append
        )

        assert progress == [10, 70, 85, 90, 100]
        assert result.share_url == f"{BASE_URL}/v/{result.share_id}"
        storage = upload_service.persistence.storage
        assert storage.download(video_path(result.share_id)) == b"webm-bytes"
        assert storage.download(thumbnail_path(result.share_id)) == FAKE_JPEG
        assert thumbnailer.calls == [b"webm-bytes"]

        video = upload_service.persistence.get_video(result.share_id)
        assert (video.title, video.client, video.duration, video.file_size) == ("Q1 Review", "Acme", 10, 10)
        assert video.thumbnail_url is not None

    def test_thumbnail_failure_is_not_fatal(self, persistence):
        service = UploadService(persistence, base_url=lambda: BASE_URL, thumbnailer=lambda data: None)
        result = service.upload(b"bytes", duration=3)

        assert persistence.get_video(result.share_id).thumbnail_url is None
        assert not persistence.storage.exists(thumbnail_path(result.share_id))

    def test_raising_thumbnailer_does_not_block_upload(self, persistence):
        def broken(data):
            raise RuntimeError("decoder crashed")

        service = UploadService(persistence, base_url=lambda: BASE_URL, thumbnailer=broken)
        result = service.upload(b"bytes", duration=3)

        video = persistence.get_video(result.share_id)
        assert video is not None
        assert video.thumbnail_url is None
        assert persistence.storage.exists(video_path(result.share_id))

    def test_empty_recording_rejected(self, upload_service):
        with pytest.raises(UploadError):
            upload_service.upload(b"")

    def test_transfer_failure_raises_upload_error(self, persistence, thumbnailer):
        def broken_upload(*args, **kwargs):
            raise StorageError("Storage error: bucket unreachable")

        persistence.storage.upload = broken_upload
        service = UploadService(persistence, base_url=lambda: BASE_URL, thumbnailer=thumbnailer)
        progress = []

        with pytest.raises(UploadError, match="bucket unreachable"):
            service.upload(b"bytes", progress=progress.append)
        assert progress == [10]
        assert persistence.list_videos() == []

    def test_content_type_parameters_are_dropped(self, persistence, thumbnailer):
        seen = []
        original = persistence.storage.upload

        def spy(path, data, content_type, upsert=False):
            seen.append((path, content_type))
            return original(path, data, content_type, upsert)

        persistence.storage.upload = spy
        service = UploadService(persistence, base_url=lambda: BASE_URL, thumbnailer=thumbnailer)
        service.upload(b"bytes", content_type="video/webm;codecs=vp9,opus")
        assert seen[0][1] == "video/webm"
