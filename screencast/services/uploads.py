"""
Upload Service

Hands a finished recording to persistence:
1. Generate a short share id
2. Transfer the video binary
3. Derive and store a thumbnail (optional, never fatal)
4. Persist the metadata record
5. Build the public share link
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from screencast.errors import ScreenCastError, UploadError
from screencast.services.persistence import Persistence, VideoInfo, thumbnail_path, video_path
from screencast.services.thumbnails import generate_thumbnail

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


def generate_share_id() -> str:
    return uuid.uuid4().hex[:8]


def build_share_url(base_url: str, share_id: str) -> str:
    return f"{base_url.rstrip('/')}/v/{share_id}"


@dataclass
class ShareResult:
    share_id: str
    share_url: str
    video: VideoInfo


class UploadService:
    def __init__(
        self,
        persistence: Persistence,
        base_url: Callable[[], str],
        thumbnailer: Optional[Callable[[bytes], Optional[bytes]]] = None,
    ):
        self.persistence = persistence
        self._base_url = base_url
        self._thumbnailer = thumbnailer if thumbnailer is not None else generate_thumbnail

    def upload(
        self,
        data: bytes,
        title: str = "",
        client: str = "",
        duration: int = 0,
        content_type: str = "video/webm",
        progress: Optional[ProgressCallback] = None,
    ) -> ShareResult:
        """
        Upload a recording and return its share link.

        Args:
            data: Encoded recording bytes
            title: Optional title, defaults to "Untitled Recording"
            client: Optional client/account name
            duration: Recorded length in whole seconds
            content_type: MIME type stored with the binary
            progress: Called with coarse percentages (10, 70, 85, 90, 100)

        Raises:
            UploadError: Any step other than the thumbnail failed
        """
        report = progress or (lambda pct: None)
        if not data:
            raise UploadError("Nothing to upload: the recording is empty")

        share_id = generate_share_id()
        storage = self.persistence.storage
        try:
            report(10)
            logger.info(f"[Upload] Uploading {len(data)} bytes as {share_id}")
            storage.upload(video_path(share_id), data, content_type=content_type.split(";")[0], upsert=False)
            report(70)

            has_thumbnail = self._store_thumbnail(share_id, data)
            report(85)

            video = self.persistence.create_video(
                share_id,
                title=title.strip(),
                client=client.strip(),
                duration=duration,
                file_size=len(data),
                has_thumbnail=has_thumbnail,
            )
            report(90)

            share_url = build_share_url(self._base_url(), share_id)
            report(100)
            logger.info(f"[Upload] ✅ Share link ready: {share_url}")
            return ShareResult(share_id=share_id, share_url=share_url, video=video)
        except ScreenCastError as e:
            logger.error(f"[Upload] ❌ Failed for {share_id}: {e}")
            raise UploadError(str(e) or "Upload failed") from e

    def _store_thumbnail(self, share_id: str, data: bytes) -> bool:
        try:
            thumbnail = self._thumbnailer(data)
        except Exception as e:
            logger.warning(f"[Thumbnail] Generation failed for {share_id}: {e}")
            return False
        if not thumbnail:
            return False
        try:
            self.persistence.storage.upload(
                thumbnail_path(share_id), thumbnail, content_type="image/jpeg", upsert=True
            )
            return True
        except ScreenCastError as e:
            logger.warning(f"[Thumbnail] Upload skipped for {share_id}: {e}")
            return False
