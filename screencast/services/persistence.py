"""
Persistence Service

Durable state for recordings and their comment threads. Two interchangeable
strategies implement the same interface; a deployment uses exactly one:

1. RecordPersistence - SQL tables for videos/comments (view counts, comment types)
2. BlobPersistence - JSON sidecars next to the video in object storage

Binary objects (video, thumbnail) always live in object storage.
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from screencast.db.database import Base, make_engine, make_session_factory
from screencast.db.models import Comment, Video, COMMENT_TYPES
from screencast.errors import NotFoundError, StorageError
from screencast.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Recording"


def video_path(share_id: str) -> str:
    return f"videos/{share_id}.webm"


def thumbnail_path(share_id: str) -> str:
    return f"videos/{share_id}.jpg"


def metadata_path(share_id: str) -> str:
    return f"videos/{share_id}.json"


def comments_path(share_id: str) -> str:
    return f"videos/{share_id}.comments.json"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _comment_key(comment_id) -> Optional[int]:
    """Row id for a record-store comment id, None if it cannot be one."""
    try:
        key = int(str(comment_id), 10)
    except ValueError:
        return None
    return key if key > 0 and str(comment_id).isascii() else None


def _parse_created(value: Optional[str]) -> Optional[datetime]:
    """ISO string to the naive UTC datetime the record store keeps."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class VideoInfo(BaseModel):
    share_id: str
    title: str = DEFAULT_TITLE
    client: str = ""
    duration: int = 0
    file_size: int = 0
    views: Optional[int] = None  # only tracked by the record store
    status: str = "ready"
    created_at: Optional[str] = None
    video_url: str = ""
    thumbnail_url: Optional[str] = None


class CommentInfo(BaseModel):
    id: str
    author: str
    text: str
    timestamp: Optional[float] = None  # anchor in seconds
    created_at: str = Field(default_factory=_now_iso)
    category: Optional[str] = None  # only tracked by the record store


class Persistence(ABC):
    """Video + comment persistence backed by object storage for binaries."""

    supports_views = False
    supports_categories = False

    def __init__(self, storage: ObjectStorage):
        self.storage = storage

    def video_url(self, share_id: str) -> str:
        return self.storage.get_public_url(video_path(share_id))

    def thumbnail_url(self, share_id: str) -> str:
        return self.storage.get_public_url(thumbnail_path(share_id))

    @abstractmethod
    def list_videos(self) -> List[VideoInfo]:
        """All recordings, newest first."""

    @abstractmethod
    def get_video(self, share_id: str) -> Optional[VideoInfo]:
        ...

    @abstractmethod
    def create_video(
        self,
        share_id: str,
        title: str,
        client: str,
        duration: int,
        file_size: int,
        has_thumbnail: bool = False,
    ) -> VideoInfo:
        ...

    @abstractmethod
    def delete_video(self, share_id: str) -> bool:
        """Remove a recording with its binary, thumbnail, metadata and comments."""

    @abstractmethod
    def list_comments(self, share_id: str) -> List[CommentInfo]:
        ...

    @abstractmethod
    def add_comment(
        self,
        share_id: str,
        author: str,
        text: str,
        timestamp: Optional[float],
        category: str = "comment",
    ) -> CommentInfo:
        ...

    @abstractmethod
    def delete_comment(self, share_id: str, comment_id: str) -> bool:
        ...

    @abstractmethod
    def replace_comments(self, share_id: str, comments: List[CommentInfo]) -> None:
        """Overwrite the whole comment collection of one recording."""

    def increment_views(self, share_id: str) -> Optional[int]:
        return None

    def close(self) -> None:
        self.storage.close()


class RecordPersistence(Persistence):
    supports_views = True
    supports_categories = True

    def __init__(self, storage: ObjectStorage, database_url: str):
        super().__init__(storage)
        self.engine = make_engine(database_url)
        Base.metadata.create_all(bind=self.engine)
        self.SessionLocal = make_session_factory(self.engine)

    def _to_info(self, video: Video) -> VideoInfo:
        meta = video.meta or {}
        return VideoInfo(
            share_id=video.share_id,
            title=video.title or DEFAULT_TITLE,
            client=meta.get("client_name") or "",
            duration=video.duration or 0,
            file_size=video.file_size or 0,
            views=video.views or 0,
            status=video.status or "ready",
            created_at=video.created_at.isoformat() if video.created_at else None,
            video_url=self.storage.get_public_url(video.file_path),
            thumbnail_url=self.storage.get_public_url(video.thumbnail_path) if video.thumbnail_path else None,
        )

    @staticmethod
    def _comment_to_info(comment: Comment) -> CommentInfo:
        return CommentInfo(
            id=str(comment.id),
            author=comment.user_name,
            text=comment.content,
            timestamp=comment.timestamp_seconds,
            created_at=comment.created_at.isoformat() if comment.created_at else _now_iso(),
            category=comment.type or "comment",
        )

    def _find(self, db, share_id: str) -> Optional[Video]:
        return db.query(Video).filter(Video.share_id == share_id).first()

    def list_videos(self) -> List[VideoInfo]:
        with self.SessionLocal() as db:
            videos = db.query(Video).order_by(Video.created_at.desc(), Video.id.desc()).all()
            return [self._to_info(v) for v in videos]

    def get_video(self, share_id: str) -> Optional[VideoInfo]:
        with self.SessionLocal() as db:
            video = self._find(db, share_id)
            return self._to_info(video) if video else None

    def create_video(self, share_id, title, client, duration, file_size, has_thumbnail=False) -> VideoInfo:
        with self.SessionLocal() as db:
            video = Video(
                share_id=share_id,
                title=title or DEFAULT_TITLE,
                file_path=video_path(share_id),
                thumbnail_path=thumbnail_path(share_id) if has_thumbnail else None,
                duration=duration,
                file_size=file_size,
                status="ready",
                meta={"client_name": client or ""},
            )
            try:
                db.add(video)
                db.commit()
                db.refresh(video)
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Database error: {e}") from e
            logger.info(f"[Records] Created video {share_id}")
            return self._to_info(video)

    def delete_video(self, share_id: str) -> bool:
        with self.SessionLocal() as db:
            video = self._find(db, share_id)
            if not video:
                return False
            paths = [p for p in (video.file_path, video.thumbnail_path) if p]
            db.delete(video)
            db.commit()
        self.storage.remove(paths)
        logger.info(f"[Records] Deleted video {share_id}")
        return True

    def list_comments(self, share_id: str) -> List[CommentInfo]:
        with self.SessionLocal() as db:
            video = self._find(db, share_id)
            if not video:
                return []
            comments = (
                db.query(Comment)
                .filter(Comment.video_id == video.id)
                .order_by(
                    Comment.timestamp_seconds.is_(None),
                    Comment.timestamp_seconds,
                    Comment.created_at,
                    Comment.id,
                )
                .all()
            )
            return [self._comment_to_info(c) for c in comments]

    def add_comment(self, share_id, author, text, timestamp, category="comment") -> CommentInfo:
        if category not in COMMENT_TYPES:
            raise ValueError(f"Unknown comment type: {category}")
        with self.SessionLocal() as db:
            video = self._find(db, share_id)
            if not video:
                raise NotFoundError(share_id)
            comment = Comment(
                video_id=video.id,
                user_name=author,
                content=text,
                timestamp_seconds=timestamp,
                type=category,
            )
            db.add(comment)
            db.commit()
            db.refresh(comment)
            return self._comment_to_info(comment)

    def delete_comment(self, share_id: str, comment_id: str) -> bool:
        key = _comment_key(comment_id)
        if key is None:
            return False
        with self.SessionLocal() as db:
            video = self._find(db, share_id)
            if not video:
                raise NotFoundError(share_id)
            comment = (
                db.query(Comment)
                .filter(Comment.video_id == video.id, Comment.id == key)
                .first()
            )
            if not comment:
                return False
            db.delete(comment)
            db.commit()
            return True

    def replace_comments(self, share_id: str, comments: List[CommentInfo]) -> None:
        """Ids and creation times of the given comments are kept."""
        with self.SessionLocal() as db:
            video = self._find(db, share_id)
            if not video:
                raise NotFoundError(share_id)
            db.query(Comment).filter(Comment.video_id == video.id).delete()

            wanted = {k for k in (_comment_key(c.id) for c in comments) if k is not None}
            taken = {
                row.id
                for row in db.query(Comment.id).filter(Comment.id.in_(wanted)).all()
            } if wanted else set()
            for c in comments:
                key = _comment_key(c.id)
                if key is None or key in taken:
                    key = None  # fresh id
                else:
                    taken.add(key)
                row = Comment(
                    id=key,
                    video_id=video.id,
                    user_name=c.author,
                    content=c.text,
                    timestamp_seconds=c.timestamp,
                    type=c.category or "comment",
                )
                created = _parse_created(c.created_at)
                if created is not None:
                    row.created_at = created
                db.add(row)
            db.commit()

    def increment_views(self, share_id: str) -> Optional[int]:
        with self.SessionLocal() as db:
            video = self._find(db, share_id)
            if not video:
                raise NotFoundError(share_id)
            video.views = (video.views or 0) + 1
            db.commit()
            return video.views

    def close(self) -> None:
        self.engine.dispose()
        super().close()


class BlobPersistence(Persistence):
    """
    JSON sidecars in object storage, no database.

    Comment mutations rewrite the whole `{share_id}.comments.json` file. Two
    viewers editing the same thread concurrently race: the last full write
    wins and the other's change is lost.
    """

    def _read_json(self, path: str):
        try:
            raw = self.storage.download(path)
        except NotFoundError:
            return None
        try:
            return json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            logger.warning(f"[Blobs] Ignoring malformed JSON at {path}")
            return None

    def _to_info(self, share_id: str, meta: dict, fallback_created: Optional[str] = None) -> VideoInfo:
        has_thumbnail = bool(meta.get("thumbnail"))
        return VideoInfo(
            share_id=share_id,
            title=meta.get("title") or DEFAULT_TITLE,
            client=meta.get("client") or "",
            duration=int(meta.get("duration") or 0),
            file_size=int(meta.get("size") or 0),
            created_at=meta.get("createdAt") or fallback_created,
            video_url=self.video_url(share_id),
            thumbnail_url=self.thumbnail_url(share_id) if has_thumbnail else None,
        )

    def list_videos(self) -> List[VideoInfo]:
        videos = []
        for item in self.storage.list("videos"):
            name = item["name"]
            if not name.endswith(".json") or name.endswith(".comments.json"):
                continue
            share_id = name[: -len(".json")]
            meta = self._read_json(metadata_path(share_id))
            if not isinstance(meta, dict):
                continue
            videos.append(self._to_info(share_id, meta, item.get("created_at")))
        videos.sort(key=lambda v: v.created_at or "", reverse=True)
        return videos

    def get_video(self, share_id: str) -> Optional[VideoInfo]:
        meta = self._read_json(metadata_path(share_id))
        if isinstance(meta, dict):
            return self._to_info(share_id, meta)
        # Missing or malformed metadata still plays if the binary exists
        if self.storage.exists(video_path(share_id)):
            return self._to_info(share_id, {})
        return None

    def create_video(self, share_id, title, client, duration, file_size, has_thumbnail=False) -> VideoInfo:
        meta = {
            "title": title or DEFAULT_TITLE,
            "client": client or "",
            "duration": duration,
            "size": file_size,
            "createdAt": _now_iso(),
            "shareId": share_id,
            "thumbnail": has_thumbnail,
        }
        self.storage.upload(
            metadata_path(share_id),
            json.dumps(meta).encode("utf-8"),
            content_type="application/json",
            upsert=False,
        )
        logger.info(f"[Blobs] Wrote metadata for {share_id}")
        return self._to_info(share_id, meta)

    def delete_video(self, share_id: str) -> bool:
        if self.get_video(share_id) is None:
            return False
        self.storage.remove([
            video_path(share_id),
            thumbnail_path(share_id),
            metadata_path(share_id),
            comments_path(share_id),
        ])
        logger.info(f"[Blobs] Deleted video {share_id}")
        return True

    def list_comments(self, share_id: str) -> List[CommentInfo]:
        data = self._read_json(comments_path(share_id))
        if not isinstance(data, list):
            return []
        comments = []
        for entry in data:
            try:
                comments.append(CommentInfo(
                    id=str(entry["id"]),
                    author=entry.get("name", ""),
                    text=entry.get("text", ""),
                    timestamp=entry.get("timestamp"),
                    created_at=entry.get("createdAt") or _now_iso(),
                ))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"[Blobs] Skipping malformed comment in {share_id}")
        return comments

    def add_comment(self, share_id, author, text, timestamp, category="comment") -> CommentInfo:
        if self.get_video(share_id) is None:
            raise NotFoundError(share_id)
        comment = CommentInfo(id=str(uuid.uuid4()), author=author, text=text, timestamp=timestamp)
        self.replace_comments(share_id, self.list_comments(share_id) + [comment])
        return comment

    def delete_comment(self, share_id: str, comment_id: str) -> bool:
        comments = self.list_comments(share_id)
        remaining = [c for c in comments if c.id != comment_id]
        if len(remaining) == len(comments):
            return False
        self.replace_comments(share_id, remaining)
        return True

    def replace_comments(self, share_id: str, comments: List[CommentInfo]) -> None:
        payload = [
            {
                "id": c.id,
                "name": c.author,
                "text": c.text,
                "timestamp": c.timestamp,
                "createdAt": c.created_at,
            }
            for c in comments
        ]
        # No partial/append API: drop the old file, then write the full collection
        path = comments_path(share_id)
        self.storage.remove([path])
        self.storage.upload(
            path,
            json.dumps(payload).encode("utf-8"),
            content_type="application/json",
            upsert=True,
        )
        logger.debug(f"[Blobs] Rewrote {len(payload)} comments for {share_id}")


def build_persistence(config, storage: ObjectStorage) -> Persistence:
    strategy = config.PERSISTENCE.lower()
    if strategy == "records":
        return RecordPersistence(storage, config.DATABASE_URL)
    if strategy == "blobs":
        return BlobPersistence(storage)
    raise ValueError(f"Unknown PERSISTENCE strategy: {config.PERSISTENCE}")
