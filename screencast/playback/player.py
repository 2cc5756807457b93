"""
Playback & Annotation Session

Server-side model of the share page player: play position, transport
controls, keyboard shortcuts, and the timestamp-anchored comment thread with
its progress-bar markers.
"""
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from screencast.db.models import COMMENT_TYPES
from screencast.errors import InvalidStateError, ScreenCastError
from screencast.playback.formatting import format_date, format_time
from screencast.services.persistence import CommentInfo, Persistence, VideoInfo

logger = logging.getLogger(__name__)

PLAYBACK_RATES = (0.5, 0.75, 1, 1.25, 1.5, 2)
SKIP_SECONDS = 10
CONTROLS_HIDE_DELAY = 3.0

NOT_FOUND_MESSAGE = "This video may have been deleted or the link is invalid."


class LoadStatus(str, Enum):
    READY = "ready"
    NOT_FOUND = "not_found"


@dataclass
class Marker:
    comment: CommentInfo
    position: float  # 0..1 along the progress bar


def marker_position(anchor: Optional[float], duration: float) -> Optional[float]:
    """Fraction of the bar for an anchor, or None when it cannot be placed."""
    if anchor is None or not duration or math.isnan(duration) or duration <= 0:
        return None
    if math.isnan(anchor) or anchor < 0 or anchor > duration:
        return None
    return anchor / duration


def _whole_second(value: float) -> int:
    return int(math.floor(value + 0.5))


def _comment_sort_key(comment: CommentInfo):
    return (comment.timestamp is None, comment.timestamp or 0, comment.created_at)


class PlaybackSession:
    def __init__(
        self,
        persistence: Persistence,
        share_id: str,
        video: Optional[VideoInfo],
        comments: Optional[List[CommentInfo]] = None,
    ):
        self.persistence = persistence
        self.share_id = share_id
        self.video = video
        self.comments: List[CommentInfo] = list(comments or [])

        self.playing = False
        self.current_time = 0.0
        self.media_duration = 0.0
        self.volume = 1.0
        self.muted = False
        self.fullscreen = False
        self.playback_rate = 1
        self.controls_visible = True
        self.composing = False
        self.draft_anchor: Optional[int] = None
        self.error: Optional[str] = None
        self._hide_at: Optional[float] = None

    @classmethod
    def load(cls, persistence: Persistence, share_id: str, count_view: bool = True) -> "PlaybackSession":
        try:
            video = persistence.get_video(share_id)
        except ScreenCastError as e:
            logger.warning(f"[Playback] Could not load {share_id}: {e}")
            video = None
        if video is None:
            return cls(persistence, share_id, None)

        try:
            comments = persistence.list_comments(share_id)
        except ScreenCastError as e:
            logger.warning(f"[Comments] Could not load comments for {share_id}: {e}")
            comments = []

        if count_view and persistence.supports_views:
            try:
                views = persistence.increment_views(share_id)
                if views is not None:
                    video.views = views
            except ScreenCastError as e:
                logger.warning(f"[Playback] View count not updated for {share_id}: {e}")

        return cls(persistence, share_id, video, sorted(comments, key=_comment_sort_key))

    def dismiss_error(self):
        self.error = None

    @property
    def status(self) -> LoadStatus:
        return LoadStatus.READY if self.video is not None else LoadStatus.NOT_FOUND

    @property
    def duration(self) -> float:
        if self.media_duration > 0:
            return self.media_duration
        return float(self.video.duration) if self.video else 0.0

    @property
    def progress(self) -> float:
        return self.current_time / self.duration if self.duration > 0 else 0.0

    # ------------------------------------------------------------------
    # Media element events
    # ------------------------------------------------------------------

    def on_loaded_metadata(self, duration: float):
        if duration and not math.isnan(duration) and not math.isinf(duration):
            self.media_duration = float(duration)

    def on_time_update(self, current_time: float):
        self.current_time = max(0.0, float(current_time))

    def on_ended(self):
        self.playing = False
        self.controls_visible = True
        self._hide_at = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def play(self):
        self.playing = True

    def pause(self):
        self.playing = False
        self.controls_visible = True
        self._hide_at = None

    def toggle_play(self):
        if self.playing:
            self.pause()
        else:
            self.play()

    def seek(self, seconds: float):
        seconds = max(0.0, seconds)
        if self.duration > 0:
            seconds = min(seconds, self.duration)
        self.current_time = seconds

    def seek_fraction(self, fraction: float):
        fraction = min(max(fraction, 0.0), 1.0)
        self.seek(fraction * self.duration)

    def seek_click(self, offset_x: float, bar_width: float):
        """Progress-bar click at `offset_x` pixels on a bar `bar_width` wide."""
        if bar_width <= 0:
            return
        self.seek_fraction(offset_x / bar_width)

    def skip(self, seconds: float):
        self.seek(self.current_time + seconds)

    def set_volume(self, volume: float):
        self.volume = min(max(volume, 0.0), 1.0)
        self.muted = self.volume == 0

    def toggle_mute(self):
        self.muted = not self.muted

    def toggle_fullscreen(self):
        self.fullscreen = not self.fullscreen

    def set_playback_rate(self, rate: float):
        if rate not in PLAYBACK_RATES:
            raise ValueError(f"Unsupported playback rate: {rate}")
        self.playback_rate = rate

    # ------------------------------------------------------------------
    # Control overlay
    # ------------------------------------------------------------------

    def pointer_moved(self, now: float):
        self.controls_visible = True
        self._hide_at = now + CONTROLS_HIDE_DELAY if self.playing else None

    def pointer_left(self):
        if self.playing:
            self.controls_visible = False
            self._hide_at = None

    def refresh_controls(self, now: float):
        if self._hide_at is not None and self.playing and now >= self._hide_at:
            self.controls_visible = False
            self._hide_at = None

    # ------------------------------------------------------------------
    # Keyboard
    # ------------------------------------------------------------------

    def handle_key(self, key: str, in_text_input: bool = False) -> bool:
        if in_text_input:
            return False
        if key in (" ", "k"):
            self.toggle_play()
        elif key == "f":
            self.toggle_fullscreen()
        elif key == "m":
            self.toggle_mute()
        elif key == "ArrowLeft":
            self.skip(-SKIP_SECONDS)
        elif key == "ArrowRight":
            self.skip(SKIP_SECONDS)
        elif key == "c":
            self.begin_comment()
        else:
            return False
        return True

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def begin_comment(self):
        """Pause and pin a draft comment to the current second."""
        self.pause()
        self.composing = True
        self.draft_anchor = int(math.floor(self.current_time))

    def cancel_comment(self):
        self.composing = False
        self.draft_anchor = None

    def add_comment(self, author: str, text: str, category: str = "comment") -> Optional[CommentInfo]:
        if self.video is None:
            raise InvalidStateError("Video not loaded")
        author, text = (author or "").strip(), (text or "").strip()
        if not author or not text:
            raise ValueError("Name and comment text are required")
        if category not in COMMENT_TYPES:
            raise ValueError(f"Unknown comment type: {category}")

        anchor = self.draft_anchor if self.composing else int(math.floor(self.current_time))
        self.error = None
        try:
            comment = self.persistence.add_comment(self.share_id, author, text, anchor, category)
        except ScreenCastError as e:
            logger.error(f"[Comments] Failed to save comment on {self.share_id}: {e}")
            self.error = f"Failed to add comment: {e}"
            return None
        except Exception as e:
            logger.exception(f"[Comments] Unexpected error saving comment on {self.share_id}: {e}")
            self.error = "Failed to add comment"
            return None

        # Only reflected locally once persisted
        self.comments = sorted(self.comments + [comment], key=_comment_sort_key)
        self.cancel_comment()
        logger.info(f"[Comments] {author} commented at {format_time(anchor)} on {self.share_id}")
        return comment

    def delete_comment(self, comment_id: str) -> bool:
        """
        Returns:
            True when removed. Otherwise the error banner is set and the
            thread is left as it was.
        """
        self.error = None
        try:
            deleted = self.persistence.delete_comment(self.share_id, comment_id)
        except ScreenCastError as e:
            logger.error(f"[Comments] Failed to delete {comment_id} on {self.share_id}: {e}")
            self.error = f"Failed to delete comment: {e}"
            return False
        except Exception as e:
            logger.exception(f"[Comments] Unexpected error deleting {comment_id}: {e}")
            self.error = "Failed to delete comment"
            return False

        if not deleted:
            self.error = "Comment not found"
            return False
        self.comments = [c for c in self.comments if c.id != comment_id]
        return True

    def markers(self) -> List[Marker]:
        markers = []
        for comment in self.comments:
            position = marker_position(comment.timestamp, self.duration)
            if position is not None:
                markers.append(Marker(comment=comment, position=position))
        return markers

    def marker_clicked(self, comment: CommentInfo):
        if comment.timestamp is None:
            return
        self.seek(comment.timestamp)
        self.play()

    def active_comment(self) -> Optional[CommentInfo]:
        second = _whole_second(self.current_time)
        for comment in self.comments:
            if comment.timestamp is not None and _whole_second(comment.timestamp) == second:
                return comment
        return None

    def caption(self) -> Optional[CommentInfo]:
        return self.active_comment() if self.playing else None

    # ------------------------------------------------------------------
    # Page model
    # ------------------------------------------------------------------

    def page(self) -> dict:
        if self.video is None:
            return {"status": LoadStatus.NOT_FOUND.value, "share_id": self.share_id, "message": NOT_FOUND_MESSAGE}

        active = self.active_comment()
        return {
            "status": LoadStatus.READY.value,
            "share_id": self.share_id,
            "title": self.video.title,
            "client": self.video.client,
            "created": format_date(self.video.created_at),
            "duration": format_time(self.video.duration),
            "views": self.video.views,
            "video_url": self.video.video_url,
            "thumbnail_url": self.video.thumbnail_url,
            "error": self.error,
            "comments": [
                {
                    **c.model_dump(),
                    "tag": format_time(c.timestamp) if c.timestamp is not None else None,
                    "active": active is not None and c.id == active.id,
                }
                for c in self.comments
            ],
            "markers": [
                {"comment_id": m.comment.id, "position": m.position}
                for m in self.markers()
            ],
        }
