"""
Media device abstractions for the capture controller.

A MediaDevices provider hands out MediaStreams (display capture, webcam,
microphone). Each stream owns live MediaTracks that must be stopped to release
the underlying device.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class DeviceStatus(str, Enum):
    NOT_REQUESTED = "not_requested"
    GRANTED = "granted"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class VideoConstraints:
    width: int
    height: int
    frame_rate: int = 30


@dataclass(frozen=True)
class AudioConstraints:
    echo_cancellation: bool = True
    noise_suppression: bool = True


class MediaTrack:
    """One live audio or video source. `stop()` releases it."""

    def __init__(self, kind: str, label: str = ""):
        if kind not in ("audio", "video"):
            raise ValueError(f"Unknown track kind: {kind}")
        self.kind = kind
        self.label = label
        self.ready_state = "live"
        self.on_ended: Optional[Callable[[], None]] = None

    @property
    def live(self) -> bool:
        return self.ready_state == "live"

    def stop(self):
        # Stopping locally never fires on_ended
        self.ready_state = "ended"

    def end(self):
        """The source went away outside our control (e.g. "Stop sharing")."""
        if not self.live:
            return
        self.ready_state = "ended"
        if self.on_ended:
            self.on_ended()

    def __repr__(self):
        return f"MediaTrack({self.kind!r}, {self.label!r}, {self.ready_state})"


class MediaStream:
    def __init__(self, tracks: Optional[List[MediaTrack]] = None):
        self._tracks = list(tracks or [])

    def get_tracks(self) -> List[MediaTrack]:
        return list(self._tracks)

    def get_video_tracks(self) -> List[MediaTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    def get_audio_tracks(self) -> List[MediaTrack]:
        return [t for t in self._tracks if t.kind == "audio"]

    @property
    def active(self) -> bool:
        return any(t.live for t in self._tracks)

    def stop(self):
        for track in self._tracks:
            track.stop()


class MediaDevices(ABC):
    """Provider of capture streams; both methods raise PermissionDeniedError or
    DeviceUnavailableError when access fails."""

    @abstractmethod
    async def get_display_media(self, video: VideoConstraints, audio: bool) -> MediaStream:
        ...

    @abstractmethod
    async def get_user_media(
        self,
        video: Optional[VideoConstraints] = None,
        audio: Optional[AudioConstraints] = None,
    ) -> MediaStream:
        ...
