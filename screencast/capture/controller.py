"""
Capture Controller

Drives one recording at a time:
1. Acquire screen (required), webcam and microphone (optional)
2. Combine screen video with every captured audio track into one stream
3. Encode with the best supported codec, buffering ~1s chunks
4. Pause/resume/stop, with an elapsed clock that never counts paused time
5. Preview, discard, or upload the finished artifact for a share link
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from screencast.capture.devices import (
    AudioConstraints,
    DeviceStatus,
    MediaDevices,
    MediaStream,
    VideoConstraints,
)
from screencast.capture.encoder import (
    ChunkBuffer,
    EncoderFactory,
    MediaEncoder,
    TIMESLICE_MS,
    VIDEO_BITS_PER_SECOND,
    select_mime_type,
)
from screencast.capture.timer import ElapsedTimer
from screencast.errors import InvalidStateError, PermissionDeniedError, UploadError
from screencast.playback.formatting import format_duration, format_size

logger = logging.getLogger(__name__)

SCREEN_CONSTRAINTS = VideoConstraints(width=1920, height=1080, frame_rate=30)
WEBCAM_CONSTRAINTS = VideoConstraints(width=320, height=240, frame_rate=30)
MICROPHONE_CONSTRAINTS = AudioConstraints(echo_cancellation=True, noise_suppression=True)

WEBCAM_POSITIONS = ("bottom-right", "bottom-left", "top-left", "top-right")

SCREEN_DENIED_MESSAGE = "Screen sharing was denied. Please allow screen sharing to record."


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"
    UPLOADING = "uploading"


@dataclass
class RecordingOptions:
    screen: bool = True
    webcam: bool = True
    microphone: bool = True
    system_audio: bool = True

    def __post_init__(self):
        if not self.screen:
            raise ValueError("Screen capture is required")


@dataclass
class RecordedArtifact:
    data: bytes
    mime_type: str
    preview_url: str
    audio_sources: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.data)


class PreviewUrls:
    """Local `blob:` references to in-memory artifacts."""

    def __init__(self):
        self._objects: Dict[str, bytes] = {}

    def create(self, data: bytes) -> str:
        url = f"blob:{uuid.uuid4()}"
        self._objects[url] = data
        return url

    def resolve(self, url: str) -> Optional[bytes]:
        return self._objects.get(url)

    def revoke(self, url: str):
        self._objects.pop(url, None)

    def __len__(self):
        return len(self._objects)


PreviewSink = Callable[[Optional[MediaStream]], None]


class CaptureController:
    def __init__(
        self,
        devices: MediaDevices,
        encoders: EncoderFactory,
        uploader=None,
        previews: Optional[PreviewUrls] = None,
        tick_interval: float = 1.0,
    ):
        self.devices = devices
        self.encoders = encoders
        self.uploader = uploader
        self.previews = previews or PreviewUrls()

        self.state = CaptureState.IDLE
        self.options = RecordingOptions()
        self.title = ""
        self.client = ""
        self.error: Optional[str] = None
        self.artifact: Optional[RecordedArtifact] = None
        self.share_link: Optional[str] = None
        self.upload_progress = 0
        self.webcam_position = WEBCAM_POSITIONS[0]
        self.mime_type: Optional[str] = None
        self.device_status: Dict[str, DeviceStatus] = {}

        self.screen_stream: Optional[MediaStream] = None
        self.webcam_stream: Optional[MediaStream] = None
        self.mic_stream: Optional[MediaStream] = None
        self.combined_stream: Optional[MediaStream] = None
        self.encoder: Optional[MediaEncoder] = None
        self.chunks = ChunkBuffer()
        self.timer = ElapsedTimer(interval=tick_interval)

        self._audio_sources: List[str] = []
        self._screen_sink: Optional[PreviewSink] = None
        self._webcam_sink: Optional[PreviewSink] = None
        self._reset_device_status()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def elapsed(self) -> int:
        return self.timer.elapsed

    @property
    def elapsed_display(self) -> str:
        return format_duration(self.elapsed)

    @property
    def share_ready(self) -> bool:
        return self.share_link is not None

    @property
    def summary(self) -> str:
        """e.g. "00:05 · 1.2 MB" for the recording-complete screen."""
        size = format_size(self.artifact.size) if self.artifact else ""
        return f"{self.elapsed_display} · {size}"

    def dismiss_error(self):
        self.error = None

    def _reset_device_status(self):
        self.device_status = {
            "screen": DeviceStatus.NOT_REQUESTED,
            "webcam": DeviceStatus.NOT_REQUESTED,
            "microphone": DeviceStatus.NOT_REQUESTED,
        }

    # ------------------------------------------------------------------
    # Recording lifecycle
    # ------------------------------------------------------------------

    async def start_recording(self) -> bool:
        """
        Acquire devices and begin encoding.

        Returns:
            True when recording started. On screen-capture failure the error
            banner is set, partial acquisitions are released and we stay idle.
        """
        if self.state != CaptureState.IDLE:
            raise InvalidStateError(f"Cannot start recording while {self.state.value}")

        self.error = None
        self.chunks.clear()
        self.timer.reset()
        self._audio_sources = []
        self._reset_device_status()

        try:
            screen = await self.devices.get_display_media(
                SCREEN_CONSTRAINTS, audio=self.options.system_audio
            )
        except PermissionDeniedError as e:
            logger.warning(f"[Capture] Screen sharing denied: {e}")
            self.device_status["screen"] = DeviceStatus.DENIED
            return self._abort_start(SCREEN_DENIED_MESSAGE)
        except Exception as e:
            logger.warning(f"[Capture] Screen capture failed: {e}")
            self.device_status["screen"] = DeviceStatus.UNAVAILABLE
            return self._abort_start(f"Failed to start recording: {e}")

        self.screen_stream = screen
        self.device_status["screen"] = DeviceStatus.GRANTED
        video_tracks = screen.get_video_tracks()
        if video_tracks:
            video_tracks[0].on_ended = self._on_screen_share_ended

        if self.options.webcam:
            self.webcam_stream = await self._acquire_optional(
                "webcam", video=WEBCAM_CONSTRAINTS
            )
        if self.options.microphone:
            self.mic_stream = await self._acquire_optional(
                "microphone", audio=MICROPHONE_CONSTRAINTS
            )

        audio_tracks = []
        if self.mic_stream and self.mic_stream.get_audio_tracks():
            audio_tracks.extend(self.mic_stream.get_audio_tracks())
            self._audio_sources.append("microphone")
        if screen.get_audio_tracks():
            audio_tracks.extend(screen.get_audio_tracks())
            self._audio_sources.append("system")

        self.combined_stream = MediaStream(video_tracks + audio_tracks)
        self.mime_type = select_mime_type(self.encoders.is_type_supported)

        try:
            encoder = self.encoders.create(self.combined_stream, self.mime_type, VIDEO_BITS_PER_SECOND)
            encoder.on_data = self._on_data
            encoder.on_stop = self._on_encoder_stopped
            encoder.start(TIMESLICE_MS)
        except Exception as e:
            logger.exception(f"[Capture] Encoder failed to start: {e}")
            return self._abort_start(f"Failed to start recording: {e}")

        self.encoder = encoder
        self.state = CaptureState.RECORDING
        self.timer.start()
        self._bind_previews()
        logger.info(
            f"[Capture] Recording started ({self.mime_type}, audio: {self._audio_sources or 'none'}, "
            f"webcam: {self.device_status['webcam'].value})"
        )
        return True

    async def _acquire_optional(self, device: str, video=None, audio=None) -> Optional[MediaStream]:
        try:
            stream = await self.devices.get_user_media(video=video, audio=audio)
        except PermissionDeniedError as e:
            logger.warning(f"[Capture] {device.capitalize()} denied, continuing without it: {e}")
            self.device_status[device] = DeviceStatus.DENIED
            return None
        except Exception as e:
            logger.warning(f"[Capture] {device.capitalize()} not available: {e}")
            self.device_status[device] = DeviceStatus.UNAVAILABLE
            return None
        self.device_status[device] = DeviceStatus.GRANTED
        return stream

    def _abort_start(self, message: str) -> bool:
        self.error = message
        self.release_streams()
        self.state = CaptureState.IDLE
        return False

    def _on_data(self, chunk: bytes):
        self.chunks.append(chunk)

    def _on_screen_share_ended(self):
        logger.info("[Capture] Screen sharing ended by the browser/OS, stopping")
        self.stop()

    def pause(self):
        if self.state != CaptureState.RECORDING or not self.encoder:
            return
        if self.encoder.state == "recording":
            self.encoder.pause()
            self.state = CaptureState.PAUSED
            self.timer.stop()

    def resume(self):
        if self.state != CaptureState.PAUSED or not self.encoder:
            return
        if self.encoder.state == "paused":
            self.encoder.resume()
            self.state = CaptureState.RECORDING
            self.timer.start()

    def stop(self):
        """Flush the encoder; finalization happens when it reports stopped."""
        if self.encoder and self.encoder.state != "inactive":
            self.encoder.stop()

    def _on_encoder_stopped(self):
        mime_type = self.mime_type or "video/webm"
        data = self.chunks.concatenate()
        self.artifact = RecordedArtifact(
            data=data,
            mime_type=mime_type,
            preview_url=self.previews.create(data),
            audio_sources=list(self._audio_sources),
        )
        self.state = CaptureState.STOPPED
        self.timer.stop()
        self.release_streams()
        self.encoder = None
        logger.info(f"[Capture] Recording stopped: {self.summary}")

    def discard(self):
        if self.state in (CaptureState.RECORDING, CaptureState.PAUSED, CaptureState.UPLOADING):
            raise InvalidStateError(f"Cannot discard while {self.state.value}")
        if self.artifact:
            self.previews.revoke(self.artifact.preview_url)
        self.artifact = None
        self.share_link = None
        self.chunks.clear()
        self.timer.reset()
        self.title = ""
        self.client = ""
        self.upload_progress = 0
        self.error = None
        self.state = CaptureState.IDLE

    def release_streams(self):
        """Stop every acquired track. Safe to call repeatedly."""
        for stream in (self.screen_stream, self.webcam_stream, self.mic_stream):
            if stream is not None:
                stream.stop()
        self.screen_stream = None
        self.webcam_stream = None
        self.mic_stream = None
        self.combined_stream = None
        self._bind_previews()

    def close(self):
        """Tear down when the recorder goes away mid-session."""
        if self.encoder is not None:
            self.encoder.on_data = None
            self.encoder.on_stop = None
            if self.encoder.state != "inactive":
                self.encoder.stop()
            self.encoder = None
        self.release_streams()
        self.timer.stop()
        if self.artifact:
            self.previews.revoke(self.artifact.preview_url)

    # ------------------------------------------------------------------
    # Previews
    # ------------------------------------------------------------------

    def bind_preview(self, screen: Optional[PreviewSink] = None, webcam: Optional[PreviewSink] = None):
        """Register output targets; they receive the live stream (or None)."""
        if screen is not None:
            self._screen_sink = screen
        if webcam is not None:
            self._webcam_sink = webcam
        self._bind_previews()

    def _bind_previews(self):
        if self._screen_sink:
            self._screen_sink(self.screen_stream)
        if self._webcam_sink:
            self._webcam_sink(self.webcam_stream)

    def cycle_webcam_position(self) -> str:
        index = WEBCAM_POSITIONS.index(self.webcam_position)
        self.webcam_position = WEBCAM_POSITIONS[(index + 1) % len(WEBCAM_POSITIONS)]
        return self.webcam_position

    def download_name(self, now_ms: Optional[int] = None) -> str:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        return f"{self.title or 'recording'}-{now_ms}.webm"

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def _set_progress(self, pct: int):
        self.upload_progress = pct

    async def upload(self) -> Optional[str]:
        """
        Upload the stopped recording.

        Returns:
            The share link, or None on failure (error banner set, back to stopped
            so the user can retry without re-recording).
        """
        if self.state != CaptureState.STOPPED or not self.artifact or self.share_link:
            raise InvalidStateError("Nothing to upload")
        if self.uploader is None:
            raise InvalidStateError("No upload service configured")

        self.state = CaptureState.UPLOADING
        self.upload_progress = 0
        self.error = None
        try:
            result = await asyncio.to_thread(
                self.uploader.upload,
                self.artifact.data,
                self.title,
                self.client,
                self.elapsed,
                self.artifact.mime_type,
                self._set_progress,
            )
        except UploadError as e:
            logger.error(f"[Capture] Upload error: {e}")
            self.error = str(e) or "Upload failed"
            self.state = CaptureState.STOPPED
            return None
        except Exception as e:
            logger.exception(f"[Capture] Unexpected upload error: {e}")
            self.error = str(e) or "Upload failed"
            self.state = CaptureState.STOPPED
            return None

        self.share_link = result.share_url
        self.state = CaptureState.STOPPED
        return self.share_link
