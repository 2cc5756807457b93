"""
Desktop capture providers.

Screen frames come from mss, the webcam from PyAV's platform capture device
and the microphone from sounddevice (PortAudio). There is no portable
loopback for system audio, so display capture carries video only.
"""
import asyncio
import logging
import queue
import sys
import threading
from typing import Optional, Tuple

import av
import mss
from mss.exception import ScreenShotError
from PIL import Image

from screencast.capture.devices import (
    AudioConstraints,
    MediaDevices,
    MediaStream,
    MediaTrack,
    VideoConstraints,
)
from screencast.errors import DeviceUnavailableError

logger = logging.getLogger(__name__)

MIC_SAMPLE_RATE = 48000
MIC_CHANNELS = 1


def default_camera() -> Tuple[Optional[str], Optional[str]]:
    """(device, input format) for the built-in camera on this platform."""
    if sys.platform.startswith("linux"):
        return "/dev/video0", "v4l2"
    if sys.platform == "darwin":
        return "0", "avfoundation"
    # dshow needs the camera's friendly name, see WEBCAM_DEVICE
    return None, "dshow"


def _list_monitors():
    with mss.mss() as sct:
        return list(sct.monitors)


def _input_stream(**kwargs):
    # PortAudio is loaded on import, so a machine without it fails here
    import sounddevice

    return sounddevice.RawInputStream(**kwargs)


class ScreenTrack(MediaTrack):
    """One monitor; `grab()` returns the current frame scaled to the constraints."""

    def __init__(self, monitor: dict, constraints: VideoConstraints, loop=None):
        super().__init__("video", "screen")
        self.monitor = monitor
        self.constraints = constraints
        self.frame_rate = constraints.frame_rate
        self._loop = loop
        self._local = threading.local()

    def grab(self) -> Optional[Image.Image]:
        if not self.live:
            return None
        # mss handles are bound to the thread that created them
        sct = getattr(self._local, "sct", None)
        if sct is None:
            sct = self._local.sct = mss.mss()
        try:
            shot = sct.grab(self.monitor)
        except ScreenShotError as e:
            logger.warning(f"[Capture] Screen source lost: {e}")
            self._source_ended()
            return None
        image = Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")
        image.thumbnail((self.constraints.width, self.constraints.height))
        return image

    def _source_ended(self):
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.end)
        else:
            self.end()


class WebcamTrack(MediaTrack):
    def __init__(self, device: str, input_format: str, constraints: VideoConstraints):
        super().__init__("video", "webcam")
        self.constraints = constraints
        options = {
            "video_size": f"{constraints.width}x{constraints.height}",
            "framerate": str(constraints.frame_rate),
        }
        self._container = av.open(device, format=input_format, options=options)
        self._frames = self._container.decode(video=0)

    def grab(self) -> Optional[Image.Image]:
        if not self.live:
            return None
        try:
            return next(self._frames).to_image()
        except (StopIteration, av.error.FFmpegError):
            self.end()
            return None

    def stop(self):
        super().stop()
        self._container.close()


class MicrophoneTrack(MediaTrack):
    """16-bit PCM from the default input; `read()` drains what arrived so far."""

    def __init__(self, constraints: AudioConstraints):
        super().__init__("audio", "microphone")
        self.constraints = constraints
        self.sample_rate = MIC_SAMPLE_RATE
        self.channels = MIC_CHANNELS
        self._buffers: "queue.Queue[bytes]" = queue.Queue()
        self._stream = _input_stream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            callback=self._on_audio,
        )
        self._stream.start()

    def _on_audio(self, indata, frames, time_info, status):
        if status:
            logger.debug(f"[Capture] Microphone status: {status}")
        if self.live:
            self._buffers.put(bytes(indata))

    def read(self) -> bytes:
        chunks = []
        while True:
            try:
                chunks.append(self._buffers.get_nowait())
            except queue.Empty:
                return b"".join(chunks)

    def stop(self):
        if not self.live:
            return
        super().stop()
        self._stream.stop()
        self._stream.close()


class DesktopMediaDevices(MediaDevices):
    def __init__(self, monitor: int = 1, webcam_device: Optional[str] = None, webcam_format: Optional[str] = None):
        default_device, default_format = default_camera()
        self.monitor = monitor
        self.webcam_device = webcam_device or default_device
        self.webcam_format = webcam_format or default_format

    async def get_display_media(self, video: VideoConstraints, audio: bool) -> MediaStream:
        try:
            monitors = await asyncio.to_thread(_list_monitors)
        except ScreenShotError as e:
            raise DeviceUnavailableError(f"Screen capture unavailable: {e}") from e
        # monitors[0] is the union of all screens
        if self.monitor >= len(monitors) or self.monitor < 1:
            raise DeviceUnavailableError(f"No display #{self.monitor}")

        if audio:
            logger.info("[Capture] System audio is not capturable on the desktop, recording screen video only")
        track = ScreenTrack(monitors[self.monitor], video, loop=asyncio.get_running_loop())
        return MediaStream([track])

    async def get_user_media(
        self,
        video: Optional[VideoConstraints] = None,
        audio: Optional[AudioConstraints] = None,
    ) -> MediaStream:
        if video is not None:
            if not self.webcam_device:
                raise DeviceUnavailableError("No webcam configured (set WEBCAM_DEVICE)")
            try:
                track = await asyncio.to_thread(WebcamTrack, self.webcam_device, self.webcam_format, video)
            except Exception as e:
                raise DeviceUnavailableError(f"Webcam unavailable: {e}") from e
            return MediaStream([track])

        try:
            track = await asyncio.to_thread(MicrophoneTrack, audio or AudioConstraints())
        except Exception as e:
            raise DeviceUnavailableError(f"Microphone unavailable: {e}") from e
        return MediaStream([track])
