"""
WebM encoder for desktop streams.

A worker thread pulls screen frames at the track's frame rate and drains
microphone PCM, PyAV muxes both into a WebM byte stream, and the bytes are
handed out every `timeslice` of recorded time the way MediaRecorder does.
Callbacks are delivered on the event loop that called `start()`.
"""
import asyncio
import logging
import threading
import time
from fractions import Fraction
from typing import Optional, Tuple

import av
from PIL import Image

from screencast.capture.devices import MediaStream
from screencast.capture.encoder import EncoderFactory, MediaEncoder, TIMESLICE_MS
from screencast.errors import DeviceUnavailableError, InvalidStateError

logger = logging.getLogger(__name__)

FFMPEG_CODECS = {
    "vp8": "libvpx",
    "vp9": "libvpx-vp9",
    "opus": "libopus",
}


def codecs_for(mime_type: str) -> Tuple[str, str]:
    """'video/webm;codecs=vp9,opus' -> ('libvpx-vp9', 'libopus')."""
    video, audio = FFMPEG_CODECS["vp8"], FFMPEG_CODECS["opus"]
    if "codecs=" in mime_type:
        for name in mime_type.split("codecs=", 1)[1].strip('"').split(","):
            name = name.strip()
            if name in ("vp8", "vp9"):
                video = FFMPEG_CODECS[name]
            elif name == "opus":
                audio = FFMPEG_CODECS[name]
    return video, audio


class ChunkSink:
    """Write-only file object; without seek/tell the muxer streams like a live recorder."""

    def __init__(self):
        self._pending = bytearray()
        self._lock = threading.Lock()

    def write(self, data) -> int:
        with self._lock:
            self._pending.extend(data)
        return len(data)

    def flush(self):
        pass

    def take(self) -> bytes:
        with self._lock:
            data = bytes(self._pending)
            self._pending.clear()
        return data


class AvWebmEncoder(MediaEncoder):
    def __init__(self, stream: MediaStream, mime_type: str, video_bits_per_second: int):
        super().__init__(stream, mime_type, video_bits_per_second)
        video_tracks = [t for t in stream.get_video_tracks() if hasattr(t, "grab")]
        if not video_tracks:
            raise DeviceUnavailableError("No capturable video track in stream")
        self.video_track = video_tracks[0]
        audio_tracks = [t for t in stream.get_audio_tracks() if hasattr(t, "read")]
        if len(audio_tracks) > 1:
            logger.warning(f"[Encoder] Mixing is not supported, recording {audio_tracks[0].label} audio only")
        self.audio_track = audio_tracks[0] if audio_tracks else None
        self.frame_rate = int(getattr(self.video_track, "frame_rate", 30))
        channels = getattr(self.audio_track, "channels", 1)
        self._audio_layout = "mono" if channels == 1 else "stereo"

        self._sink = ChunkSink()
        self._container = None
        self._video = None
        self._audio = None
        self._audio_samples = 0
        self._size = (0, 0)
        self._timeslice = TIMESLICE_MS / 1000
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._loop = None

    # ------------------------------------------------------------------
    # Control (event loop side)
    # ------------------------------------------------------------------

    def start(self, timeslice_ms: int = TIMESLICE_MS):
        if self.state != "inactive" or self._thread is not None:
            raise InvalidStateError("Encoder already started")
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self._timeslice = timeslice_ms / 1000

        first = self.video_track.grab()
        if first is None:
            raise DeviceUnavailableError("Video source produced no frame")
        self._open_container(first.size)

        self.state = "recording"
        self._thread = threading.Thread(target=self._run, args=(first,), name="webm-encoder", daemon=True)
        self._thread.start()
        logger.info(f"[Encoder] {self.mime_type} {self._size[0]}x{self._size[1]}@{self.frame_rate}")

    def pause(self):
        if self.state == "recording":
            self.state = "paused"

    def resume(self):
        if self.state == "paused":
            self.state = "recording"

    def stop(self):
        """Finish the file; the last chunk and on_stop follow from the worker."""
        if self._thread is None or self._stopping.is_set():
            return
        self._stopping.set()
        if threading.current_thread() is not self._thread:
            self._thread.join()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _open_container(self, size):
        video_codec, audio_codec = codecs_for(self.mime_type)
        # yuv420p needs even dimensions
        width, height = size[0] - size[0] % 2, size[1] - size[1] % 2
        self._size = (width, height)

        # Close a cluster every timeslice and push bytes out per packet
        self._container = av.open(
            self._sink,
            mode="w",
            format="webm",
            container_options={
                "live": "1",
                "cluster_time_limit": str(int(self._timeslice * 1000)),
                "flush_packets": "1",
            },
        )
        self._video = self._container.add_stream(
            video_codec,
            rate=self.frame_rate,
            options={"deadline": "realtime", "cpu-used": "8", "lag-in-frames": "0"},
        )
        self._video.width = width
        self._video.height = height
        self._video.pix_fmt = "yuv420p"
        self._video.codec_context.bit_rate = self.video_bits_per_second

        if self.audio_track is not None:
            self._audio = self._container.add_stream(audio_codec, rate=self.audio_track.sample_rate)
            self._audio.codec_context.layout = self._audio_layout

    def _run(self, first: Image.Image):
        interval = 1 / self.frame_rate
        active = 0.0  # recorded seconds, paused time excluded
        last_tick = time.monotonic()
        next_flush = self._timeslice
        last_pts = -1
        pending = first
        try:
            while not self._stopping.is_set():
                started = time.monotonic()
                recording = self.state == "recording"
                if recording:
                    active += started - last_tick
                last_tick = started

                if recording:
                    image = pending if pending is not None else self.video_track.grab()
                    pending = None
                    if image is None and not self.video_track.live:
                        break
                    if image is not None:
                        pts = int(active * self.frame_rate)
                        if pts > last_pts:
                            self._encode_video(image, pts)
                            last_pts = pts
                    self._encode_audio()
                    if active >= next_flush:
                        self._emit_chunk()
                        next_flush += self._timeslice
                elif self.audio_track is not None:
                    self.audio_track.read()  # drop audio captured while paused

                time.sleep(max(0.0, interval - (time.monotonic() - started)))
        except Exception as e:
            logger.exception(f"[Encoder] Encoding failed: {e}")
        finally:
            self._finish()

    def _encode_video(self, image: Image.Image, pts: int):
        if image.size != self._size:
            image = image.resize(self._size)
        frame = av.VideoFrame.from_image(image.convert("RGB"))
        frame.pts = pts
        frame.time_base = Fraction(1, self.frame_rate)
        for packet in self._video.encode(frame):
            self._container.mux(packet)

    def _encode_audio(self):
        if self._audio is None:
            return
        pcm = self.audio_track.read()
        bytes_per_sample = 2 * self.audio_track.channels
        samples = len(pcm) // bytes_per_sample
        if not samples:
            return
        frame = av.AudioFrame(format="s16", layout=self._audio_layout, samples=samples)
        frame.planes[0].update(pcm[: samples * bytes_per_sample])
        frame.sample_rate = self.audio_track.sample_rate
        frame.pts = self._audio_samples
        frame.time_base = Fraction(1, self.audio_track.sample_rate)
        self._audio_samples += samples
        for packet in self._audio.encode(frame):
            self._container.mux(packet)

    def _finish(self):
        try:
            for packet in self._video.encode():
                self._container.mux(packet)
            if self._audio is not None:
                for packet in self._audio.encode():
                    self._container.mux(packet)
            self._container.close()
        except av.error.FFmpegError as e:
            logger.error(f"[Encoder] Could not finalize recording: {e}")
        self.state = "inactive"
        self._emit_chunk()
        self._dispatch(self.on_stop)

    def _emit_chunk(self):
        data = self._sink.take()
        if data:
            self._dispatch(self.on_data, data)

    def _dispatch(self, callback, *args):
        if callback is None:
            return
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(callback, *args)
        else:
            callback(*args)


class AvEncoderFactory(EncoderFactory):
    def is_type_supported(self, mime_type: str) -> bool:
        if not mime_type.startswith("video/webm"):
            return False
        video, audio = codecs_for(mime_type)
        return video in av.codecs_available and audio in av.codecs_available

    def create(self, stream: MediaStream, mime_type: str, video_bits_per_second: int) -> MediaEncoder:
        return AvWebmEncoder(stream, mime_type, video_bits_per_second)
