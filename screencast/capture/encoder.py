"""
Encoder contract and codec selection.

The encoder records a combined MediaStream and emits encoded chunks every
`timeslice` milliseconds through `on_data`; `stop()` flushes the last chunk and
then calls `on_stop`.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from screencast.capture.devices import MediaStream

# Most preferred first
CODEC_PREFERENCES = (
    "video/webm;codecs=vp9,opus",
    "video/webm;codecs=vp8,opus",
)
DEFAULT_MIME_TYPE = "video/webm"
VIDEO_BITS_PER_SECOND = 2_500_000
TIMESLICE_MS = 1000


def select_mime_type(is_supported: Callable[[str], bool]) -> str:
    for mime_type in CODEC_PREFERENCES:
        if is_supported(mime_type):
            return mime_type
    return DEFAULT_MIME_TYPE


class MediaEncoder(ABC):
    """States: inactive -> recording <-> paused -> inactive."""

    def __init__(self, stream: MediaStream, mime_type: str, video_bits_per_second: int):
        self.stream = stream
        self.mime_type = mime_type
        self.video_bits_per_second = video_bits_per_second
        self.state = "inactive"
        self.on_data: Optional[Callable[[bytes], None]] = None
        self.on_stop: Optional[Callable[[], None]] = None

    @abstractmethod
    def start(self, timeslice_ms: int = TIMESLICE_MS):
        ...

    @abstractmethod
    def pause(self):
        ...

    @abstractmethod
    def resume(self):
        ...

    @abstractmethod
    def stop(self):
        ...


class EncoderFactory(ABC):
    @abstractmethod
    def is_type_supported(self, mime_type: str) -> bool:
        ...

    @abstractmethod
    def create(self, stream: MediaStream, mime_type: str, video_bits_per_second: int) -> MediaEncoder:
        ...


class ChunkBuffer:
    """Encoded fragments in emission order."""

    def __init__(self):
        self._chunks: List[bytes] = []

    def append(self, chunk: bytes):
        if chunk:
            self._chunks.append(chunk)

    def concatenate(self) -> bytes:
        return b"".join(self._chunks)

    def clear(self):
        self._chunks = []

    @property
    def size(self) -> int:
        return sum(len(c) for c in self._chunks)

    def __len__(self):
        return len(self._chunks)
