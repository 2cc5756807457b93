"""
Thumbnail Service

Decodes the recorded artifact in memory, seeks a short way in and renders a
single frame to a fixed-size JPEG. Failures are never fatal to an upload.
"""
import io
import logging
from typing import Optional, Tuple

import av
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)


def _grab_frame(data: bytes, offset: float) -> Optional[Image.Image]:
    with av.open(io.BytesIO(data)) as container:
        if not container.streams.video:
            return None
        stream = container.streams.video[0]

        target = offset
        if stream.duration and stream.time_base:
            length = float(stream.duration * stream.time_base)
            target = min(offset, max(length - 0.1, 0.0))

        if target > 0 and stream.time_base:
            try:
                container.seek(int(target / stream.time_base), stream=stream)
            except av.error.FFmpegError:
                # MediaRecorder WebM often has no cues; decode from the start instead
                container.seek(0)

        frame = None
        for frame in container.decode(stream):
            if frame.time is not None and frame.time >= target:
                break
        return frame.to_image() if frame is not None else None


def generate_thumbnail(
    data: bytes,
    offset: float = 2.0,
    size: Tuple[int, int] = (640, 360),
) -> Optional[bytes]:
    """
    Render one frame of a recording as a JPEG.

    Args:
        data: The encoded recording (WebM/MP4 bytes)
        offset: Seconds into the recording to take the frame from
        size: Output raster (width, height); the frame is letterboxed to fit

    Returns:
        JPEG bytes, or None if the recording could not be decoded
    """
    try:
        image = _grab_frame(data, offset)
        if image is None:
            logger.warning("[Thumbnail] No video frame found")
            return None
        raster = ImageOps.pad(image.convert("RGB"), size, color=(0, 0, 0))
        out = io.BytesIO()
        raster.save(out, format="JPEG", quality=85)
        return out.getvalue()
    except Exception as e:
        logger.warning(f"[Thumbnail] Generation failed: {e}")
        return None
