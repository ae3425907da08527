"""Turning uploaded files into request payloads.

Images and videos are read into memory and base64-encoded. A video can
also stand in for an image slot: its last frame is decoded, drawn at the
video's native size and re-encoded as JPEG.
"""

import asyncio
import base64
import io
import logging
import mimetypes
import tempfile
from pathlib import Path
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from .errors import EncodingError, FrameExtractionError
from .models import ImageFile, VideoFile

logger = logging.getLogger(__name__)

END_OFFSET = 0.1
MIN_SEEKABLE_DURATION = 0.5
EXTRACTED_FRAME_NAME = "extracted_frame.jpg"

_SUFFIX_MIME_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


class MediaDecoder(Protocol):
    """Capability to decode frames from video bytes."""

    async def probe_duration(self, video_bytes: bytes) -> float:
        """Return the duration of the video in seconds."""
        ...

    async def decode_frame(self, video_bytes: bytes, at_time: float) -> bytes:
        """Return the frame shown at `at_time` as an encoded raster image."""
        ...


def guess_mime_type(path: Path) -> str:
    """Guess a MIME type, falling back on well-known suffixes."""
    mime_type, _ = mimetypes.guess_type(path)
    if mime_type:
        return mime_type
    return _SUFFIX_MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


def encode_bytes(
    data: bytes,
    filename: str,
    mime_type: str,
) -> ImageFile | VideoFile:
    """Wrap raw bytes as an image or video payload.

    Raises:
        EncodingError: If there is nothing to encode.

    """
    body = base64.b64encode(data).decode("ascii")
    if not body:
        msg = "Failed to read file as base64."
        raise EncodingError(msg)
    payload_type = VideoFile if mime_type.startswith("video/") else ImageFile
    return payload_type(filename=filename, mime_type=mime_type, data=data, base64=body)


async def encode(path: Path) -> ImageFile | VideoFile:
    """Read a file and encode it as a payload.

    Args:
        path: Image or video file on disk.

    Returns:
        ImageFile | VideoFile: Depending on the file's MIME type.

    Raises:
        EncodingError: If the file cannot be read or is empty.

    """
    try:
        data = await asyncio.to_thread(path.read_bytes)
    except OSError as e:
        msg = f"Failed to read {path}: {e}"
        raise EncodingError(msg) from e
    return encode_bytes(data, path.name, guess_mime_type(path))


def seek_target(duration: float) -> float:
    """Time to grab the "last" frame at.

    Slightly before the end to skip a trailing black frame; the very
    beginning for clips too short to seek into.
    """
    if duration > MIN_SEEKABLE_DURATION:
        return duration - END_OFFSET
    return 0.0


def _raster_to_jpeg(raster: bytes) -> bytes:
    try:
        with Image.open(io.BytesIO(raster)) as frame:
            surface = Image.new("RGB", frame.size)
            surface.paste(frame.convert("RGB"), (0, 0))
    except (UnidentifiedImageError, OSError) as e:
        msg = f"Decoded frame is not a readable image: {e}"
        raise FrameExtractionError(msg) from e
    out = io.BytesIO()
    surface.save(out, format="JPEG")
    return out.getvalue()


async def extract_last_frame(video: VideoFile, decoder: MediaDecoder) -> ImageFile:
    """Extract a representative closing frame from a video.

    Args:
        video: The video payload.
        decoder: Decoder used to probe and seek the video.

    Returns:
        ImageFile: A JPEG at the video's native dimensions.

    Raises:
        FrameExtractionError: If the video cannot be decoded or seeked.

    """
    if not video.data:
        msg = f"Video {video.filename} is empty."
        raise FrameExtractionError(msg)
    duration = await decoder.probe_duration(video.data)
    at_time = seek_target(duration)
    logger.debug("Extracting frame at %.2fs of %s (%.2fs)", at_time, video.filename, duration)
    raster = await decoder.decode_frame(video.data, at_time)
    jpeg = await asyncio.to_thread(_raster_to_jpeg, raster)
    return ImageFile(
        filename=EXTRACTED_FRAME_NAME,
        mime_type="image/jpeg",
        data=jpeg,
        base64=base64.b64encode(jpeg).decode("ascii"),
    )


async def ingest_frame_source(path: Path, decoder: MediaDecoder) -> ImageFile:
    """Load a frame slot input: an image as-is, or a video's last frame."""
    payload = await encode(path)
    if isinstance(payload, VideoFile):
        return await extract_last_frame(payload, decoder)
    return payload


class FFmpegDecoder:
    """`MediaDecoder` backed by the ffprobe and ffmpeg executables."""

    def __init__(
        self,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        timeout: float = 30.0,
    ) -> None:
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.timeout = timeout

    async def _run(self, *args: str) -> bytes:
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            msg = f"Could not start {args[0]}: {e}"
            raise FrameExtractionError(msg) from e
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            msg = f"{args[0]} did not finish within {self.timeout:.0f}s"
            raise FrameExtractionError(msg) from e
        if proc.returncode != 0:
            msg = f"{args[0]} failed: {stderr.decode(errors='replace').strip()}"
            raise FrameExtractionError(msg)
        return stdout

    async def probe_duration(self, video_bytes: bytes) -> float:
        with tempfile.NamedTemporaryFile(suffix=".mp4") as tmp:
            tmp.write(video_bytes)
            tmp.flush()
            out = await self._run(
                self.ffprobe, "-v", "error",
                "-show_entries", "format=duration",
                "-of", "csv=p=0",
                tmp.name,
            )
        try:
            return float(out.decode().strip())
        except ValueError as e:
            msg = f"Could not read video duration from {out!r}"
            raise FrameExtractionError(msg) from e

    async def decode_frame(self, video_bytes: bytes, at_time: float) -> bytes:
        with tempfile.NamedTemporaryFile(suffix=".mp4") as tmp:
            tmp.write(video_bytes)
            tmp.flush()
            frame = await self._run(
                self.ffmpeg, "-v", "error",
                "-ss", f"{at_time:.3f}",
                "-i", tmp.name,
                "-frames:v", "1",
                "-f", "image2pipe",
                "-vcodec", "png",
                "pipe:1",
            )
        if not frame:
            msg = f"No frame found at {at_time:.2f}s"
            raise FrameExtractionError(msg)
        return frame
