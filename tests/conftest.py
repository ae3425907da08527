"""Shared fakes and fixtures."""

import asyncio
import base64
import io

import pytest
from google.genai import types
from PIL import Image

from storyreel.models import ImageFile, Speaker, SpeechResult, VideoFile, VideoResult


def png_bytes(width: int = 64, height: int = 36, color: str = "red") -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


def image_file(name: str = "frame.png", color: str = "red") -> ImageFile:
    data = png_bytes(color=color)
    return ImageFile(
        filename=name,
        mime_type="image/png",
        data=data,
        base64=base64.b64encode(data).decode("ascii"),
    )


def video_file(name: str = "clip.mp4", data: bytes = b"fake mp4") -> VideoFile:
    return VideoFile(
        filename=name,
        mime_type="video/mp4",
        data=data,
        base64=base64.b64encode(data).decode("ascii"),
    )


class FakeVideoService:
    """Returns numbered videos, or raises what it is told to."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate_video(self, config):
        self.calls.append(config)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        n = len(self.calls)
        return VideoResult(
            video_url=f"output/scene_{n}.mp4",
            video_bytes=f"video {n}".encode(),
            handle=types.Video(uri=f"files/video-{n}", mime_type="video/mp4"),
        )


class FakeSpeechService:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, Speaker]] = []

    async def generate_speech(self, text, speaker):
        self.calls.append((text, speaker))
        if self.error is not None:
            raise self.error
        return SpeechResult(audio_url=f"output/speech_{len(self.calls)}.wav")


class FakeCredentials:
    def __init__(self, selected: bool = True, error: Exception | None = None) -> None:
        self.selected = selected
        self.error = error
        self.checks = 0
        self.selector_opened = 0

    async def has_selected_credential(self):
        self.checks += 1
        if self.error is not None:
            raise self.error
        return self.selected

    async def open_credential_selector(self):
        self.selector_opened += 1
        self.selected = True
        self.error = None


class FakeDecoder:
    """`MediaDecoder` returning a fixed raster and recording seeks."""

    def __init__(
        self,
        duration: float = 8.0,
        size: tuple[int, int] = (64, 36),
        error: Exception | None = None,
    ) -> None:
        self.duration = duration
        self.size = size
        self.error = error
        self.seeks: list[float] = []

    async def probe_duration(self, video_bytes):
        if self.error is not None:
            raise self.error
        return self.duration

    async def decode_frame(self, video_bytes, at_time):
        self.seeks.append(at_time)
        return png_bytes(*self.size, color="blue")


@pytest.fixture
def video_service():
    return FakeVideoService()


@pytest.fixture
def speech_service():
    return FakeSpeechService()


@pytest.fixture
def credentials():
    return FakeCredentials()
