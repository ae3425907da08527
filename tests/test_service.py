import wave
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.genai import errors as genai_errors
from google.genai import types

from conftest import image_file
from storyreel.errors import GenerationServiceError
from storyreel.models import (
    GenerationMode,
    GenerationSettings,
    RequestConfig,
    Resolution,
    Speaker,
)
from storyreel.service import GeminiService


@pytest.fixture
def mock_genai_client():
    with patch("storyreel.service.genai.Client") as mock:
        client = mock.return_value
        client.aio.models.generate_videos = AsyncMock()
        client.aio.models.generate_content = AsyncMock()
        client.aio.operations.get = AsyncMock()
        yield mock


@pytest.fixture
def settings(tmp_path):
    return GenerationSettings(output_dir=tmp_path, poll_interval=0, min_wait=0, max_wait=0)


def _operation(done=True, videos=None, error=None):
    operation = MagicMock()
    operation.done = done
    operation.error = error
    operation.response.generated_videos = videos if videos is not None else []
    return operation


def _generated(data: bytes | None = b"mp4 data"):
    video = types.Video(uri="files/video-1", video_bytes=data, mime_type="video/mp4")
    return MagicMock(video=video)


def test_service_init(mock_genai_client):
    service = GeminiService(api_key="fake-key")
    mock_genai_client.assert_called_with(api_key="fake-key")
    assert service.client is not None


def test_service_init_missing_key():
    with pytest.raises(ValueError, match="API Key is missing"):
        GeminiService(api_key="")


def test_build_request_text(mock_genai_client, settings):
    service = GeminiService(api_key="key", settings=settings)
    request = service.build_video_request(RequestConfig(prompt="a fox"))

    assert request["model"] == "veo-3.1-fast-generate-preview"
    assert request["prompt"] == "a fox"
    assert request["config"].aspect_ratio == "16:9"
    assert request["config"].resolution == "720p"
    assert "image" not in request


def test_build_request_looping_frames(mock_genai_client, settings):
    service = GeminiService(api_key="key", settings=settings)
    start = image_file("start.png")
    config = RequestConfig(
        mode=GenerationMode.FRAMES_TO_VIDEO,
        start_frame=start,
        is_looping=True,
    )

    request = service.build_video_request(config)

    assert "prompt" not in request
    assert request["image"].image_bytes == start.data
    assert request["config"].last_frame.image_bytes == start.data


def test_build_request_references(mock_genai_client, settings):
    service = GeminiService(api_key="key", settings=settings)
    config = RequestConfig(
        mode=GenerationMode.REFERENCES_TO_VIDEO,
        prompt="hero walks",
        reference_images=(image_file("a.png"), image_file("b.png")),
        style_image=image_file("style.png"),
    )

    references = service.build_video_request(config)["config"].reference_images

    assert len(references) == 3
    assert references[0].reference_type == types.VideoGenerationReferenceType.ASSET
    assert references[-1].reference_type == types.VideoGenerationReferenceType.STYLE


def test_build_request_extend(mock_genai_client, settings):
    service = GeminiService(api_key="key", settings=settings)
    handle = types.Video(uri="files/previous")
    config = RequestConfig(mode=GenerationMode.EXTEND_VIDEO, input_video_handle=handle)

    request = service.build_video_request(config)

    assert request["video"] == handle
    assert request["config"].aspect_ratio is None
    assert request["config"].resolution == Resolution.P720.value


@pytest.mark.asyncio
async def test_generate_video_polls_until_done(mock_genai_client, settings):
    client = mock_genai_client.return_value
    client.aio.models.generate_videos.return_value = _operation(done=False)
    client.aio.operations.get.side_effect = [
        _operation(done=False),
        _operation(done=True, videos=[_generated()]),
    ]

    service = GeminiService(api_key="key", settings=settings)
    result = await service.generate_video(RequestConfig(prompt="a fox"))

    assert client.aio.operations.get.await_count == 2
    assert result.video_bytes == b"mp4 data"
    assert result.handle.uri == "files/video-1"
    assert settings.output_dir in Path(result.video_url).parents
    with open(result.video_url, "rb") as f:
        assert f.read() == b"mp4 data"


@pytest.mark.asyncio
async def test_generate_video_downloads_when_bytes_missing(mock_genai_client, settings):
    client = mock_genai_client.return_value
    client.aio.models.generate_videos.return_value = _operation(
        videos=[_generated(data=None)],
    )
    client.files.download.return_value = b"downloaded"

    service = GeminiService(api_key="key", settings=settings)
    result = await service.generate_video(RequestConfig(prompt="a fox"))

    client.files.download.assert_called_once()
    assert result.video_bytes == b"downloaded"


@pytest.mark.asyncio
async def test_generate_video_operation_error(mock_genai_client, settings):
    client = mock_genai_client.return_value
    client.aio.models.generate_videos.return_value = _operation(
        error={"code": 3, "message": "Prompt was blocked"},
    )

    service = GeminiService(api_key="key", settings=settings)
    with pytest.raises(GenerationServiceError, match="Prompt was blocked"):
        await service.generate_video(RequestConfig(prompt="a fox"))


@pytest.mark.asyncio
async def test_generate_video_no_videos(mock_genai_client, settings):
    client = mock_genai_client.return_value
    client.aio.models.generate_videos.return_value = _operation(videos=[])

    service = GeminiService(api_key="key", settings=settings)
    with pytest.raises(GenerationServiceError, match="No videos were generated"):
        await service.generate_video(RequestConfig(prompt="a fox"))


@pytest.mark.asyncio
async def test_generate_video_retries_server_errors(mock_genai_client, settings):
    client = mock_genai_client.return_value
    server_error = genai_errors.ServerError(
        503,
        {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}},
    )
    client.aio.models.generate_videos.side_effect = [
        server_error,
        _operation(videos=[_generated()]),
    ]

    service = GeminiService(api_key="key", settings=settings)
    result = await service.generate_video(RequestConfig(prompt="a fox"))

    assert client.aio.models.generate_videos.await_count == 2
    assert result.video_bytes == b"mp4 data"


@pytest.mark.asyncio
async def test_generate_video_does_not_retry_client_errors(mock_genai_client, settings):
    client = mock_genai_client.return_value
    client.aio.models.generate_videos.side_effect = genai_errors.ClientError(
        403,
        {"error": {"code": 403, "message": "denied", "status": "PERMISSION_DENIED"}},
    )

    service = GeminiService(api_key="key", settings=settings)
    with pytest.raises(genai_errors.ClientError):
        await service.generate_video(RequestConfig(prompt="a fox"))
    assert client.aio.models.generate_videos.await_count == 1


@pytest.mark.asyncio
async def test_generate_speech_writes_wav(mock_genai_client, settings):
    part = MagicMock()
    part.inline_data.data = b"\x00\x01" * 2400
    part.inline_data.mime_type = "audio/L16;codec=pcm;rate=24000"
    response = MagicMock()
    response.candidates = [MagicMock(content=MagicMock(parts=[part]))]
    client = mock_genai_client.return_value
    client.aio.models.generate_content.return_value = response

    service = GeminiService(api_key="key", settings=settings)
    result = await service.generate_speech("Hello there", Speaker.ELENA)

    config = client.aio.models.generate_content.call_args.kwargs["config"]
    voice = config.speech_config.voice_config.prebuilt_voice_config.voice_name
    assert voice == "Kore"
    with wave.open(result.audio_url, "rb") as wf:
        assert wf.getframerate() == 24000
        assert wf.getnchannels() == 1
        assert wf.getnframes() == 2400


@pytest.mark.asyncio
async def test_generate_speech_no_audio(mock_genai_client, settings):
    response = MagicMock()
    response.candidates = []
    mock_genai_client.return_value.aio.models.generate_content.return_value = response

    service = GeminiService(api_key="key", settings=settings)
    with pytest.raises(GenerationServiceError, match="No audio data"):
        await service.generate_speech("Hello", Speaker.NARRATOR)


@pytest.mark.asyncio
async def test_generate_speech_without_voice(mock_genai_client, settings):
    service = GeminiService(api_key="key", settings=settings)
    with pytest.raises(ValueError, match="No voice configured"):
        await service.generate_speech("Hello", Speaker.NONE)
