"""Video and speech generation backed by the Google Gemini API."""

import asyncio
import base64
import re
import time
import wave
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import GenerationServiceError
from .models import (
    GenerationMode,
    GenerationSettings,
    ImageFile,
    RequestConfig,
    Speaker,
    SpeechResult,
    VideoResult,
)

PCM_SAMPLE_RATE = 24000
PCM_SAMPLE_WIDTH = 2
PCM_CHANNELS = 1


class VideoGenerator(Protocol):
    """Remote service that turns a request config into a video."""

    async def generate_video(self, config: RequestConfig) -> VideoResult: ...


class SpeechGenerator(Protocol):
    """Remote service that speaks one line of dialogue."""

    async def generate_speech(self, text: str, speaker: Speaker) -> SpeechResult: ...


def _to_image(image: ImageFile) -> types.Image:
    return types.Image(image_bytes=image.data, mime_type=image.mime_type)


def _sample_rate(mime_type: str | None) -> int:
    match = re.search(r"rate=(\d+)", mime_type or "")
    return int(match.group(1)) if match else PCM_SAMPLE_RATE


class GeminiService:
    """Service to interact with Veo and Gemini speech generation."""

    def __init__(
        self,
        api_key: str,
        settings: GenerationSettings | None = None,
    ) -> None:
        """Initialize the service with an API key."""
        if not api_key:
            msg = (
                "API Key is missing. "
                "Set GEMINI_API_KEY env var or pass it as an argument."
            )
            raise ValueError(msg)
        self.client = genai.Client(api_key=api_key)
        self.settings = settings or GenerationSettings()

    def _retryer(self) -> AsyncRetrying:
        # Client errors are never retried.
        return AsyncRetrying(
            stop=stop_after_attempt(self.settings.retries + 1),
            wait=wait_exponential(
                multiplier=2,
                min=self.settings.min_wait,
                max=self.settings.max_wait,
            ),
            retry=retry_if_exception_type(genai_errors.ServerError),
            reraise=True,
        )

    def _save(self, data: bytes, prefix: str, suffix: str) -> str:
        output_dir = self.settings.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{prefix}_{time.time_ns()}{suffix}"
        with output_path.open("wb") as f:
            f.write(data)
        return str(output_path)

    def build_video_request(self, config: RequestConfig) -> dict[str, Any]:
        """Translate a request config into `generate_videos` arguments."""
        video_config: dict[str, Any] = {
            "number_of_videos": 1,
            "resolution": config.resolution.value,
        }
        request: dict[str, Any] = {"model": config.model.value}
        if config.prompt.strip():
            request["prompt"] = config.prompt

        if config.mode == GenerationMode.FRAMES_TO_VIDEO:
            if config.start_frame is None:
                msg = "A start frame is required."
                raise ValueError(msg)
            request["image"] = _to_image(config.start_frame)
            if config.is_looping:
                video_config["last_frame"] = _to_image(config.start_frame)
            elif config.end_frame is not None:
                video_config["last_frame"] = _to_image(config.end_frame)
        elif config.mode == GenerationMode.REFERENCES_TO_VIDEO:
            references = [
                types.VideoGenerationReferenceImage(
                    image=_to_image(image),
                    reference_type=types.VideoGenerationReferenceType.ASSET,
                )
                for image in config.reference_images
            ]
            if config.style_image is not None:
                references.append(
                    types.VideoGenerationReferenceImage(
                        image=_to_image(config.style_image),
                        reference_type=types.VideoGenerationReferenceType.STYLE,
                    ),
                )
            video_config["reference_images"] = references
        elif config.mode == GenerationMode.EXTEND_VIDEO:
            if config.input_video_handle is None:
                msg = "An input video from a previous generation is required to extend."
                raise ValueError(msg)
            request["video"] = config.input_video_handle

        # Extensions inherit the aspect ratio of the source video.
        if config.mode != GenerationMode.EXTEND_VIDEO:
            video_config["aspect_ratio"] = config.aspect_ratio.value

        request["config"] = types.GenerateVideosConfig(**video_config)
        return request

    async def _wait_for_operation(
        self,
        operation: types.GenerateVideosOperation,
    ) -> types.GenerateVideosOperation:
        while not operation.done:
            await asyncio.sleep(self.settings.poll_interval)
            operation = await self.client.aio.operations.get(operation)
        return operation

    async def _download(self, video: types.Video) -> bytes:
        if video.video_bytes:
            return video.video_bytes
        return await asyncio.to_thread(self.client.files.download, file=video)

    async def _generate_video_attempt(self, config: RequestConfig) -> VideoResult:
        request = self.build_video_request(config)
        operation = await self.client.aio.models.generate_videos(**request)
        operation = await self._wait_for_operation(operation)

        if operation.error:
            message = operation.error.get("message") or str(operation.error)
            raise GenerationServiceError(message)

        response = operation.response
        if not response or not response.generated_videos:
            msg = "No videos were generated."
            raise GenerationServiceError(msg)

        video = response.generated_videos[0].video
        if video is None:
            msg = "Generated video is missing from the response."
            raise GenerationServiceError(msg)

        data = await self._download(video)
        return VideoResult(
            video_url=self._save(data, "scene", ".mp4"),
            video_bytes=data,
            mime_type=video.mime_type or "video/mp4",
            handle=video,
        )

    async def generate_video(self, config: RequestConfig) -> VideoResult:
        """Generate one video and download it to the output directory.

        Args:
            config: The request config of the attempt.

        Returns:
            VideoResult: Local path, raw bytes and the remote video handle.

        Raises:
            GenerationServiceError: If the operation fails or returns nothing.
            google.genai.errors.APIError: If the API rejects the request.

        """
        return await self._retryer()(self._generate_video_attempt, config)

    def _write_wav(self, pcm: bytes, sample_rate: int) -> str:
        output_dir = self.settings.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"speech_{time.time_ns()}.wav"
        with wave.open(str(output_path), "wb") as wf:
            wf.setnchannels(PCM_CHANNELS)
            wf.setsampwidth(PCM_SAMPLE_WIDTH)
            wf.setframerate(sample_rate)
            wf.writeframes(pcm)
        return str(output_path)

    async def _generate_speech_attempt(self, text: str, voice: str) -> SpeechResult:
        response = await self.client.aio.models.generate_content(
            model=self.settings.speech_model,
            contents=text,
            config=types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(
                            voice_name=voice,
                        ),
                    ),
                ),
            ),
        )

        if response.candidates and response.candidates[0].content.parts:
            part = response.candidates[0].content.parts[0]
            if part.inline_data and part.inline_data.data:
                pcm = part.inline_data.data
                if isinstance(pcm, str):
                    pcm = base64.b64decode(pcm)
                sample_rate = _sample_rate(part.inline_data.mime_type)
                return SpeechResult(audio_url=self._write_wav(pcm, sample_rate))

        msg = "No audio data in response"
        raise GenerationServiceError(msg)

    async def generate_speech(self, text: str, speaker: Speaker) -> SpeechResult:
        """Speak a line of dialogue with the speaker's voice.

        Returns:
            SpeechResult: Path of the written WAV file.

        Raises:
            ValueError: If the speaker has no voice.
            GenerationServiceError: If the response carries no audio.

        """
        voice = self.settings.voices.get(speaker)
        if not voice:
            msg = f"No voice configured for speaker {speaker.value!r}"
            raise ValueError(msg)
        return await self._retryer()(self._generate_speech_attempt, text, voice)
