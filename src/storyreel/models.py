"""Pydantic data models for storyreel."""

from enum import Enum
from pathlib import Path
from typing import Literal

from google.genai import types
from pydantic import BaseModel, ConfigDict, Field


class GenerationMode(str, Enum):
    """Generation strategy of one attempt."""

    TEXT_TO_VIDEO = "Text to Video"
    FRAMES_TO_VIDEO = "Frames to Video"
    REFERENCES_TO_VIDEO = "References to Video"
    EXTEND_VIDEO = "Extend Video"


class VeoModel(str, Enum):
    """Video generation models."""

    VEO_FAST = "veo-3.1-fast-generate-preview"
    VEO = "veo-3.1-generate-preview"


class AspectRatio(str, Enum):
    """Output aspect ratios."""

    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


class Resolution(str, Enum):
    """Output resolutions."""

    P720 = "720p"
    P1080 = "1080p"
    P4K = "4k"


class Speaker(str, Enum):
    """Voices available for scene dialogue."""

    NONE = "none"
    ELENA = "Elena"
    ARUN = "Arun"
    NARRATOR = "Narrator"


class MediaPayload(BaseModel):
    """Raw file contents plus their base64 body, produced together."""

    model_config = ConfigDict(frozen=True)

    filename: str
    mime_type: str
    data: bytes = Field(repr=False)
    base64: str = Field(repr=False)


class ImageFile(MediaPayload):
    """An uploaded or extracted image."""


class VideoFile(MediaPayload):
    """An uploaded or previously generated video."""


class RequestConfig(BaseModel):
    """Everything one generation attempt is launched with."""

    model_config = ConfigDict(frozen=True)

    mode: GenerationMode = GenerationMode.TEXT_TO_VIDEO
    model: VeoModel = VeoModel.VEO_FAST
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    resolution: Resolution = Resolution.P720
    prompt: str = ""
    dialogue: str = ""
    speaker: Speaker = Speaker.NONE
    start_frame: ImageFile | None = None
    end_frame: ImageFile | None = None
    is_looping: bool = False
    reference_images: tuple[ImageFile, ...] = Field(default=(), max_length=3)
    style_image: ImageFile | None = None
    input_video: VideoFile | None = None
    input_video_handle: types.Video | None = None

    @property
    def wants_speech(self) -> bool:
        """Whether this attempt also needs a speech track."""
        return bool(self.dialogue.strip()) and self.speaker != Speaker.NONE


class VideoResult(BaseModel):
    """What the generation service hands back for one video."""

    model_config = ConfigDict(frozen=True)

    video_url: str
    video_bytes: bytes = Field(repr=False)
    mime_type: str = "video/mp4"
    handle: types.Video | None = None


class SpeechResult(BaseModel):
    """What the speech service hands back for one line of dialogue."""

    model_config = ConfigDict(frozen=True)

    audio_url: str


class VideoArtifact(BaseModel):
    """Raw result of the latest successful attempt, kept for extend and retry."""

    model_config = ConfigDict(frozen=True)

    video_url: str
    blob: bytes = Field(repr=False)
    mime_type: str = "video/mp4"
    handle: types.Video | None = None


class StorySegment(BaseModel):
    """One generated scene of the story."""

    model_config = ConfigDict(frozen=True)

    id: str
    video_url: str
    audio_url: str | None = None
    prompt: str = ""
    dialogue: str = ""
    speaker: Speaker = Speaker.NONE

    @property
    def has_audio(self) -> bool:
        """Whether a speech track accompanies the video."""
        return self.audio_url is not None


class Timeline(BaseModel):
    """Append-only, ordered log of completed segments."""

    model_config = ConfigDict(frozen=True)

    segments: tuple[StorySegment, ...] = ()
    last_id: int = 0

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def latest(self) -> StorySegment | None:
        """Most recently appended segment."""
        return self.segments[-1] if self.segments else None

    def get(self, segment_id: str | None) -> StorySegment | None:
        """Look up a segment by id."""
        for segment in self.segments:
            if segment.id == segment_id:
                return segment
        return None

    def index_of(self, segment_id: str | None) -> int | None:
        """Position of a segment, if present."""
        for i, segment in enumerate(self.segments):
            if segment.id == segment_id:
                return i
        return None

    def next_id(self, timestamp_ms: int) -> int:
        """Time-derived id, strictly greater than every id issued so far."""
        return max(timestamp_ms, self.last_id + 1)

    def append(
        self,
        timestamp_ms: int,
        video_url: str,
        audio_url: str | None,
        config: RequestConfig,
    ) -> "Timeline":
        """Return a new timeline with one more segment at the end."""
        segment_id = self.next_id(timestamp_ms)
        segment = StorySegment(
            id=str(segment_id),
            video_url=video_url,
            audio_url=audio_url,
            prompt=config.prompt,
            dialogue=config.dialogue,
            speaker=config.speaker,
        )
        return Timeline(segments=(*self.segments, segment), last_id=segment_id)


class GenerationSettings(BaseModel):
    """Configuration for the Gemini generation and speech services."""

    output_dir: Path = Path("./output")
    poll_interval: float = 10.0
    retries: int = 2
    min_wait: int = 2
    max_wait: int = 10
    speech_model: str = "gemini-2.5-flash-preview-tts"
    voices: dict[Speaker, str] = Field(
        default_factory=lambda: {
            Speaker.ELENA: "Kore",
            Speaker.ARUN: "Puck",
            Speaker.NARRATOR: "Charon",
        },
    )


class ScriptScene(BaseModel):
    """One scene of a story script."""

    prompt: str = ""
    dialogue: str = ""
    speaker: Speaker = Speaker.NONE
    continuation: Literal["next", "extend"] = "next"


class StoryScript(BaseModel):
    """A multi-scene story to be generated in order."""

    title: str = "Untitled"
    model: VeoModel = VeoModel.VEO_FAST
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    resolution: Resolution = Resolution.P720
    reference_images: list[Path] = Field(default_factory=list, max_length=3)
    style_image: Path | None = None
    scenes: list[ScriptScene]
