"""Application state and its pure transition function.

`reduce(state, event)` is the only way the application state changes. The
orchestrator issues events; hosts read the resulting state.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict

from . import playback
from .constraints import can_extend
from .errors import InvalidTransitionError
from .models import (
    GenerationMode,
    RequestConfig,
    Resolution,
    Speaker,
    SpeechResult,
    StorySegment,
    Timeline,
    VideoArtifact,
    VideoFile,
    VideoResult,
)
from .playback import PlaybackState


class AppStatus(str, Enum):
    """Top-level status of the application."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class ApplicationState(BaseModel):
    """Everything the host renders."""

    model_config = ConfigDict(frozen=True)

    status: AppStatus = AppStatus.IDLE
    last_config: RequestConfig | None = None
    artifact: VideoArtifact | None = None
    error: str | None = None
    credential_selection_required: bool = False
    draft: RequestConfig | None = None
    timeline: Timeline = Timeline()
    current_segment_id: str | None = None
    playback: PlaybackState = PlaybackState()
    attempt_token: int | None = None

    @property
    def current_segment(self) -> StorySegment | None:
        """The segment produced by the latest successful attempt."""
        return self.timeline.get(self.current_segment_id)

    @property
    def viewing_segment(self) -> StorySegment | None:
        """The segment on screen."""
        return playback.viewing_segment(self.playback, self.timeline)

    @property
    def can_extend(self) -> bool:
        """Whether the last config produced an extendable video."""
        return can_extend(self.last_config)


@dataclass(frozen=True)
class CredentialSelectionRequested:
    pass


@dataclass(frozen=True)
class CredentialSelectionHandled:
    pass


@dataclass(frozen=True)
class GenerationStarted:
    config: RequestConfig
    token: int


@dataclass(frozen=True)
class GenerationSucceeded:
    token: int
    video: VideoResult
    speech: SpeechResult | None
    timestamp_ms: int


@dataclass(frozen=True)
class GenerationFailed:
    token: int
    message: str
    reselect_credential: bool = False


@dataclass(frozen=True)
class LocalFailure:
    message: str


@dataclass(frozen=True)
class AddNextScene:
    pass


@dataclass(frozen=True)
class ExtendPrepared:
    video_file: VideoFile


@dataclass(frozen=True)
class NewStory:
    pass


@dataclass(frozen=True)
class TryAgain:
    pass


@dataclass(frozen=True)
class SelectSegment:
    segment_id: str


@dataclass(frozen=True)
class StartPlayback:
    pass


@dataclass(frozen=True)
class SceneEnded:
    pass


@dataclass(frozen=True)
class StopPlayback:
    pass


Event = (
    CredentialSelectionRequested
    | CredentialSelectionHandled
    | GenerationStarted
    | GenerationSucceeded
    | GenerationFailed
    | LocalFailure
    | AddNextScene
    | ExtendPrepared
    | NewStory
    | TryAgain
    | SelectSegment
    | StartPlayback
    | SceneEnded
    | StopPlayback
)


def _require(state: ApplicationState, status: AppStatus, event: Event) -> None:
    if state.status != status:
        msg = f"{type(event).__name__} is not allowed while {state.status.value}"
        raise InvalidTransitionError(msg)


def _credential_requested(
    state: ApplicationState,
    _: CredentialSelectionRequested,
) -> ApplicationState:
    return state.model_copy(update={"credential_selection_required": True})


def _credential_handled(
    state: ApplicationState,
    _: CredentialSelectionHandled,
) -> ApplicationState:
    return state.model_copy(update={"credential_selection_required": False})


def _started(state: ApplicationState, event: GenerationStarted) -> ApplicationState:
    return state.model_copy(
        update={
            "status": AppStatus.LOADING,
            "last_config": event.config,
            "error": None,
            "draft": None,
            "credential_selection_required": False,
            "attempt_token": event.token,
        },
    )


def _succeeded(state: ApplicationState, event: GenerationSucceeded) -> ApplicationState:
    if event.token != state.attempt_token or state.last_config is None:
        return state
    timeline = state.timeline.append(
        event.timestamp_ms,
        event.video.video_url,
        event.speech.audio_url if event.speech else None,
        state.last_config,
    )
    current_id = timeline.segments[-1].id
    artifact = VideoArtifact(
        video_url=event.video.video_url,
        blob=event.video.video_bytes,
        mime_type=event.video.mime_type,
        handle=event.video.handle,
    )
    return state.model_copy(
        update={
            "status": AppStatus.SUCCESS,
            "timeline": timeline,
            "current_segment_id": current_id,
            "artifact": artifact,
            "playback": playback.follow_current(state.playback, current_id),
            "attempt_token": None,
        },
    )


def _failed(state: ApplicationState, event: GenerationFailed) -> ApplicationState:
    if event.token != state.attempt_token:
        return state
    return state.model_copy(
        update={
            "status": AppStatus.ERROR,
            "error": event.message,
            "credential_selection_required": (
                state.credential_selection_required or event.reselect_credential
            ),
            "attempt_token": None,
        },
    )


def _local_failure(state: ApplicationState, event: LocalFailure) -> ApplicationState:
    return state.model_copy(update={"status": AppStatus.ERROR, "error": event.message})


def _new_story(state: ApplicationState, _: NewStory) -> ApplicationState:  # noqa: ARG001
    return ApplicationState()


def _add_next_scene(state: ApplicationState, event: AddNextScene) -> ApplicationState:
    _require(state, AppStatus.SUCCESS, event)
    last = state.last_config
    if last is None:
        return ApplicationState()
    mode = (
        GenerationMode.TEXT_TO_VIDEO
        if last.mode == GenerationMode.EXTEND_VIDEO
        else last.mode
    )
    draft = last.model_copy(
        update={
            "mode": mode,
            "prompt": "",
            "dialogue": "",
            "start_frame": None,
            "end_frame": None,
            "is_looping": False,
            "input_video": None,
            "input_video_handle": None,
        },
    )
    return state.model_copy(
        update={"status": AppStatus.IDLE, "draft": draft, "error": None},
    )


def _extend_prepared(state: ApplicationState, event: ExtendPrepared) -> ApplicationState:
    _require(state, AppStatus.SUCCESS, event)
    if state.last_config is None or state.artifact is None:
        return state
    draft = state.last_config.model_copy(
        update={
            "mode": GenerationMode.EXTEND_VIDEO,
            "prompt": "",
            "input_video": event.video_file,
            "input_video_handle": state.artifact.handle,
            "resolution": Resolution.P720,
            "start_frame": None,
            "end_frame": None,
            "reference_images": (),
            "style_image": None,
            "is_looping": False,
            "dialogue": "",
            "speaker": Speaker.NONE,
        },
    )
    return state.model_copy(
        update={"status": AppStatus.IDLE, "draft": draft, "error": None},
    )


def _try_again(state: ApplicationState, event: TryAgain) -> ApplicationState:
    _require(state, AppStatus.ERROR, event)
    if state.last_config is None:
        return ApplicationState()
    return state.model_copy(
        update={"status": AppStatus.IDLE, "draft": state.last_config, "error": None},
    )


def _select(state: ApplicationState, event: SelectSegment) -> ApplicationState:
    return state.model_copy(
        update={
            "playback": playback.select(state.playback, state.timeline, event.segment_id),
        },
    )


def _start_playback(state: ApplicationState, _: StartPlayback) -> ApplicationState:
    return state.model_copy(
        update={"playback": playback.start(state.playback, state.timeline)},
    )


def _scene_ended(state: ApplicationState, _: SceneEnded) -> ApplicationState:
    return state.model_copy(
        update={"playback": playback.scene_ended(state.playback, state.timeline)},
    )


def _stop_playback(state: ApplicationState, _: StopPlayback) -> ApplicationState:
    return state.model_copy(
        update={"playback": playback.stop(state.playback, state.timeline)},
    )


_HANDLERS: dict[type, Callable[[ApplicationState, Event], ApplicationState]] = {
    CredentialSelectionRequested: _credential_requested,
    CredentialSelectionHandled: _credential_handled,
    GenerationStarted: _started,
    GenerationSucceeded: _succeeded,
    GenerationFailed: _failed,
    LocalFailure: _local_failure,
    AddNextScene: _add_next_scene,
    ExtendPrepared: _extend_prepared,
    NewStory: _new_story,
    TryAgain: _try_again,
    SelectSegment: _select,
    StartPlayback: _start_playback,
    SceneEnded: _scene_ended,
    StopPlayback: _stop_playback,
}


def reduce(state: ApplicationState, event: Event) -> ApplicationState:
    """Apply one event and return the next state.

    Results of attempts that are no longer the active one are dropped.

    Raises:
        InvalidTransitionError: If the event is not allowed in the current
            status.

    """
    return _HANDLERS[type(event)](state, event)
