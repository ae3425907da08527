"""Orchestration of generation attempts over the application state."""

import asyncio
import itertools
import logging
import time
from collections.abc import Callable

from . import state as st
from .constraints import can_submit, normalize
from .credentials import CredentialProvider, check_credential
from .errors import MediaProcessingError, SubmissionBlockedError, classify_error
from .media import encode_bytes
from .models import RequestConfig, SpeechResult, VideoFile, VideoResult
from .service import SpeechGenerator, VideoGenerator
from .state import ApplicationState, AppStatus

logger = logging.getLogger(__name__)

EXTENSION_SOURCE_NAME = "last_video.mp4"

Listener = Callable[[ApplicationState], None]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class StoryOrchestrator:
    """Runs generation attempts and owns the application state.

    Every mutation goes through `state.reduce`. Each attempt gets a fresh
    token; a result is applied only while its token is the active one, so
    a slow attempt cannot overwrite the outcome of a newer one.
    """

    def __init__(
        self,
        video_service: VideoGenerator,
        speech_service: SpeechGenerator,
        credentials: CredentialProvider,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.video_service = video_service
        self.speech_service = speech_service
        self.credentials = credentials
        self._clock = clock
        self._tokens = itertools.count(1)
        self._listeners: list[Listener] = []
        self.state = ApplicationState()

    def on_change(self, listener: Listener) -> None:
        """Register a callback invoked with every new state."""
        self._listeners.append(listener)

    def dispatch(self, event: st.Event) -> ApplicationState:
        """Apply an event to the state and notify listeners."""
        new_state = st.reduce(self.state, event)
        if new_state is not self.state:
            logger.debug(
                "%s: %s -> %s",
                type(event).__name__,
                self.state.status.value,
                new_state.status.value,
            )
            self.state = new_state
            for listener in self._listeners:
                listener(new_state)
        return self.state

    @property
    def can_extend(self) -> bool:
        """Whether the last result can be extended."""
        return self.state.can_extend

    async def startup(self) -> bool:
        """Check for a credential at process start."""
        if await check_credential(self.credentials):
            return True
        self.dispatch(st.CredentialSelectionRequested())
        return False

    async def select_credential(self) -> ApplicationState:
        """Let the user pick a credential, then retry a failed attempt."""
        self.dispatch(st.CredentialSelectionHandled())
        await self.credentials.open_credential_selector()
        if self.state.status == AppStatus.ERROR and self.state.last_config is not None:
            return await self.retry()
        return self.state

    async def _speech(self, config: RequestConfig) -> SpeechResult | None:
        if not config.wants_speech:
            return None
        return await self.speech_service.generate_speech(config.dialogue, config.speaker)

    async def generate(self, config: RequestConfig) -> ApplicationState:
        """Run one attempt: video and speech concurrently, all or nothing.

        Args:
            config: The request config to generate from.

        Returns:
            ApplicationState: The state after the attempt has been applied.

        """
        if not await check_credential(self.credentials):
            logger.info("No credential selected; generation not started.")
            return self.dispatch(st.CredentialSelectionRequested())

        config = normalize(config.mode, config)
        token = next(self._tokens)
        self.dispatch(st.GenerationStarted(config=config, token=token))
        logger.info("Attempt %d started (%s, %s)", token, config.mode.value, config.model.value)

        video, speech = await asyncio.gather(
            self.video_service.generate_video(config),
            self._speech(config),
            return_exceptions=True,
        )

        failure = next(
            (r for r in (video, speech) if isinstance(r, BaseException)),
            None,
        )
        if failure is not None:
            if not isinstance(failure, Exception):
                raise failure
            classified = classify_error(failure)
            logger.error("Attempt %d failed: %s", token, failure, exc_info=failure)
            self.dispatch(
                st.GenerationFailed(
                    token=token,
                    message=classified.message,
                    reselect_credential=classified.reselect_credential,
                ),
            )
            if classified.reselect_credential:
                self.dispatch(st.CredentialSelectionRequested())
            return self.state

        if not isinstance(video, VideoResult):
            msg = f"Unexpected video result: {video!r}"
            raise TypeError(msg)
        logger.info("Attempt %d succeeded: %s", token, video.video_url)
        return self.dispatch(
            st.GenerationSucceeded(
                token=token,
                video=video,
                speech=speech,
                timestamp_ms=self._clock(),
            ),
        )

    async def submit(self, config: RequestConfig) -> ApplicationState:
        """Generate after checking submit eligibility.

        Raises:
            SubmissionBlockedError: If required inputs are missing. The
                state is left untouched.

        """
        check = can_submit(config.mode, config)
        if not check.ok:
            raise SubmissionBlockedError(check.reason)
        return await self.generate(config)

    async def retry(self) -> ApplicationState:
        """Generate again with the last config, verbatim."""
        if self.state.last_config is None:
            return self.state
        return await self.generate(self.state.last_config)

    def add_next_scene(self) -> ApplicationState:
        """Prepare a draft for the next scene from the last config."""
        return self.dispatch(st.AddNextScene())

    def extend(self) -> ApplicationState:
        """Prepare an extension draft from the last generated video."""
        artifact = self.state.artifact
        if self.state.last_config is None or artifact is None or artifact.handle is None:
            return self.state
        try:
            video_file = encode_bytes(artifact.blob, EXTENSION_SOURCE_NAME, artifact.mime_type)
            if not isinstance(video_file, VideoFile):
                msg = f"Artifact is not a video ({artifact.mime_type})"
                raise MediaProcessingError(msg)
        except MediaProcessingError as e:
            logger.exception("Failed to process video for extension")
            return self.dispatch(
                st.LocalFailure(f"Failed to prepare video for extension: {e}"),
            )
        return self.dispatch(st.ExtendPrepared(video_file=video_file))

    def new_story(self) -> ApplicationState:
        """Reset to an empty story, dropping any in-flight attempt."""
        return self.dispatch(st.NewStory())

    def try_again(self) -> ApplicationState:
        """Go back to the form, pre-filled with the failed config."""
        return self.dispatch(st.TryAgain())

    def select_segment(self, segment_id: str) -> ApplicationState:
        return self.dispatch(st.SelectSegment(segment_id=segment_id))

    def start_playback(self) -> ApplicationState:
        return self.dispatch(st.StartPlayback())

    def scene_ended(self) -> ApplicationState:
        return self.dispatch(st.SceneEnded())

    def stop_playback(self) -> ApplicationState:
        return self.dispatch(st.StopPlayback())
