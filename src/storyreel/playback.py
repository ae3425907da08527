"""Viewing and sequential playback over the story timeline.

The viewer is either looking at one segment (the latest, or one the user
picked) or playing the whole story from the first scene, advancing each
time a scene ends. All functions are pure and return a new state.
"""

from pydantic import BaseModel, ConfigDict

from .models import StorySegment, Timeline

MIN_STORY_SEGMENTS = 2


class PlaybackState(BaseModel):
    """Viewing(segment) or PlayingStory(index)."""

    model_config = ConfigDict(frozen=True)

    viewing_id: str | None = None
    playing: bool = False
    index: int = 0


def _viewing_latest(timeline: Timeline) -> PlaybackState:
    latest = timeline.latest
    return PlaybackState(viewing_id=latest.id if latest else None)


def can_play_story(timeline: Timeline) -> bool:
    """Playing the story is offered from two scenes on."""
    return len(timeline) >= MIN_STORY_SEGMENTS


def follow_current(state: PlaybackState, current_id: str | None) -> PlaybackState:
    """Show a newly current segment, unless the story is playing."""
    if state.playing:
        return state
    return state.model_copy(update={"viewing_id": current_id})


def select(state: PlaybackState, timeline: Timeline, segment_id: str) -> PlaybackState:
    """View a specific segment; ignored while the story plays."""
    if state.playing or timeline.get(segment_id) is None:
        return state
    return state.model_copy(update={"viewing_id": segment_id})


def start(state: PlaybackState, timeline: Timeline) -> PlaybackState:
    """Start playing the story from its first scene."""
    if not can_play_story(timeline):
        return state
    return PlaybackState(viewing_id=timeline.segments[0].id, playing=True, index=0)


def scene_ended(state: PlaybackState, timeline: Timeline) -> PlaybackState:
    """Advance to the next scene, or finish on the most recent one."""
    if not state.playing:
        return state
    next_index = state.index + 1
    if next_index < len(timeline):
        return PlaybackState(
            viewing_id=timeline.segments[next_index].id,
            playing=True,
            index=next_index,
        )
    return _viewing_latest(timeline)


def stop(state: PlaybackState, timeline: Timeline) -> PlaybackState:  # noqa: ARG001
    """Stop playing and go back to the most recent scene."""
    return _viewing_latest(timeline)


def viewing_segment(state: PlaybackState, timeline: Timeline) -> StorySegment | None:
    """The segment currently on screen."""
    if state.playing and 0 <= state.index < len(timeline):
        return timeline.segments[state.index]
    return timeline.get(state.viewing_id)


def status_label(state: PlaybackState, timeline: Timeline) -> str:
    """Caption for the player: playback progress or the ready scene count."""
    if state.playing:
        return f"Playing Scene {state.index + 1}/{len(timeline)}"
    if len(timeline) > 1:
        return f"Scene {len(timeline)} Ready"
    return "Scene Ready"
