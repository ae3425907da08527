"""Mode-specific normalization and submit eligibility of request configs."""

from pydantic import BaseModel

from .errors import SubmissionBlockedError
from .models import (
    AspectRatio,
    GenerationMode,
    ImageFile,
    RequestConfig,
    Resolution,
    VeoModel,
)

MAX_REFERENCE_IMAGES = 3

SELECTABLE_MODES = (
    GenerationMode.TEXT_TO_VIDEO,
    GenerationMode.FRAMES_TO_VIDEO,
    GenerationMode.REFERENCES_TO_VIDEO,
)

# Asset fields and their empty values.
ASSET_FIELDS: dict[str, object] = {
    "start_frame": None,
    "end_frame": None,
    "is_looping": False,
    "reference_images": (),
    "style_image": None,
    "input_video": None,
    "input_video_handle": None,
}

MODE_ASSETS: dict[GenerationMode, frozenset[str]] = {
    GenerationMode.TEXT_TO_VIDEO: frozenset(),
    GenerationMode.FRAMES_TO_VIDEO: frozenset({"start_frame", "end_frame", "is_looping"}),
    GenerationMode.REFERENCES_TO_VIDEO: frozenset({"reference_images", "style_image"}),
    GenerationMode.EXTEND_VIDEO: frozenset({"input_video", "input_video_handle"}),
}

FORCED_FIELDS: dict[GenerationMode, dict[str, object]] = {
    GenerationMode.REFERENCES_TO_VIDEO: {
        "model": VeoModel.VEO,
        "aspect_ratio": AspectRatio.LANDSCAPE,
        "resolution": Resolution.P720,
    },
    GenerationMode.EXTEND_VIDEO: {"resolution": Resolution.P720},
}


class SubmitCheck(BaseModel):
    """Result of the submit-eligibility predicate."""

    ok: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.ok


def locked_fields(mode: GenerationMode) -> frozenset[str]:
    """Settings that are not editable while `mode` is active."""
    return frozenset(FORCED_FIELDS.get(mode, {}))


def apply_forced_overrides(config: RequestConfig) -> RequestConfig:
    """Force the settings the active mode requires."""
    forced = FORCED_FIELDS.get(config.mode)
    if not forced:
        return config
    return config.model_copy(update=forced)


def can_loop(config: RequestConfig) -> bool:
    """Looping is offered only for a start frame without an end frame."""
    return (
        config.mode == GenerationMode.FRAMES_TO_VIDEO
        and config.start_frame is not None
        and config.end_frame is None
    )


def can_extend(config: RequestConfig | None) -> bool:
    """Only 720p outputs can be extended."""
    return config is not None and config.resolution == Resolution.P720


def normalize(mode: GenerationMode, config: RequestConfig) -> RequestConfig:
    """Return `config` made valid for `mode`.

    Switching modes clears every mode-specific asset. Assets that do not
    belong to `mode` are dropped even without a switch, so fields of
    incompatible modes never coexist. Forced overrides are applied last.
    """
    if mode != config.mode:
        update = dict(ASSET_FIELDS)
    else:
        allowed = MODE_ASSETS[mode]
        update = {
            name: empty for name, empty in ASSET_FIELDS.items() if name not in allowed
        }
    update["mode"] = mode
    normalized = config.model_copy(update=update)
    if normalized.is_looping and not can_loop(normalized):
        normalized = normalized.model_copy(update={"is_looping": False})
    return apply_forced_overrides(normalized)


def add_reference_image(config: RequestConfig, image: ImageFile) -> RequestConfig:
    """Append a reference image, keeping at most three."""
    if len(config.reference_images) >= MAX_REFERENCE_IMAGES:
        msg = f"At most {MAX_REFERENCE_IMAGES} reference images are supported."
        raise SubmissionBlockedError(msg)
    return config.model_copy(
        update={"reference_images": (*config.reference_images, image)},
    )


def can_submit(mode: GenerationMode, config: RequestConfig) -> SubmitCheck:
    """Check whether `config` can be submitted in `mode`.

    Returns:
        SubmitCheck: `ok` is False when a required input is missing, with a
        human-readable `reason` naming the first unmet condition.

    """
    has_prompt = bool(config.prompt.strip())

    if mode == GenerationMode.TEXT_TO_VIDEO:
        if not has_prompt:
            return SubmitCheck(ok=False, reason="Please enter a visual description.")
    elif mode == GenerationMode.FRAMES_TO_VIDEO:
        if config.start_frame is None:
            return SubmitCheck(ok=False, reason="A start frame is required.")
    elif mode == GenerationMode.REFERENCES_TO_VIDEO:
        has_assets = bool(config.reference_images)
        if not has_prompt and not has_assets:
            return SubmitCheck(
                ok=False,
                reason="Please enter a prompt and add at least one asset.",
            )
        if not has_prompt:
            return SubmitCheck(ok=False, reason="Please enter a prompt.")
        if not has_assets:
            return SubmitCheck(
                ok=False,
                reason="At least one reference asset is required.",
            )
    elif mode == GenerationMode.EXTEND_VIDEO and config.input_video_handle is None:
        return SubmitCheck(
            ok=False,
            reason="An input video from a previous generation is required to extend.",
        )
    return SubmitCheck(ok=True)


def resolution_hint(config: RequestConfig) -> str | None:
    """Short note shown next to the resolution setting."""
    if config.mode == GenerationMode.EXTEND_VIDEO:
        return "Extension is locked to 720p"
    if config.mode == GenerationMode.REFERENCES_TO_VIDEO:
        return "R2V is locked to 720p"
    if config.resolution != Resolution.P720:
        return "1080p/4k videos can't be extended"
    return None
