"""Error taxonomy and classification of remote generation failures."""

from enum import Enum

from google.genai import errors as genai_errors
from pydantic import BaseModel


class StoryreelError(Exception):
    """Base class for every error raised by storyreel."""


class SubmissionBlockedError(StoryreelError):
    """A request config is not eligible for submission."""


class InvalidTransitionError(StoryreelError):
    """An event is not allowed in the current application status."""


class MediaProcessingError(StoryreelError):
    """A local file or video could not be prepared."""


class EncodingError(MediaProcessingError):
    """File contents could not be turned into a base64 payload."""


class FrameExtractionError(MediaProcessingError):
    """A frame could not be decoded from a video."""


class GenerationServiceError(StoryreelError):
    """The remote generation or speech service reported a failure."""


class ErrorCategory(str, Enum):
    """Categories of attempt failures."""

    MODEL_NOT_FOUND = "model_not_found"
    CREDENTIAL_INVALID = "credential_invalid"
    GENERIC = "generic"


MODEL_NOT_FOUND_MESSAGE = (
    "Model not found. This can be caused by an invalid API key or "
    "permission issues. Please check your API key."
)
CREDENTIAL_INVALID_MESSAGE = (
    "Your API key is invalid or lacks permissions. "
    "Please select a valid, billing-enabled API key."
)
UNKNOWN_ERROR = "An unknown error occurred."


class ClassifiedError(BaseModel):
    """User-facing outcome of a failed attempt."""

    category: ErrorCategory
    message: str
    reselect_credential: bool = False


def _classified(category: ErrorCategory, raw: str) -> ClassifiedError:
    if category is ErrorCategory.MODEL_NOT_FOUND:
        return ClassifiedError(
            category=category,
            message=MODEL_NOT_FOUND_MESSAGE,
            reselect_credential=True,
        )
    if category is ErrorCategory.CREDENTIAL_INVALID:
        return ClassifiedError(
            category=category,
            message=CREDENTIAL_INVALID_MESSAGE,
            reselect_credential=True,
        )
    return ClassifiedError(category=category, message=f"Generation failed: {raw}")


def _category_from_code(exc: genai_errors.APIError) -> ErrorCategory | None:
    if exc.code == 404:  # noqa: PLR2004
        return ErrorCategory.MODEL_NOT_FOUND
    if exc.code in (401, 403) or exc.status in ("PERMISSION_DENIED", "UNAUTHENTICATED"):
        return ErrorCategory.CREDENTIAL_INVALID
    return None


def _category_from_text(raw: str) -> ErrorCategory:
    # Order matters: the first matching pattern wins.
    if "Requested entity was not found." in raw:
        return ErrorCategory.MODEL_NOT_FOUND
    if (
        "API_KEY_INVALID" in raw
        or "API key not valid" in raw
        or "permission denied" in raw.lower()
        or "403" in raw
    ):
        return ErrorCategory.CREDENTIAL_INVALID
    return ErrorCategory.GENERIC


def error_text(exc: BaseException) -> str:
    """Raw message of an exception, as shown to the user."""
    if isinstance(exc, genai_errors.APIError) and exc.message:
        return exc.message
    return str(exc) or UNKNOWN_ERROR


def classify_message(raw: str) -> ClassifiedError:
    """Classify a raw error message by its text alone."""
    return _classified(_category_from_text(raw), raw)


def classify_error(exc: BaseException) -> ClassifiedError:
    """Classify a failed attempt.

    Structured error codes from the Gemini API are used when present; the
    text patterns are the fallback for everything else.

    Args:
        exc: The exception that terminated the attempt.

    Returns:
        ClassifiedError: Category, user message and whether the credential
        must be selected again.

    """
    raw = error_text(exc)
    category = None
    if isinstance(exc, genai_errors.APIError):
        category = _category_from_code(exc)
    if category is None:
        category = _category_from_text(raw)
    return _classified(category, raw)
