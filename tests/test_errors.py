import pytest
from google.genai import errors as genai_errors

from storyreel.errors import (
    CREDENTIAL_INVALID_MESSAGE,
    MODEL_NOT_FOUND_MESSAGE,
    ErrorCategory,
    GenerationServiceError,
    classify_error,
    classify_message,
)


def _api_error(cls, code: int, message: str, status: str):
    return cls(code, {"error": {"code": code, "message": message, "status": status}})


def test_model_not_found() -> None:
    result = classify_message("Requested entity was not found.")
    assert result.category == ErrorCategory.MODEL_NOT_FOUND
    assert result.message == MODEL_NOT_FOUND_MESSAGE
    assert result.reselect_credential is True


@pytest.mark.parametrize(
    "raw",
    [
        "API_KEY_INVALID",
        "API key not valid. Please pass a valid API key.",
        "Permission Denied on resource",
        "Request failed with status 403 forbidden",
    ],
)
def test_credential_invalid(raw) -> None:
    result = classify_message(raw)
    assert result.category == ErrorCategory.CREDENTIAL_INVALID
    assert result.message == CREDENTIAL_INVALID_MESSAGE
    assert result.reselect_credential is True


def test_generic() -> None:
    result = classify_error(GenerationServiceError("boom"))
    assert result.category == ErrorCategory.GENERIC
    assert result.message == "Generation failed: boom"
    assert result.reselect_credential is False


def test_first_match_wins() -> None:
    result = classify_message("Requested entity was not found. (403)")
    assert result.category == ErrorCategory.MODEL_NOT_FOUND


def test_empty_message_is_unknown() -> None:
    result = classify_error(RuntimeError())
    assert result.message == "Generation failed: An unknown error occurred."


def test_structured_404_code() -> None:
    exc = _api_error(genai_errors.ClientError, 404, "models/veo-x is gone", "NOT_FOUND")
    assert classify_error(exc).category == ErrorCategory.MODEL_NOT_FOUND


def test_structured_permission_status() -> None:
    exc = _api_error(genai_errors.ClientError, 403, "no access", "PERMISSION_DENIED")
    result = classify_error(exc)
    assert result.category == ErrorCategory.CREDENTIAL_INVALID
    assert result.reselect_credential is True


def test_structured_error_falls_back_to_text() -> None:
    exc = _api_error(
        genai_errors.ClientError,
        400,
        "API key not valid. Please pass a valid API key.",
        "INVALID_ARGUMENT",
    )
    assert classify_error(exc).category == ErrorCategory.CREDENTIAL_INVALID


def test_structured_server_error_is_generic() -> None:
    exc = _api_error(genai_errors.ServerError, 500, "internal hiccup", "INTERNAL")
    result = classify_error(exc)
    assert result.category == ErrorCategory.GENERIC
    assert result.message == "Generation failed: internal hiccup"
