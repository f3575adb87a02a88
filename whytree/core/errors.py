# whytree/core/errors.py

"""
Error taxonomy shared by the gateway, the HTTP layer and the session.

Each error carries a stable `code` so the API can map it to a response and
the HTTP client can map a response back to the same error type.
"""

from typing import Optional

API_KEY_MISSING = "API_KEY_MISSING"
INVALID_REQUEST = "INVALID_REQUEST"
GEMINI_API_ERROR = "GEMINI_API_ERROR"
STORAGE_ERROR = "STORAGE_ERROR"


class WhytreeError(RuntimeError):
    code: str = GEMINI_API_ERROR

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ConfigurationError(WhytreeError):
    """Required configuration (the model API key) is missing."""

    code = API_KEY_MISSING


class InputValidationError(WhytreeError):
    """User input or request payload was rejected before any network call."""

    code = INVALID_REQUEST


class InsufficientDialogueError(InputValidationError):
    pass


class ModelGatewayError(WhytreeError):
    """The model could not be reached or returned something unusable."""

    code = GEMINI_API_ERROR


class PersistenceError(WhytreeError):
    code = STORAGE_ERROR


_ERRORS_BY_CODE = {
    API_KEY_MISSING: ConfigurationError,
    INVALID_REQUEST: InputValidationError,
    GEMINI_API_ERROR: ModelGatewayError,
    STORAGE_ERROR: PersistenceError,
}


def error_from_code(code: Optional[str], message: str) -> WhytreeError:
    """Rebuild the matching error for an error code received over HTTP."""
    cls = _ERRORS_BY_CODE.get(code or "", ModelGatewayError)
    return cls(message)
