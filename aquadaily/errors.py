"""Exceptions raised by the insight adapter.

Auth failures live in :mod:`aquadaily.utils.auth` next to the token helpers.
"""


class InsightError(Exception):
    """Base class for failures talking to the generative-language API."""
    pass


class MissingCredentialError(InsightError):
    """Raised when no Gemini API key is configured."""
    pass


class ExternalServiceError(InsightError):
    """Raised on network errors or malformed responses from Gemini."""
    pass
