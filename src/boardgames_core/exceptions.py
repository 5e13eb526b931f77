class BoardGamesException(Exception):
    """Base exception for all board games core errors."""


class NetworkError(BoardGamesException):
    """Raised when a low-level network error occurs (DNS, Connection Refused, timeout)."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class AccessDenied(BoardGamesException):
    """
    Raised when the server refuses the request (403 Forbidden / 401 Unauthorized).
    This usually indicates bad or expired API credentials.
    """

    def __init__(self, provider: str, status_code: int):
        super().__init__(f"Access denied for {provider} (Status: {status_code}). Check credentials.")
        self.provider = provider
        self.status_code = status_code


class RateLimitExceeded(BoardGamesException):
    """Raised when an API rate limit is hit (429)."""

    def __init__(self, provider: str, retry_after: float | None = None):
        msg = f"Rate limit exceeded for {provider}."
        if retry_after:
            msg += f" Retry after {retry_after}s."
        super().__init__(msg)
        self.provider = provider
        self.retry_after = retry_after


class APIError(BoardGamesException):
    """Raised when an API returns an unexpected status (404, 5xx, etc)."""

    def __init__(self, provider: str, status_code: int | None = None, message: str = "Unknown error"):
        msg = f"{provider} API Error"
        if status_code:
            msg += f" ({status_code})"
        msg += f": {message}"
        super().__init__(msg)
        self.provider = provider
        self.status_code = status_code


class MissingCredentials(BoardGamesException):
    """Raised before any I/O when a provider needs credentials that are not configured."""

    def __init__(self, provider: str):
        super().__init__(f"Missing credentials for {provider}.")
        self.provider = provider


class DecodeError(BoardGamesException):
    """Raised when a provider payload or remote document cannot be decoded."""

    def __init__(self, source: str, details: str):
        super().__init__(f"Failed to decode {source} payload: {details}")
        self.source = source


class UnsupportedEncoding(DecodeError):
    """Raised when the remote config envelope uses an encoding other than base64."""

    def __init__(self, encoding: str):
        super().__init__("remote config", f"unsupported encoding '{encoding}'")
        self.encoding = encoding


class InventoryError(BoardGamesException):
    """Raised when an inventory document is rejected; existing rows are left untouched."""
