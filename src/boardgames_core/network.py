import aiohttp

from .exceptions import AccessDenied, APIError, DecodeError, RateLimitExceeded

USER_AGENT = "board-games/1.0"

HEADERS = {"User-Agent": USER_AGENT}

API_TIMEOUT = aiohttp.ClientTimeout(total=10)
PAGE_TIMEOUT = aiohttp.ClientTimeout(total=5)


def raise_for_status(provider: str, status: int, reason: str | None = None):
    """Maps a non-2xx status onto the core exception hierarchy."""
    if status in (401, 403):
        raise AccessDenied(provider, status)
    if status == 429:
        raise RateLimitExceeded(provider)
    if status >= 400:
        raise APIError(provider, status, reason or "request failed")


async def read_text(resp: aiohttp.ClientResponse, source: str) -> str:
    """Reads a response body as text; undecodable bytes raise DecodeError."""
    try:
        return await resp.text()
    except UnicodeDecodeError as e:
        raise DecodeError(source, f"invalid text encoding: {e}") from e
