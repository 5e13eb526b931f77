import asyncio
import base64
import binascii
import inspect
import json
import logging
from collections.abc import Awaitable, Callable

import aiohttp

from .exceptions import APIError, BoardGamesException, DecodeError, NetworkError, UnsupportedEncoding
from .network import API_TIMEOUT, HEADERS

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[bytes], Awaitable[None] | None]


def decode_content_envelope(body: bytes | str) -> bytes:
    """
    Decodes a GitHub contents envelope `{"content": <base64>, "encoding": "base64"}`.
    Newlines embedded in the base64 text are stripped before decoding.
    """
    try:
        envelope = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError("remote config", f"invalid envelope: {e}") from e
    if not isinstance(envelope, dict):
        raise DecodeError("remote config", "envelope is not an object")

    encoding = envelope.get("encoding") or ""
    if encoding != "base64":
        raise UnsupportedEncoding(encoding)

    content = str(envelope.get("content") or "").replace("\n", "").replace("\r", "")
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError("remote config", f"invalid base64: {e}") from e


class GitHubPoller:
    """
    Conditional long-poll of a file in a GitHub repository.

    The last ETag lives in memory only; after a restart the first poll is
    unconditional. A failed poll leaves the ETag alone and is retried on the
    next tick with no backoff.
    """

    API_URL = "https://api.github.com"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        owner: str,
        repo: str,
        path: str,
        ref: str = "heads/main",
        token: str | None = None,
        interval: float = 10.0,
        on_change: ChangeCallback | None = None,
    ):
        self.session = session
        self.owner = owner
        self.repo = repo
        self.path = path
        self.ref = ref or "heads/main"
        self.token = token
        self.interval = interval if interval > 0 else 10.0
        self.on_change = on_change
        self.etag: str | None = None
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return f"{self.API_URL}/repos/{self.owner}/{self.repo}/contents/{self.path}"

    async def poll_once(self) -> bytes | None:
        """
        Returns the decoded file when it changed, None on 304.
        Raises NetworkError, APIError or DecodeError; the ETag is only
        replaced after a successful decode.
        """
        headers = {**HEADERS, "Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.etag:
            headers["If-None-Match"] = self.etag

        try:
            async with self.session.get(
                self.url, params={"ref": self.ref}, headers=headers, timeout=API_TIMEOUT
            ) as resp:
                if resp.status == 304:
                    return None
                if resp.status != 200:
                    raise APIError("GitHub", resp.status, resp.reason or "unexpected status")
                body = await resp.read()
                etag = resp.headers.get("ETag")
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NetworkError(f"GitHub poll failed: {e}", e) from e

        content = decode_content_envelope(body)
        if etag:
            self.etag = etag
        return content

    async def tick(self) -> bool:
        """One poll plus callback. Returns True when a change was delivered."""
        try:
            content = await self.poll_once()
        except BoardGamesException as e:
            logger.warning(f"Remote config poll failed: {e}")
            return False
        if content is None:
            logger.debug("Remote config not modified")
            return False

        logger.info(f"Remote config changed ({len(content)} bytes)")
        if self.on_change is None:
            return True
        try:
            result = self.on_change(content)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Remote config change handler failed: {e}")
        return True

    async def _run(self):
        # First poll right away so a restart picks up the current file
        while not self._stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except TimeoutError:
                continue

    def start(self):
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self._run())
            logger.info(f"Polling {self.owner}/{self.repo}:{self.path} every {self.interval:.0f}s")

    async def stop(self):
        self._stop.set()
        if self._task:
            await self._task
            self._task = None
