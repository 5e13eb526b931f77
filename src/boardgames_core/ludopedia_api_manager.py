import json
import logging
from urllib.parse import quote

import aiohttp

from .exceptions import DecodeError, MissingCredentials, NetworkError
from .network import API_TIMEOUT, HEADERS, PAGE_TIMEOUT, raise_for_status, read_text
from .parser import extract_og_image

logger = logging.getLogger(__name__)

PROVIDER = "Ludopedia"


class LudopediaAPIManager:
    BASE_URL = "https://ludopedia.com.br"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        app_id: str = "",
        app_key: str = "",
        access_token: str = "",
    ):
        self.session = session
        self.app_id = app_id
        self.app_key = app_key
        self.access_token = access_token

    @property
    def has_credentials(self) -> bool:
        return bool(self.app_id and self.app_key and self.access_token)

    async def fetch_game_raw(self, slug: str) -> str:
        """
        Returns the raw JSON payload for a Ludopedia game by slug or id.
        Fails closed with MissingCredentials when the API keys are not configured.
        """
        if not self.has_credentials:
            raise MissingCredentials(PROVIDER)

        url = f"{self.BASE_URL}/api/jogos/{quote(slug, safe='')}"
        params = {"app_id": self.app_id, "app_key": self.app_key, "access_token": self.access_token}
        logger.debug(f"Fetching Ludopedia game {slug}")
        try:
            async with self.session.get(url, params=params, headers=HEADERS, timeout=API_TIMEOUT) as resp:
                raise_for_status(PROVIDER, resp.status, resp.reason)
                body = await read_text(resp, "ludopedia")
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NetworkError(f"Ludopedia request failed for {slug}: {e}", e) from e

        # Only cache documents that are valid JSON
        try:
            json.loads(body)
        except json.JSONDecodeError as e:
            raise DecodeError("ludopedia", f"invalid json: {e}") from e
        return body

    async def fetch_image_url(self, slug: str) -> str | None:
        """Scrapes the og:image of the public game page. Needs no credentials."""
        url = f"{self.BASE_URL}/jogo/{quote(slug, safe='')}"
        try:
            async with self.session.get(url, headers=HEADERS, timeout=PAGE_TIMEOUT) as resp:
                raise_for_status(PROVIDER, resp.status, resp.reason)
                html = await read_text(resp, "ludopedia page")
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NetworkError(f"Ludopedia page request failed for {slug}: {e}", e) from e
        return extract_og_image(html)
