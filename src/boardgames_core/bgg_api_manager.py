import logging

import aiohttp

from .exceptions import APIError, NetworkError
from .network import API_TIMEOUT, HEADERS, raise_for_status, read_text
from .parser import parse_bgg_thing

logger = logging.getLogger(__name__)

PROVIDER = "BoardGameGeek"


class BGGAPIManager:
    BASE_URL = "https://www.boardgamegeek.com/xmlapi2"

    def __init__(self, session: aiohttp.ClientSession, timeout: aiohttp.ClientTimeout = API_TIMEOUT):
        self.session = session
        self.timeout = timeout

    async def fetch_thing_raw(self, bgg_id: str, include_stats: bool = True) -> str:
        """
        Returns the raw XML document for a BGG `thing`.
        Raises NetworkError, AccessDenied, RateLimitExceeded or APIError.
        """
        if not bgg_id:
            raise APIError(PROVIDER, message="missing id")

        params = {"id": bgg_id}
        if include_stats:
            params["stats"] = "1"

        logger.debug(f"Fetching BGG thing {bgg_id}")
        try:
            async with self.session.get(
                f"{self.BASE_URL}/thing", params=params, headers=HEADERS, timeout=self.timeout
            ) as resp:
                raise_for_status(PROVIDER, resp.status, resp.reason)
                return await read_text(resp, "bgg")
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NetworkError(f"BGG request failed for {bgg_id}: {e}", e) from e

    async def fetch_image_url(self, bgg_id: str, full: bool = False) -> str | None:
        """
        Looks up the image URL of a game. `full` prefers the full-size image
        over the thumbnail; either falls back to the other.
        """
        raw = await self.fetch_thing_raw(bgg_id, include_stats=False)
        return pick_image_url(parse_bgg_thing(raw), full)


def pick_image_url(details: dict, full: bool) -> str | None:
    if full:
        return details.get("image") or details.get("thumbnail")
    return details.get("thumbnail") or details.get("image")
