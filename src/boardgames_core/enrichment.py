import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .bgg_api_manager import BGGAPIManager
from .constants import ProviderKind
from .db.models import Game
from .exceptions import BoardGamesException
from .ludopedia_api_manager import LudopediaAPIManager
from .parser import extract_bgg_id, extract_ludopedia_slug, parse_bgg_thing, parse_ludopedia_game
from .store import Store
from .utils import utcnow

logger = logging.getLogger(__name__)

DECODERS = {
    ProviderKind.BGG: parse_bgg_thing,
    ProviderKind.LUDOPEDIA: parse_ludopedia_game,
}


def provider_ref(game: Game, kind: ProviderKind) -> str | None:
    """Resolves the provider-specific reference (BGG id or Ludopedia slug) of a game."""
    if kind is ProviderKind.BGG:
        return extract_bgg_id(game.url_bgg)
    return extract_ludopedia_slug(game.url_ludopedia)


@dataclass
class GameDetail:
    game: Game
    bgg: dict[str, Any] | None = None
    ludopedia: dict[str, Any] | None = None


class EnrichmentFetcher:
    """
    Cache-or-fetch-or-degrade lookups of provider metadata.

    Enrichment is cosmetic: every provider failure turns into a missing
    value, never an exception for the caller.
    """

    def __init__(
        self,
        store: Store,
        bgg: BGGAPIManager,
        ludopedia: LudopediaAPIManager,
        timeout: float = 10.0,
    ):
        self.store = store
        self.bgg = bgg
        self.ludopedia = ludopedia
        self.timeout = timeout

    async def fetch_raw(self, kind: ProviderKind, ref: str) -> str:
        """Fetches the raw provider payload under the fetch timeout."""
        if kind is ProviderKind.BGG:
            call = self.bgg.fetch_thing_raw(ref, include_stats=True)
        else:
            call = self.ludopedia.fetch_game_raw(ref)
        return await asyncio.wait_for(call, timeout=self.timeout)

    async def enrich(self, game: Game) -> GameDetail:
        bgg = await self._enrich_one(game, ProviderKind.BGG)
        ludopedia = await self._enrich_one(game, ProviderKind.LUDOPEDIA)
        return GameDetail(game=game, bgg=bgg, ludopedia=ludopedia)

    async def _enrich_one(self, game: Game, kind: ProviderKind) -> dict[str, Any] | None:
        """
        Any stored row counts as a hit here, expired or not. Expired rows are
        replaced by the janitor, so a request never waits on a refetch of data
        it already has.
        """
        ref = provider_ref(game, kind)
        if not ref:
            return None

        decode = DECODERS[kind]
        try:
            cached = await self.store.get_payload(kind, game.id)
        except SQLAlchemyError as e:
            logger.warning(f"Cache read failed for {kind.value}/{game.id}: {e}")
            cached = None

        if cached is not None:
            try:
                return decode(cached)
            except BoardGamesException as e:
                # Stays broken until the janitor or a reload overwrites the row
                logger.warning(f"Cached {kind.label} payload for {game.id} is unreadable: {e}")
                return None

        try:
            raw = await self.fetch_raw(kind, ref)
            details = decode(raw)
        except (BoardGamesException, TimeoutError) as e:
            logger.info(f"{kind.label} enrichment skipped for {game.id}: {e}")
            return None

        try:
            await self.store.put_payload(kind, game.id, ref, raw, fetched_at=utcnow())
        except SQLAlchemyError as e:
            logger.warning(f"Cache write failed for {kind.value}/{game.id}: {e}")
        return details

    async def refresh(self, game: Game, kind: ProviderKind, now: float | None = None) -> bool:
        """
        Re-fetches one provider payload and overwrites its cache row.
        Returns False when the game has no reference or the fetch/write failed.
        """
        ref = provider_ref(game, kind)
        if not ref:
            return False
        try:
            raw = await self.fetch_raw(kind, ref)
            await self.store.put_payload(kind, game.id, ref, raw, fetched_at=now if now is not None else utcnow())
        except (BoardGamesException, TimeoutError, SQLAlchemyError) as e:
            logger.warning(f"Refresh of {kind.label} payload for {game.id} failed: {e}")
            return False
        return True

    async def backfill(self, games: Iterable[Game] | None = None) -> int:
        """Fills cache rows that do not exist yet. Returns how many were written."""
        if games is None:
            games = await self.store.list_games()
        written = 0
        for game in games:
            for kind in ProviderKind:
                if not provider_ref(game, kind):
                    continue
                try:
                    if await self.store.get_payload(kind, game.id) is not None:
                        continue
                except SQLAlchemyError as e:
                    logger.warning(f"Cache read failed for {kind.value}/{game.id}: {e}")
                    continue
                if await self.refresh(game, kind):
                    written += 1
        if written:
            logger.info(f"Backfilled {written} provider payloads")
        return written
