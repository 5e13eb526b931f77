import hashlib
import logging
from dataclasses import dataclass
from typing import Any

import yaml
from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from .constants import PAYLOAD_TTL_SECONDS, ProviderKind
from .db.engine import Database
from .db.models import Game, PayloadCache
from .exceptions import InventoryError
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    game_id: str
    provider: ProviderKind
    provider_ref: str
    payload: str
    fetched_at: float
    expires_at: float


def generate_game_id(name: str, url_bgg: str, url_ludopedia: str, purchase_date: str) -> str:
    """Stable id for inventory rows that do not carry one."""
    base = f"{name.strip()}|{url_bgg.strip()}|{url_ludopedia.strip()}"
    if not url_bgg.strip() and not url_ludopedia.strip():
        base = f"{base}|{purchase_date.strip()}"
    return hashlib.sha1(base.encode("utf-8"), usedforsecurity=False).hexdigest()[:16]


def _field(entry: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if value is not None:
            return str(value).strip()
    return ""


def _game_from_entry(entry: dict[str, Any]) -> Game:
    tags = entry.get("tags") or []
    if isinstance(tags, str):
        tags = tags.split(",")
    name = _field(entry, "name")
    url_bgg = _field(entry, "url_bgg")
    url_ludopedia = _field(entry, "url_ludopedia")
    purchase_date = _field(entry, "purchase_date")
    return Game(
        id=_field(entry, "id") or generate_game_id(name, url_bgg, url_ludopedia, purchase_date),
        name=name,
        purchase_price=_field(entry, "price"),
        purchase_date=purchase_date,
        purchase_where=_field(entry, "purchace_from", "purchase_from"),
        language=_field(entry, "language"),
        url_bgg=url_bgg,
        url_ludopedia=url_ludopedia,
        tags=",".join(str(t).strip() for t in tags if str(t).strip()),
    )


class Store:
    """
    Catalog persistence: the inventory of games and the provider payload cache.

    Payload rows are keyed by (provider, game_id). Each write is a single
    upsert statement, so readers see either no row or a complete one.
    """

    def __init__(self, db: Database, payload_ttl: float = PAYLOAD_TTL_SECONDS):
        self.db = db
        self.payload_ttl = payload_ttl

    async def setup(self):
        await self.db.connect()

    async def close(self):
        await self.db.close()

    # --- payload cache ---

    async def get_payload(self, kind: ProviderKind, game_id: str) -> str | None:
        """Returns the cached payload, expired or not. None when no row exists."""
        async with self.db.session as session:
            row = await session.get(PayloadCache, (kind.value, game_id))
            return row.payload if row else None

    async def get_cache_entry(self, kind: ProviderKind, game_id: str) -> CacheEntry | None:
        async with self.db.session as session:
            row = await session.get(PayloadCache, (kind.value, game_id))
            if row is None:
                return None
            return CacheEntry(
                game_id=row.game_id,
                provider=kind,
                provider_ref=row.provider_ref,
                payload=row.payload,
                fetched_at=row.fetched_at,
                expires_at=row.expires_at,
            )

    async def put_payload(
        self,
        kind: ProviderKind,
        game_id: str,
        provider_ref: str,
        payload: str,
        fetched_at: float | None = None,
    ):
        """Upserts the row for (kind, game_id); expires_at is fixed here as fetched_at + TTL."""
        if fetched_at is None:
            fetched_at = utcnow()
        values = {
            "provider": kind.value,
            "game_id": game_id,
            "provider_ref": provider_ref,
            "payload": payload,
            "fetched_at": fetched_at,
            "expires_at": fetched_at + self.payload_ttl,
        }
        stmt = sqlite_insert(PayloadCache).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[PayloadCache.provider, PayloadCache.game_id],
            set_={k: stmt.excluded[k] for k in ("provider_ref", "payload", "fetched_at", "expires_at")},
        )
        async with self.db.session as session:
            await session.execute(stmt)
            await session.commit()

    async def is_expired(self, kind: ProviderKind, game_id: str, now: float | None = None) -> bool:
        """True when the row is missing or expires_at <= now. Callers treat both as 'go fetch'."""
        if now is None:
            now = utcnow()
        async with self.db.session as session:
            result = await session.execute(
                select(PayloadCache.expires_at).where(
                    PayloadCache.provider == kind.value, PayloadCache.game_id == game_id
                )
            )
            expires_at = result.scalar_one_or_none()
        return expires_at is None or expires_at <= now

    async def clear_cache(self):
        async with self.db.session as session:
            await session.execute(delete(PayloadCache))
            await session.commit()

    # --- inventory ---

    async def list_games(self) -> list[Game]:
        async with self.db.session as session:
            result = await session.execute(select(Game))
            return list(result.scalars().all())

    async def get_game(self, game_id: str) -> Game | None:
        async with self.db.session as session:
            return await session.get(Game, game_id)

    async def replace_from_yaml(self, raw: bytes | str) -> int:
        """
        Replaces the whole inventory from a YAML document shaped like
        `{games: [{name, url_bgg, url_ludopedia, ...}]}`.
        Malformed or empty documents raise InventoryError and leave the
        current rows untouched. Returns the number of games loaded.
        """
        try:
            doc = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise InventoryError(f"invalid inventory yaml: {e}") from e

        entries = doc.get("games") if isinstance(doc, dict) else None
        if not isinstance(entries, list) or not entries:
            raise InventoryError("no games found")
        if not all(isinstance(e, dict) for e in entries):
            raise InventoryError("every game entry must be a mapping")

        games = [_game_from_entry(e) for e in entries]
        try:
            async with self.db.session as session:
                async with session.begin():
                    await session.execute(delete(Game))
                    session.add_all(games)
        except SQLAlchemyError as e:
            raise InventoryError(f"inventory replace failed: {e}") from e

        logger.info(f"Inventory replaced with {len(games)} games")
        return len(games)
