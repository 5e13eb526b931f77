import asyncio
import datetime
import hmac
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from aiohttp import web
from sqlalchemy.exc import SQLAlchemyError

from boardgames_core.bgg_api_manager import BGGAPIManager
from boardgames_core.constants import IMAGE_CACHE_CONTROL
from boardgames_core.db.engine import Database
from boardgames_core.db.models import Game
from boardgames_core.enrichment import EnrichmentFetcher
from boardgames_core.exceptions import InventoryError
from boardgames_core.images import ImagePipeline, clamp_width, normalize_format, sources_for
from boardgames_core.janitor import Janitor
from boardgames_core.ludopedia_api_manager import LudopediaAPIManager
from boardgames_core.store import Store
from boardgames_core.syncer import GitHubPoller

from .config import Settings
from .logging_config import get_logger

logger = get_logger(__name__)

DATE_LAYOUTS = ("%Y-%m-%d", "%d/%m/%y", "%d/%m/%Y")


@dataclass
class Services:
    store: Store
    fetcher: EnrichmentFetcher
    pipeline: ImagePipeline
    janitor: Janitor | None = None
    poller: GitHubPoller | None = None
    background: set[asyncio.Task] = field(default_factory=set)

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self.background.add(task)
        task.add_done_callback(self.background.discard)
        return task


SETTINGS_KEY = web.AppKey("settings", Settings)
SERVICES_KEY = web.AppKey("services", Services)


def game_to_dict(game: Game) -> dict[str, Any]:
    return {
        "id": game.id,
        "name": game.name,
        "language": game.language,
        "url_bgg": game.url_bgg,
        "url_ludopedia": game.url_ludopedia,
        "purchase_date": game.purchase_date,
        "tags": game.tag_list,
    }


def parse_purchase_date(value: str) -> datetime.date | None:
    for layout in DATE_LAYOUTS:
        try:
            return datetime.datetime.strptime(value, layout).date()
        except ValueError:
            continue
    return None


def sort_games(games: list[Game]) -> list[Game]:
    """Newest purchases first, undated games last, then by name and id."""

    def key(game: Game):
        date = parse_purchase_date(game.purchase_date) if game.purchase_date else None
        return (date is None, -(date.toordinal() if date else 0), game.name, game.id)

    return sorted(games, key=key)


async def apply_inventory(services: Services, raw: bytes) -> bool:
    """Replaces the inventory from a remote document and backfills provider caches."""
    try:
        count = await services.store.replace_from_yaml(raw)
    except InventoryError as e:
        logger.warning(f"Rejected inventory update, keeping current games: {e}")
        return False
    logger.info(f"Loaded {count} games from remote config")
    services.spawn(services.fetcher.backfill())
    return True


# --- handlers ---


async def handle_image(request: web.Request) -> web.StreamResponse:
    """GET /image/{id}?source=auto|bgg|ludo&format=thumb|full&w=320"""
    services = request.app[SERVICES_KEY]
    pipeline = services.pipeline
    game_id = request.match_info["id"]
    source = request.query.get("source", "auto").strip().lower() or "auto"
    fmt = normalize_format(request.query.get("format"))
    width = clamp_width(request.query.get("w"), pipeline.max_width)

    try:
        sources_for(source)
        path = pipeline.find_cached(game_id, source, fmt, width)
    except ValueError as e:
        raise web.HTTPBadRequest(text=str(e))

    if path is not None:
        return web.FileResponse(
            path,
            headers={"Content-Type": pipeline.content_type(path), "Cache-Control": IMAGE_CACHE_CONTROL},
        )

    # Miss: answer with a redirect now, warm the cache in the background
    try:
        game = await services.store.get_game(game_id)
    except SQLAlchemyError as e:
        logger.warning(f"Inventory lookup failed for image {game_id}: {e}")
        game = None

    upstream = await pipeline.resolve_upstream(game, source, fmt, width) if game else None
    pipeline.schedule_build(game_id, source, fmt, width)
    raise web.HTTPFound(upstream[1] if upstream else pipeline.placeholder_url)


async def handle_games(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    scope = request.query.get("scope", "").strip().lower()
    games = []
    for game in await services.store.list_games():
        tags = {t.lower() for t in game.tag_list}
        if "skip" in tags:
            continue
        if scope != "all" and "book" in tags:
            continue
        games.append(game)
    return web.json_response([game_to_dict(g) for g in sort_games(games)])


async def handle_game_show(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    game = await services.store.get_game(request.match_info["id"])
    if game is None:
        raise web.HTTPNotFound(text="game not found")
    detail = await services.fetcher.enrich(game)
    return web.json_response({**game_to_dict(game), "bgg": detail.bgg, "ludopedia": detail.ludopedia})


def is_authorized(request: web.Request, token: str) -> bool:
    if not token:
        return True
    supplied = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
    if not supplied:
        supplied = request.query.get("token", "")
    if not supplied:
        supplied = request.headers.get("X-Token", "")
    return hmac.compare_digest(token.encode("utf-8"), supplied.encode("utf-8"))


async def handle_load(request: web.Request) -> web.Response:
    """POST /api/load: replace the inventory from a YAML body or multipart `file` field."""
    services = request.app[SERVICES_KEY]
    if not is_authorized(request, request.app[SETTINGS_KEY].admin_token):
        logger.warning(f"Unauthorized inventory load from {request.remote}")
        raise web.HTTPUnauthorized(text="unauthorized")

    if request.content_type.startswith("multipart/"):
        form = await request.post()
        upload = form.get("file")
        if upload is None or not hasattr(upload, "file"):
            raise web.HTTPBadRequest(text="file required")
        data = upload.file.read()
    else:
        data = await request.read()

    try:
        count = await services.store.replace_from_yaml(data)
    except InventoryError as e:
        logger.warning(f"Inventory load rejected: {e}")
        raise web.HTTPBadRequest(text=str(e))

    services.spawn(services.fetcher.backfill())
    return web.json_response({"status": "loaded", "games": count})


def add_routes(app: web.Application):
    app.router.add_get("/image/{id}", handle_image)
    app.router.add_get("/games", handle_games)
    app.router.add_get("/games/{id}", handle_game_show)
    app.router.add_post("/api/load", handle_load)


# --- lifecycle ---


async def services_ctx(app: web.Application):
    """Builds the shared resources on startup and tears them down in reverse on shutdown."""
    settings = app[SETTINGS_KEY]
    session = aiohttp.ClientSession()
    store = Store(Database.from_path(settings.database_path), payload_ttl=settings.payload_ttl)
    await store.setup()

    bgg = BGGAPIManager(session)
    ludopedia = LudopediaAPIManager(
        session,
        app_id=settings.ludopedia_app_id,
        app_key=settings.ludopedia_app_key,
        access_token=settings.ludopedia_access_token,
    )
    if not ludopedia.has_credentials:
        logger.warning("Ludopedia credentials not set; Ludopedia enrichment is disabled.")

    fetcher = EnrichmentFetcher(store, bgg, ludopedia)
    pipeline = ImagePipeline(
        store,
        bgg,
        ludopedia,
        session,
        settings.image_dir,
        placeholder_url=settings.placeholder_url,
        concurrency=settings.image_build_concurrency,
    )
    services = Services(store=store, fetcher=fetcher, pipeline=pipeline)
    services.janitor = Janitor(
        store, fetcher, settings.image_dir, file_ttl=settings.cache_ttl, interval=settings.janitor_interval
    )
    if settings.poller_enabled:
        services.poller = GitHubPoller(
            session,
            owner=settings.github_owner,
            repo=settings.github_repo,
            path=settings.github_path,
            ref=settings.github_ref,
            token=settings.github_token or None,
            interval=settings.poll_interval,
            on_change=lambda raw: apply_inventory(services, raw),
        )
    else:
        logger.info("GitHub inventory polling disabled (GITHUB_OWNER/REPO/PATH not set)")

    app[SERVICES_KEY] = services
    services.janitor.start()
    if services.poller:
        services.poller.start()

    yield

    if services.poller:
        await services.poller.stop()
    await services.janitor.stop()
    await pipeline.close()
    if services.background:
        await asyncio.gather(*list(services.background), return_exceptions=True)
    await store.close()
    await session.close()


def create_app(settings: Settings, services: Services | None = None) -> web.Application:
    """
    Builds the web application. With `services` given the caller owns their
    lifecycle (tests); otherwise they are created from settings on startup.
    """
    app = web.Application()
    app[SETTINGS_KEY] = settings
    if services is not None:
        app[SERVICES_KEY] = services
    else:
        app.cleanup_ctx.append(services_ctx)
    add_routes(app)
    return app
