import asyncio
import os
import time
from unittest.mock import MagicMock

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from conftest import BGG_XML, LUDOPEDIA_JSON, make_game

from boardgames_core.bgg_api_manager import BGGAPIManager
from boardgames_core.constants import ProviderKind
from boardgames_core.enrichment import EnrichmentFetcher
from boardgames_core.exceptions import (
    AccessDenied,
    APIError,
    DecodeError,
    MissingCredentials,
    NetworkError,
    RateLimitExceeded,
)
from boardgames_core.images import ImagePipeline
from boardgames_core.janitor import Janitor
from boardgames_core.ludopedia_api_manager import LudopediaAPIManager
from boardgames_core.network import raise_for_status

BAD_UTF8 = b"<items>\xff\xfe bad</items>"
GAME_PAGE = '<html><head><meta property="og:image" content="https://ludopedia.com.br/og/catan.jpg"></head></html>'


class FakeProviders:
    """Serves BGG and Ludopedia endpoints keyed by id/slug and records hits."""

    def __init__(self):
        self.hits: list[str] = []

    async def thing(self, request: web.Request) -> web.Response:
        self.hits.append(request.path_qs)
        bgg_id = request.query.get("id", "")
        if bgg_id.isdigit() and len(bgg_id) == 3 and bgg_id != "666":
            return web.Response(status=int(bgg_id))
        if bgg_id == "666":
            return web.Response(body=BAD_UTF8, content_type="text/xml", charset="utf-8")
        if bgg_id == "slow":
            await asyncio.sleep(1)
        return web.Response(text=BGG_XML, content_type="text/xml")

    async def game(self, request: web.Request) -> web.Response:
        self.hits.append(request.path_qs)
        slug = request.match_info["slug"]
        if slug == "broken":
            return web.Response(text="<html>maintenance</html>", content_type="text/html")
        if slug == "badbytes":
            return web.Response(body=b'{"nm_jogo": "\xff"}', content_type="application/json", charset="utf-8")
        if slug == "gone":
            return web.Response(status=404)
        return web.Response(text=LUDOPEDIA_JSON, content_type="application/json")

    async def page(self, request: web.Request) -> web.Response:
        self.hits.append(request.path_qs)
        return web.Response(text=GAME_PAGE, content_type="text/html")


@pytest_asyncio.fixture
async def providers():
    fake = FakeProviders()
    app = web.Application()
    app.router.add_get("/xmlapi2/thing", fake.thing)
    app.router.add_get("/api/jogos/{slug}", fake.game)
    app.router.add_get("/jogo/{slug}", fake.page)
    server = TestServer(app)
    await server.start_server()
    yield fake, str(server.make_url("")).rstrip("/")
    await server.close()


@pytest.fixture
def bgg(session, providers):
    _, base_url = providers
    manager = BGGAPIManager(session)
    manager.BASE_URL = f"{base_url}/xmlapi2"
    return manager


@pytest.fixture
def ludopedia(session, providers):
    _, base_url = providers
    manager = LudopediaAPIManager(session, app_id="app", app_key="key", access_token="tok")
    manager.BASE_URL = base_url
    return manager


# --- status mapping ---


@pytest.mark.parametrize(
    "status, error",
    [(401, AccessDenied), (403, AccessDenied), (429, RateLimitExceeded), (404, APIError), (503, APIError)],
)
def test_raise_for_status_maps_errors(status, error):
    with pytest.raises(error):
        raise_for_status("BoardGameGeek", status, "nope")


def test_raise_for_status_accepts_success():
    raise_for_status("BoardGameGeek", 200)
    raise_for_status("BoardGameGeek", 304)


# --- BoardGameGeek ---


@pytest.mark.asyncio
async def test_bgg_fetch_returns_raw_document(bgg, providers):
    fake, _ = providers

    assert await bgg.fetch_thing_raw("13") == BGG_XML
    assert "stats=1" in fake.hits[-1]

    await bgg.fetch_thing_raw("13", include_stats=False)
    assert "stats" not in fake.hits[-1]


@pytest.mark.asyncio
async def test_bgg_image_url(bgg):
    assert await bgg.fetch_image_url("13") == "https://cf.geekdo-images.com/catan_thumb.jpg"
    assert await bgg.fetch_image_url("13", full=True) == "https://cf.geekdo-images.com/catan_full.jpg"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bgg_id, error",
    [("401", AccessDenied), ("403", AccessDenied), ("429", RateLimitExceeded), ("500", APIError)],
)
async def test_bgg_status_errors(bgg, bgg_id, error):
    with pytest.raises(error):
        await bgg.fetch_thing_raw(bgg_id)


@pytest.mark.asyncio
async def test_bgg_undecodable_body_is_a_decode_error(bgg):
    with pytest.raises(DecodeError):
        await bgg.fetch_thing_raw("666")


@pytest.mark.asyncio
async def test_bgg_timeout_is_a_network_error(session, providers):
    _, base_url = providers
    manager = BGGAPIManager(session, timeout=aiohttp.ClientTimeout(total=0.05))
    manager.BASE_URL = f"{base_url}/xmlapi2"

    with pytest.raises(NetworkError):
        await manager.fetch_thing_raw("slow")


@pytest.mark.asyncio
async def test_transport_errors_are_network_errors():
    session = MagicMock()
    session.get.side_effect = aiohttp.ClientConnectionError("refused")

    with pytest.raises(NetworkError):
        await BGGAPIManager(session).fetch_thing_raw("13")
    with pytest.raises(NetworkError):
        await LudopediaAPIManager(session, "app", "key", "tok").fetch_game_raw("catan")


# --- Ludopedia ---


@pytest.mark.asyncio
async def test_ludopedia_without_credentials_never_hits_the_network(session, providers):
    fake, base_url = providers
    manager = LudopediaAPIManager(session, app_id="app")
    manager.BASE_URL = base_url

    assert manager.has_credentials is False
    with pytest.raises(MissingCredentials):
        await manager.fetch_game_raw("catan")
    assert fake.hits == []


@pytest.mark.asyncio
async def test_ludopedia_fetch_sends_credentials(ludopedia, providers):
    fake, _ = providers

    assert await ludopedia.fetch_game_raw("catan") == LUDOPEDIA_JSON
    assert fake.hits[-1].startswith("/api/jogos/catan?")
    assert "access_token=tok" in fake.hits[-1]


@pytest.mark.asyncio
@pytest.mark.parametrize("slug, error", [("broken", DecodeError), ("badbytes", DecodeError), ("gone", APIError)])
async def test_ludopedia_rejects_bad_responses(ludopedia, slug, error):
    with pytest.raises(error):
        await ludopedia.fetch_game_raw(slug)


@pytest.mark.asyncio
async def test_ludopedia_image_url_scrapes_page_without_credentials(session, providers):
    _, base_url = providers
    manager = LudopediaAPIManager(session)
    manager.BASE_URL = base_url

    assert await manager.fetch_image_url("catan") == "https://ludopedia.com.br/og/catan.jpg"


# --- undecodable provider bodies stay inside the soft-failure boundaries ---


BROKEN_GAME = {
    "url_bgg": "https://boardgamegeek.com/boardgame/666/cursed",
    "url_ludopedia": "https://ludopedia.com.br/jogo/broken",
}


@pytest.mark.asyncio
async def test_enrich_degrades_on_undecodable_bodies(store, bgg, ludopedia):
    fetcher = EnrichmentFetcher(store, bgg, ludopedia, timeout=1.0)

    detail = await fetcher.enrich(make_game("g1", **BROKEN_GAME))

    assert detail.bgg is None
    assert detail.ludopedia is None
    assert await store.get_payload(ProviderKind.BGG, "g1") is None
    assert await store.get_payload(ProviderKind.LUDOPEDIA, "g1") is None


@pytest.mark.asyncio
async def test_janitor_tick_survives_undecodable_bodies(store, bgg, ludopedia, tmp_path):
    await store.replace_from_yaml(
        "games:\n"
        "  - id: cursed\n"
        "    name: Cursed\n"
        f"    url_bgg: {BROKEN_GAME['url_bgg']}\n"
        "  - id: g1\n"
        "    name: Catan\n"
        "    url_bgg: https://boardgamegeek.com/boardgame/13/catan\n"
    )
    image_dir = tmp_path / "images"
    image_dir.mkdir()
    old = image_dir / "g1_bgg_thumb"
    old.write_bytes(b"stale")
    now = time.time()
    os.utime(old, (now - 7200, now - 7200))

    janitor = Janitor(store, EnrichmentFetcher(store, bgg, ludopedia, timeout=1.0), image_dir, file_ttl=3600)
    report = await janitor.tick(now)

    assert report.failed == 1
    assert report.refreshed == 1
    assert report.removed == 1
    assert not old.exists()


@pytest.mark.asyncio
async def test_image_lookup_skips_undecodable_provider(store, bgg, ludopedia, session, tmp_path):
    pipeline = ImagePipeline(store, bgg, ludopedia, session, tmp_path / "images")
    game = make_game("g1", **BROKEN_GAME)

    assert await pipeline.resolve_upstream(game, "bgg", "thumb") is None
    assert await pipeline.resolve_upstream(game, "auto", "thumb") == (
        ProviderKind.LUDOPEDIA,
        "https://ludopedia.com.br/og/catan.jpg",
    )
    await pipeline.close()
