from io import BytesIO
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
import pytest_asyncio
from dotenv import load_dotenv
from PIL import Image

from boardgames_core.db.engine import Database
from boardgames_core.db.models import Game
from boardgames_core.store import Store

load_dotenv()

BGG_XML = """<?xml version="1.0" encoding="utf-8"?>
<items termsofuse="https://boardgamegeek.com/xmlapi/termsofuse">
  <item type="boardgame" id="13">
    <thumbnail>https://cf.geekdo-images.com/catan_thumb.jpg</thumbnail>
    <image>https://cf.geekdo-images.com/catan_full.jpg</image>
    <name type="primary" sortindex="1" value="CATAN" />
    <name type="alternate" sortindex="1" value="Colonizadores de Catan" />
    <description>Trade, build and settle the island.</description>
    <yearpublished value="1995" />
    <minplayers value="3" />
    <maxplayers value="4" />
    <playingtime value="120" />
    <minplaytime value="60" />
    <maxplaytime value="120" />
    <minage value="10" />
    <link type="boardgamecategory" id="1021" value="Economic" />
    <link type="boardgamemechanic" id="2072" value="Dice Rolling" />
    <link type="boardgamedesigner" id="11" value="Klaus Teuber" />
    <statistics page="1">
      <ratings>
        <usersrated value="120000" />
        <average value="7.1" />
        <averageweight value="2.3" />
        <ranks>
          <rank type="subtype" id="1" name="boardgame" friendlyname="Board Game Rank" value="500" />
        </ranks>
      </ratings>
    </statistics>
  </item>
</items>
"""

LUDOPEDIA_JSON = """{
  "id_jogo": 3,
  "nm_jogo": "Catan",
  "thumb": "https://storage.googleapis.com/ludopedia-capas/3_t.jpg",
  "tp_jogo": "b",
  "link": "https://ludopedia.com.br/jogo/catan",
  "ano_publicacao": 1995,
  "ano_nacional": 2007,
  "qt_jogadores_min": 3,
  "qt_jogadores_max": 4,
  "vl_tempo_jogo": 90,
  "idade_minima": 10,
  "qt_tem": 20000,
  "qt_quer": 800,
  "mecanicas": [{"id_mecanica": 1, "nm_mecanica": "Rolagem de Dados"}],
  "categorias": [{"id_categoria": 2, "nm_categoria": "Economia"}],
  "temas": [{"id_tema": 4, "nm_tema": "Colonização"}],
  "designers": [{"id_profissional": 7, "nm_profissional": "Klaus Teuber"}],
  "artistas": []
}"""

INVENTORY_YAML = """
games:
  - id: g1
    name: Catan
    price: "250"
    purchase_date: "2023-05-01"
    purchace_from: Loja
    language: pt
    url_bgg: https://boardgamegeek.com/boardgame/13/catan
    url_ludopedia: https://ludopedia.com.br/jogo/catan
    tags: [family]
  - id: g2
    name: Azul
    purchase_date: "2024-01-10"
    url_bgg: https://boardgamegeek.com/boardgame/230802/azul
  - name: Rulebook Compendium
    tags: [book]
  - name: Broken Copy
    tags: [skip]
"""


def make_png(width: int, height: int, color=(200, 30, 30)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_game(game_id: str = "g1", url_bgg: str = "", url_ludopedia: str = "", **kwargs) -> Game:
    return Game(id=game_id, name=kwargs.pop("name", game_id), url_bgg=url_bgg, url_ludopedia=url_ludopedia, **kwargs)


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest_asyncio.fixture
async def store(tmp_path):
    # Use a temporary database file for tests
    store = Store(Database(f"sqlite+aiosqlite:///{tmp_path / 'test_boardgames.db'}"))
    await store.setup()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def seeded_store(store):
    await store.replace_from_yaml(INVENTORY_YAML)
    return store


@pytest.fixture
def bgg_manager():
    manager = MagicMock()
    manager.fetch_thing_raw = AsyncMock(return_value=BGG_XML)
    manager.fetch_image_url = AsyncMock(return_value="https://cf.geekdo-images.com/catan_live.jpg")
    return manager


@pytest.fixture
def ludopedia_manager():
    manager = MagicMock()
    manager.fetch_game_raw = AsyncMock(return_value=LUDOPEDIA_JSON)
    manager.fetch_image_url = AsyncMock(return_value="https://ludopedia.com.br/og/catan.jpg")
    return manager
