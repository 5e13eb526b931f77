import pytest
from conftest import BGG_XML, LUDOPEDIA_JSON

from boardgames_core.exceptions import DecodeError
from boardgames_core.parser import (
    extract_bgg_id,
    extract_ludopedia_slug,
    extract_og_image,
    parse_bgg_thing,
    parse_ludopedia_game,
)


def test_extract_bgg_id():
    assert extract_bgg_id("https://boardgamegeek.com/boardgame/13/catan") == "13"
    assert extract_bgg_id("https://www.boardgamegeek.com/boardgame/230802") == "230802"
    assert extract_bgg_id("https://boardgamegeek.com/boardgameexpansion/926") is None
    assert extract_bgg_id("") is None
    assert extract_bgg_id(None) is None


def test_extract_ludopedia_slug():
    assert extract_ludopedia_slug("https://ludopedia.com.br/jogo/catan") == "catan"
    assert extract_ludopedia_slug("https://ludopedia.com.br/jogo/azul?v=1#top") == "azul"
    assert extract_ludopedia_slug("https://ludopedia.com.br/jogos") is None
    assert extract_ludopedia_slug(None) is None


def test_parse_bgg_thing():
    details = parse_bgg_thing(BGG_XML)

    assert details["id"] == "13"
    assert details["name"] == "CATAN"
    assert details["year_published"] == 1995
    assert details["min_players"] == 3
    assert details["max_players"] == 4
    assert details["thumbnail"] == "https://cf.geekdo-images.com/catan_thumb.jpg"
    assert details["image"] == "https://cf.geekdo-images.com/catan_full.jpg"
    assert details["mechanics"] == ["Dice Rolling"]
    assert details["designers"] == ["Klaus Teuber"]
    assert details["rating"] == pytest.approx(7.1)
    assert details["weight"] == pytest.approx(2.3)
    assert details["rank"] == 500


def test_parse_bgg_thing_uses_first_item_only():
    raw = (
        '<items><item type="boardgame" id="1"><name type="primary" value="First" /></item>'
        '<item type="boardgame" id="2"><name type="primary" value="Second" /></item></items>'
    )
    details = parse_bgg_thing(raw)
    assert details["id"] == "1"
    assert details["name"] == "First"
    assert details["thumbnail"] is None
    assert details["rating"] is None


@pytest.mark.parametrize("raw", ["<items><item", "<items></items>", "not xml at all"])
def test_parse_bgg_thing_rejects_bad_documents(raw):
    with pytest.raises(DecodeError):
        parse_bgg_thing(raw)


def test_parse_ludopedia_game():
    details = parse_ludopedia_game(LUDOPEDIA_JSON)

    assert details["name"] == "Catan"
    assert details["thumbnail"].endswith("3_t.jpg")
    assert details["mechanics"] == ["Rolagem de Dados"]
    assert details["themes"] == ["Colonização"]
    assert details["artists"] == []


@pytest.mark.parametrize("raw", ["{broken", "[1, 2]"])
def test_parse_ludopedia_game_rejects_bad_documents(raw):
    with pytest.raises(DecodeError):
        parse_ludopedia_game(raw)


def test_extract_og_image():
    html = '<html><head><meta property="og:image" content="https://img/x.jpg"></head></html>'
    assert extract_og_image(html) == "https://img/x.jpg"
    assert extract_og_image("<html><head></head></html>") is None
