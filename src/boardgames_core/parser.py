import json
import re
import xml.etree.ElementTree as ET
from typing import Any

from bs4 import BeautifulSoup

from .exceptions import DecodeError

BGG_ID_REGEX = re.compile(r"/boardgame/(\d+)")
LUDOPEDIA_SLUG_REGEX = re.compile(r"/jogo/([^/?#]+)")


def extract_bgg_id(url: str | None) -> str | None:
    """Extracts the numeric BoardGameGeek id from a game URL."""
    if not url:
        return None
    match = BGG_ID_REGEX.search(url)
    return match.group(1) if match else None


def extract_ludopedia_slug(url: str | None) -> str | None:
    """Extracts the Ludopedia slug from a game URL."""
    if not url:
        return None
    match = LUDOPEDIA_SLUG_REGEX.search(url)
    return match.group(1) if match else None


def extract_og_image(html: str) -> str | None:
    """Returns the og:image URL of an HTML page, if any."""
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.find("meta", property="og:image")
    if tag and tag.get("content"):
        content = tag["content"]
        if isinstance(content, list):
            content = content[0] if content else ""
        return str(content).strip() or None
    return None


def _int_value(item: ET.Element, tag: str) -> int | None:
    node = item.find(tag)
    if node is None:
        return None
    try:
        return int(node.get("value", ""))
    except ValueError:
        return None


def _float_value(node: ET.Element | None) -> float | None:
    if node is None:
        return None
    try:
        return float(node.get("value", ""))
    except ValueError:
        return None


def _text(item: ET.Element, tag: str) -> str | None:
    node = item.find(tag)
    if node is None or node.text is None:
        return None
    return node.text.strip() or None


def parse_bgg_thing(raw: str | bytes) -> dict[str, Any]:
    """
    Decodes a BGG XML API2 `thing` document into a details dict.
    Only the first <item> is used. Raises DecodeError when the document is
    malformed or carries no item.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise DecodeError("bgg", str(e)) from e

    item = root.find("item")
    if item is None:
        raise DecodeError("bgg", "no item in response")

    names = item.findall("name")
    primary = next((n for n in names if n.get("type") == "primary"), names[0] if names else None)

    links: dict[str, list[str]] = {}
    for link in item.findall("link"):
        links.setdefault(link.get("type", ""), []).append(link.get("value", ""))

    details: dict[str, Any] = {
        "id": item.get("id"),
        "type": item.get("type"),
        "name": primary.get("value") if primary is not None else None,
        "year_published": _int_value(item, "yearpublished"),
        "min_players": _int_value(item, "minplayers"),
        "max_players": _int_value(item, "maxplayers"),
        "playing_time": _int_value(item, "playingtime"),
        "min_play_time": _int_value(item, "minplaytime"),
        "max_play_time": _int_value(item, "maxplaytime"),
        "min_age": _int_value(item, "minage"),
        "description": _text(item, "description"),
        "thumbnail": _text(item, "thumbnail"),
        "image": _text(item, "image"),
        "categories": links.get("boardgamecategory", []),
        "mechanics": links.get("boardgamemechanic", []),
        "designers": links.get("boardgamedesigner", []),
        "rating": None,
        "weight": None,
        "rank": None,
    }

    ratings = item.find("statistics/ratings")
    if ratings is not None:
        details["rating"] = _float_value(ratings.find("average"))
        details["weight"] = _float_value(ratings.find("averageweight"))
        for rank in ratings.findall("ranks/rank"):
            if rank.get("name") == "boardgame":
                value = rank.get("value", "")
                details["rank"] = int(value) if value.isdigit() else None
                break

    return details


def _names(entries: Any, key: str) -> list[str]:
    if not isinstance(entries, list):
        return []
    return [e[key] for e in entries if isinstance(e, dict) and e.get(key)]


def parse_ludopedia_game(raw: str | bytes) -> dict[str, Any]:
    """Decodes a Ludopedia `jogos/{id}` JSON object into a details dict."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError("ludopedia", str(e)) from e

    if not isinstance(data, dict):
        raise DecodeError("ludopedia", "expected a JSON object")

    return {
        "id": data.get("id_jogo"),
        "name": data.get("nm_jogo"),
        "type": data.get("tp_jogo"),
        "link": data.get("link"),
        "thumbnail": data.get("thumb"),
        "year_published": data.get("ano_publicacao"),
        "year_national": data.get("ano_nacional"),
        "min_players": data.get("qt_jogadores_min"),
        "max_players": data.get("qt_jogadores_max"),
        "playing_time": data.get("vl_tempo_jogo"),
        "min_age": data.get("idade_minima"),
        "owned": data.get("qt_tem"),
        "wanted": data.get("qt_quer"),
        "mechanics": _names(data.get("mecanicas"), "nm_mecanica"),
        "categories": _names(data.get("categorias"), "nm_categoria"),
        "themes": _names(data.get("temas"), "nm_tema"),
        "designers": _names(data.get("designers"), "nm_profissional"),
        "artists": _names(data.get("artistas"), "nm_profissional"),
    }
