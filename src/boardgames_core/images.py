import asyncio
import contextlib
import logging
import os
import tempfile
from io import BytesIO
from pathlib import Path

import aiohttp
from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError

from .bgg_api_manager import BGGAPIManager, pick_image_url
from .constants import (
    CONTENT_TYPE_SUFFIX,
    FORMAT_ALIASES,
    IMAGE_FORMATS,
    JPEG_QUALITY,
    MAX_IMAGE_WIDTH,
    PLACEHOLDER_URL,
    SOURCE_PRIORITY,
    ProviderKind,
)
from .db.models import Game
from .enrichment import provider_ref
from .exceptions import BoardGamesException
from .ludopedia_api_manager import LudopediaAPIManager
from .network import API_TIMEOUT, HEADERS
from .parser import parse_bgg_thing, parse_ludopedia_game
from .store import Store

logger = logging.getLogger(__name__)

FALLBACK_CONTENT_TYPE = "application/octet-stream"


def normalize_format(fmt: str | None) -> str:
    fmt = (fmt or "").strip().lower()
    fmt = FORMAT_ALIASES.get(fmt, fmt)
    return fmt if fmt in IMAGE_FORMATS else "thumb"


def sources_for(source: str | None) -> tuple[ProviderKind, ...]:
    """Maps a ?source= value onto the providers to try, in order."""
    source = (source or "auto").strip().lower()
    if source == "auto":
        return SOURCE_PRIORITY
    for kind in ProviderKind:
        if source == kind.value or (kind is ProviderKind.LUDOPEDIA and source == "ludopedia"):
            return (kind,)
    raise ValueError(f"unknown image source: {source}")


def clamp_width(value: str | int | None, max_width: int = MAX_IMAGE_WIDTH) -> int | None:
    """Parses ?w=; anything that is not a positive integer means 'no width variant'."""
    if value is None:
        return None
    try:
        width = int(str(value).strip())
    except ValueError:
        return None
    if width <= 0:
        return None
    return min(width, max_width)


def variant_name(game_id: str, kind: ProviderKind, fmt: str, width: int | None = None) -> str:
    if width:
        return f"{game_id}_{kind.value}_w{width}"
    return f"{game_id}_{kind.value}_{fmt}"


def sidecar_path(path: Path) -> Path:
    return path.with_name(path.name + CONTENT_TYPE_SUFFIX)


def sniff_content_type(path: Path) -> str:
    """Detects the image type from its signature bytes."""
    try:
        with Image.open(path) as img:
            return Image.MIME.get(img.format or "", FALLBACK_CONTENT_TYPE)
    except (UnidentifiedImageError, OSError):
        return FALLBACK_CONTENT_TYPE


def publish_bytes(path: Path, data: bytes):
    """
    Writes data next to path under a unique temp name and renames it into
    place, so readers see either the old file, no file, or the whole new one.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def publish_image(path: Path, data: bytes, content_type: str | None):
    """Publishes the sidecar first; without a content type any stale sidecar is dropped."""
    sidecar = sidecar_path(path)
    if content_type:
        publish_bytes(sidecar, content_type.encode("utf-8"))
    else:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(sidecar)
    publish_bytes(path, data)


def native_width(path: Path) -> int | None:
    try:
        with Image.open(path) as img:
            return img.size[0]
    except (UnidentifiedImageError, OSError):
        return None


def render_width_variant(base_path: Path, width: int) -> tuple[bytes, int]:
    """
    Resizes the base image to `width` (never above its native width) and
    encodes it as JPEG. Returns the encoded bytes and the width actually used.
    """
    with Image.open(base_path) as img:
        src_w, src_h = img.size
        if src_w <= 0 or src_h <= 0:
            raise ValueError(f"empty image: {base_path}")
        width = min(width, src_w)
        height = max(1, int(src_h * width / src_w))
        out = img.convert("RGB")
        if width != src_w:
            out = out.resize((width, height), Image.Resampling.LANCZOS)
        buf = BytesIO()
        out.save(buf, format="JPEG", quality=JPEG_QUALITY)
        return buf.getvalue(), width


class ImagePipeline:
    """
    On-demand image derivatives backed by a flat cache directory.

    State lives on disk only: a variant is either absent or published. Misses
    are answered by the caller with a redirect while `schedule_build` warms
    the cache in a detached task. Concurrent builds of the same variant are
    not coalesced; atomic publication makes the duplicate work harmless.
    """

    def __init__(
        self,
        store: Store,
        bgg: BGGAPIManager,
        ludopedia: LudopediaAPIManager,
        session: aiohttp.ClientSession,
        cache_dir: str | os.PathLike,
        placeholder_url: str = PLACEHOLDER_URL,
        max_width: int = MAX_IMAGE_WIDTH,
        concurrency: int = 4,
        download_timeout: aiohttp.ClientTimeout = API_TIMEOUT,
    ):
        self.store = store
        self.bgg = bgg
        self.ludopedia = ludopedia
        self.session = session
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.placeholder_url = placeholder_url
        self.max_width = max_width
        self.download_timeout = download_timeout
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._tasks: set[asyncio.Task] = set()

    def path_for(self, name: str) -> Path:
        if Path(name).name != name or name.startswith("."):
            raise ValueError(f"invalid cache file name: {name!r}")
        return self.cache_dir / name

    # --- fast path ---

    def find_cached(self, game_id: str, source: str, fmt: str, width: int | None = None) -> Path | None:
        """Returns the first published variant for the request, in source priority order."""
        for kind in sources_for(source):
            path = self.path_for(variant_name(game_id, kind, fmt, width))
            if path.is_file():
                return path
            if width:
                # Requests wider than the source map onto the native-width file
                base = self.path_for(variant_name(game_id, kind, "full"))
                if base.is_file():
                    native = native_width(base)
                    if native and native < width:
                        path = self.path_for(variant_name(game_id, kind, fmt, native))
                        if path.is_file():
                            return path
        return None

    def content_type(self, path: Path) -> str:
        try:
            stored = sidecar_path(path).read_text(encoding="utf-8").strip()
        except OSError:
            stored = ""
        return stored or sniff_content_type(path)

    # --- upstream resolution ---

    async def _cached_details(self, game: Game, kind: ProviderKind) -> dict | None:
        try:
            raw = await self.store.get_payload(kind, game.id)
        except SQLAlchemyError:
            return None
        if raw is None:
            return None
        try:
            return parse_bgg_thing(raw) if kind is ProviderKind.BGG else parse_ludopedia_game(raw)
        except BoardGamesException:
            return None

    async def image_url(self, game: Game, kind: ProviderKind, full: bool) -> str | None:
        """Best upstream image URL for one provider: cached payload first, live lookup second."""
        ref = provider_ref(game, kind)
        if not ref:
            return None

        details = await self._cached_details(game, kind)
        if kind is ProviderKind.BGG:
            if details and pick_image_url(details, full):
                return pick_image_url(details, full)
            return await self.bgg.fetch_image_url(ref, full=full)

        thumb = details.get("thumbnail") if details else None
        if thumb and not full:
            return thumb
        return await self.ludopedia.fetch_image_url(ref) or thumb

    async def resolve_upstream(
        self, game: Game, source: str, fmt: str, width: int | None = None
    ) -> tuple[ProviderKind, str] | None:
        full = bool(width) or fmt == "full"
        for kind in sources_for(source):
            try:
                url = await self.image_url(game, kind, full)
            except (BoardGamesException, TimeoutError) as e:
                logger.info(f"{kind.label} image lookup failed for {game.id}: {e}")
                continue
            if url:
                return kind, url
        return None

    # --- background builds ---

    def schedule_build(self, game_id: str, source: str, fmt: str, width: int | None = None) -> asyncio.Task:
        """Starts a detached build. The caller never awaits it."""
        task = asyncio.create_task(self._run_build(game_id, source, fmt, width))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_build(self, game_id: str, source: str, fmt: str, width: int | None):
        async with self._semaphore:
            try:
                path = await self.build(game_id, source, fmt, width)
            except Exception as e:
                logger.exception(f"Image build for {game_id} ({source}/{fmt}/w={width}) crashed: {e}")
                return
        if path:
            logger.debug(f"Published {path.name}")

    async def build(self, game_id: str, source: str, fmt: str, width: int | None = None) -> Path | None:
        """Downloads and, for width variants, derives the requested image. Returns the published path."""
        try:
            game = await self.store.get_game(game_id)
        except SQLAlchemyError as e:
            logger.warning(f"Inventory lookup failed for image build {game_id}: {e}")
            game = None

        for kind in sources_for(source):
            if width:
                base = self.path_for(variant_name(game_id, kind, "full"))
                if not base.is_file():
                    if game is None or not await self._fetch_variant(game, kind, "full", base):
                        continue
                return await self._derive_width(game_id, kind, base, width)

            if game is None:
                return None
            target = self.path_for(variant_name(game_id, kind, fmt))
            if await self._fetch_variant(game, kind, fmt, target):
                return target
        return None

    async def _fetch_variant(self, game: Game, kind: ProviderKind, fmt: str, target: Path) -> bool:
        try:
            url = await self.image_url(game, kind, full=fmt == "full")
        except (BoardGamesException, TimeoutError) as e:
            logger.info(f"{kind.label} image lookup failed for {game.id}: {e}")
            return False
        if not url:
            return False
        return await self.download_to_file(url, target)

    async def _derive_width(self, game_id: str, kind: ProviderKind, base: Path, width: int) -> Path | None:
        try:
            data, actual = await asyncio.to_thread(render_width_variant, base, width)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning(f"Cannot derive w{width} from {base.name}: {e}")
            return None
        path = self.path_for(variant_name(game_id, kind, "full", actual))
        try:
            await asyncio.to_thread(publish_image, path, data, "image/jpeg")
        except OSError as e:
            logger.warning(f"Cannot publish {path.name}: {e}")
            return None
        return path

    async def download_to_file(self, url: str, path: Path) -> bool:
        try:
            async with self.session.get(url, headers=HEADERS, timeout=self.download_timeout) as resp:
                if resp.status >= 400:
                    logger.info(f"Upstream image {url} returned {resp.status}")
                    return False
                content_type = resp.headers.get("Content-Type")
                data = await resp.read()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.info(f"Upstream image download failed for {url}: {e}")
            return False

        try:
            await asyncio.to_thread(publish_image, path, data, content_type)
        except OSError as e:
            logger.warning(f"Cannot publish {path.name}: {e}")
            return False
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def close(self):
        """Waits for in-flight builds; there is no cancellation of a started build."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
