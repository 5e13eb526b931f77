import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from .constants import FILE_TTL_SECONDS, ProviderKind
from .enrichment import EnrichmentFetcher, provider_ref
from .store import Store
from .utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    refreshed: int = 0
    failed: int = 0
    removed: int = 0


class Janitor:
    """
    Periodic maintenance: push-refreshes expired provider payloads for every
    game and evicts image files older than the file TTL.

    Files are judged one by one by their own mtime, so an image and its .ct
    sidecar can be evicted on different ticks.
    """

    def __init__(
        self,
        store: Store,
        fetcher: EnrichmentFetcher,
        image_dir: str | os.PathLike,
        file_ttl: float = FILE_TTL_SECONDS,
        interval: float | None = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.image_dir = Path(image_dir)
        self.file_ttl = file_ttl
        self.interval = interval if interval is not None else file_ttl
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def tick(self, now: float | None = None) -> SweepReport:
        if now is None:
            now = utcnow()
        report = SweepReport()
        await self.refresh_expired(now, report)
        self.sweep_files(now, report)
        logger.info(
            f"Janitor tick: refreshed={report.refreshed} failed={report.failed} removed={report.removed}"
        )
        return report

    async def refresh_expired(self, now: float, report: SweepReport):
        try:
            games = await self.store.list_games()
        except SQLAlchemyError as e:
            logger.error(f"Janitor could not list games: {e}")
            return

        for game in games:
            for kind in ProviderKind:
                if not provider_ref(game, kind):
                    continue
                try:
                    expired = await self.store.is_expired(kind, game.id, now)
                except SQLAlchemyError as e:
                    logger.warning(f"Expiry check failed for {kind.value}/{game.id}: {e}")
                    report.failed += 1
                    continue
                if not expired:
                    continue
                if await self.fetcher.refresh(game, kind, now):
                    report.refreshed += 1
                else:
                    report.failed += 1

    def sweep_files(self, now: float, report: SweepReport):
        if not self.image_dir.is_dir():
            return
        for root, _dirs, files in os.walk(self.image_dir):
            for name in files:
                path = os.path.join(root, name)
                try:
                    if now - os.stat(path).st_mtime > self.file_ttl:
                        os.remove(path)
                        report.removed += 1
                except OSError as e:
                    logger.debug(f"Skipping {path}: {e}")

    async def _run(self):
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except TimeoutError:
                pass
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Janitor tick failed: {e}")

    def start(self):
        if self.interval <= 0:
            logger.info("Janitor disabled (non-positive interval)")
            return
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self._run())
            logger.info(f"Janitor started (every {self.interval:.0f}s)")

    async def stop(self):
        self._stop.set()
        if self._task:
            await self._task
            self._task = None
