import asyncio
import logging
import logging.handlers
import signal
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import AppConfig
from .database import Database
from .exceptions import FetchError, StoreError
from .ingest import IngestResult, PostIngestor
from .rss import FeedFetcher
from .sanitize import sanitize_text

logger = logging.getLogger(__name__)

# Suppress noisy library logs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

SCRAPE_JOB_ID = "scrape_feeds"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_BACKUP_DAYS = 30


def setup_logging(log_dir: Optional[Path] = None, level: int = logging.INFO) -> None:
    """Log to stdout, and to log_dir/gator.log rotated at midnight when given"""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.TimedRotatingFileHandler(
            log_dir / "gator.log",
            when="midnight",
            backupCount=LOG_BACKUP_DAYS,
            encoding="utf-8"
        ))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers[:] = handlers


class AggregationScheduler:
    """Fetch one feed per tick, always the one fetched longest ago

    Every feed is visited once per N ticks for N feeds. Cycles never
    overlap: each cycle schedules the next one to start interval after its
    own start, or right away when it ran longer than interval.
    """

    def __init__(
        self,
        db: Database,
        fetcher: FeedFetcher,
        ingestor: Optional[PostIngestor] = None
    ):
        self.db = db
        self.fetcher = fetcher
        self.ingestor = ingestor or PostIngestor(db)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.interval = timedelta(0)
        self._current_cycle: Optional[asyncio.Task] = None

    async def scrape_once(self) -> Optional[IngestResult]:
        """Run one cycle, returns None when nothing was ingested

        Fetch and store failures are logged and end the cycle early.
        """
        try:
            feed = self.db.get_next_feed_to_fetch()
            if feed is None:
                logger.info("💤 No feeds to fetch")
                return None
            # stamp the attempt first so a failing feed does not hold the queue
            self.db.mark_feed_fetched(feed.id)
        except StoreError as e:
            logger.error(f"❌ Cannot select next feed: {e}")
            return None

        logger.info(f"📡 [{feed.name}] fetching {feed.url}")
        try:
            document = await self.fetcher.fetch(feed.url)
        except FetchError as e:
            logger.error(f"❌ [{feed.name}] fetch failed: {e}")
            return None

        channel = document.channel
        logger.debug(f"[{feed.name}] channel: {sanitize_text(channel.title)}")

        result = self.ingestor.ingest(feed.id, channel.items)
        logger.info(
            f"✅ [{feed.name}] {result.total} items: {result.inserted} new, "
            f"{result.duplicates} already stored, {result.skipped} skipped"
        )
        return result

    async def _tick(self) -> None:
        """Scheduler job body, queues the next cycle once this one is done"""
        self._current_cycle = asyncio.current_task()
        started = time.monotonic()
        try:
            await self.scrape_once()
        except asyncio.CancelledError:
            logger.info("🛑 Cycle cancelled")
            return
        except Exception as e:
            logger.exception(f"❌ Cycle failed: {e}")
        finally:
            self._current_cycle = None
        self._schedule_next(time.monotonic() - started)

    def _schedule_next(self, elapsed: float) -> None:
        """Start the next cycle interval after the last start, or now if overdue"""
        if self.scheduler is None or not self.scheduler.running:
            return
        delay = max(0.0, self.interval.total_seconds() - elapsed)
        self.scheduler.add_job(
            self._tick,
            "date",
            run_date=datetime.now() + timedelta(seconds=delay),
            id=SCRAPE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=None
        )

    async def run(self, interval: timedelta, stop: asyncio.Event) -> None:
        """Scrape every interval until stop is set

        The first cycle starts immediately and the effective period is
        max(interval, cycle duration). Setting stop cancels the cycle in
        flight, if any, and returns once it has unwound.
        """
        self.interval = interval
        self.scheduler = AsyncIOScheduler()
        self.scheduler.start()
        self._schedule_next(interval.total_seconds())
        logger.info(f"⏰ Collecting feeds every {interval}")

        try:
            await stop.wait()
        finally:
            self.scheduler.shutdown(wait=False)
            cycle = self._current_cycle
            if cycle is not None and not cycle.done():
                cycle.cancel()
                await asyncio.gather(cycle, return_exceptions=True)
            logger.info("🛑 Aggregator stopped")


async def aggregate(
    db: Database,
    config: AppConfig,
    interval: timedelta,
    stop: Optional[asyncio.Event] = None
) -> None:
    """Run the aggregator until SIGINT/SIGTERM or stop is set"""
    if stop is None:
        stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # no signal handlers outside the main thread / on Windows
            pass

    async with FeedFetcher(timeout=config.fetch_timeout, user_agent=config.user_agent) as fetcher:
        await AggregationScheduler(db, fetcher).run(interval, stop)
