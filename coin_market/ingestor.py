"""
Scheduled ingestion of the upstream coin list.
Fetches, decodes, stamps and stores one batch of observations per tick.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from coin_market.broadcaster import BroadcastReport, CoinBroadcaster
from coin_market.database import CoinDatabase
from coin_market.errors import DecodeError, FetchError
from coin_market.models import Coin, decode_coin_list, format_timestamp, stamp_coins, utc_now
from utils.logging import get_logger

logger = get_logger(__name__)

# Ingest broadcasts allowed in flight at once; later cycles skip broadcasting
MAX_PENDING_BROADCASTS = 4


@dataclass
class CycleResult:
    """Outcome of one fetch, decode, stamp and store cycle"""
    timestamp: Optional[str] = None
    fetched: int = 0
    stored: int = 0
    failed_ids: List[int] = field(default_factory=list)
    error: Optional[str] = None
    # resolves to the BroadcastReport; the cycle does not wait for it
    broadcast_task: Optional["asyncio.Future[BroadcastReport]"] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed_ids


class CoinIngestor:
    """Polls the coin list API on a fixed interval and stores every observation"""

    def __init__(
        self,
        db: CoinDatabase,
        api_url: str,
        interval: float = 1.0,
        fetch_timeout: float = 0.9,
        broadcaster: Optional[CoinBroadcaster] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the ingestor

        Args:
            db: Store that receives each cycle's observations
            api_url: Upstream endpoint returning {"coins": [...]}
            interval: Seconds between ticks
            fetch_timeout: Seconds allowed per fetch, strictly below interval
            broadcaster: When set, each cycle's stored coins are broadcast
            client: HTTP client to use; one is created on start() otherwise
            clock: Source of the cycle's capture time
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if fetch_timeout >= interval:
            raise ValueError(
                f"fetch timeout ({fetch_timeout}s) must be less than the interval ({interval}s)"
            )

        self.db = db
        self.api_url = api_url
        self.interval = interval
        self.fetch_timeout = fetch_timeout
        self.broadcaster = broadcaster
        self._clock = clock
        self._client = client
        self._owns_client = client is None

        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._broadcast_tasks: Set[asyncio.Future] = set()
        self._broadcast_executor: Optional[ThreadPoolExecutor] = None

        self.stats = {
            'cycles': 0,
            'failed_cycles': 0,
            'skipped_cycles': 0,
            'coins_stored': 0,
            'store_failures': 0,
            'broadcast_errors': 0,
            'broadcasts_skipped': 0,
            'start_time': None,
            'last_cycle_time': None,
            'last_error': None,
        }

    async def start(self):
        """Start the ingest loop"""
        if self.running:
            return

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.fetch_timeout)

        self.running = True
        self.stats['start_time'] = datetime.now()
        self._task = asyncio.create_task(self._poll_loop(), name="coin-ingestor")
        logger.info(f"Coin ingestor started: {self.api_url} every {self.interval}s")

    async def stop(self):
        """Stop the ingest loop; an in-flight cycle is cancelled, not drained"""
        self.running = False

        for task in (self._task, self._cycle_task, *self._broadcast_tasks):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._task = None
        self._cycle_task = None
        self._broadcast_tasks.clear()

        if self._broadcast_executor is not None:
            self._broadcast_executor.shutdown(wait=False, cancel_futures=True)
            self._broadcast_executor = None

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

        logger.info("Coin ingestor stopped")

    async def _poll_loop(self):
        """Tick on a fixed cadence; the first cycle runs one interval after start"""
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while self.running:
            next_tick += self.interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            self._on_tick()

    def _on_tick(self):
        """Launch a cycle unless the previous one is still running"""
        if self._cycle_task is not None and not self._cycle_task.done():
            self.stats['skipped_cycles'] += 1
            logger.warning("Previous ingest cycle still running, skipping tick")
            return

        self._cycle_task = asyncio.create_task(self.run_cycle(), name="coin-ingest-cycle")
        self._cycle_task.add_done_callback(self._on_cycle_done)

    def _on_cycle_done(self, task: asyncio.Task):
        """Count and log a cycle that died on an unexpected error"""
        if task.cancelled():
            return

        exc = task.exception()
        if exc is None:
            return

        self.stats['failed_cycles'] += 1
        self.stats['last_error'] = f"unexpected error: {exc!r}"
        logger.error(f"Ingest cycle crashed: {exc!r}", exc_info=exc)

    async def fetch_coins(self) -> List[Coin]:
        """
        Fetch and decode the current coin list

        Raises:
            FetchError: on transport errors, timeouts, bad URLs and non-200 responses
            DecodeError: if the body is not a valid coin list
        """
        if self._client is None:
            raise FetchError("ingestor HTTP client is not started")

        logger.debug(f"Fetching data from {self.api_url}")
        try:
            response = await self._client.get(self.api_url, timeout=self.fetch_timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(f"error fetching data: {e!r}") from e

        if response.status_code != 200:
            raise FetchError(f"non-200 status code received: {response.status_code}")

        return decode_coin_list(response.content)

    async def run_cycle(self) -> CycleResult:
        """
        Run one fetch, decode, stamp and store cycle

        Fetch and decode failures abort only this cycle and are reported in
        the result. Individual store failures are listed in failed_ids.

        Returns:
            CycleResult describing the cycle
        """
        result = CycleResult()
        self.stats['cycles'] += 1

        try:
            coins = await self.fetch_coins()
        except (FetchError, DecodeError) as e:
            self.stats['failed_cycles'] += 1
            self.stats['last_error'] = str(e)
            logger.error(f"Ingest cycle aborted: {e}")
            result.error = str(e)
            return result

        result.timestamp = format_timestamp(self._clock())
        stamped = stamp_coins(coins, result.timestamp)
        result.fetched = len(stamped)

        report = await asyncio.to_thread(self.db.insert_coins, stamped)
        result.stored = len(report.inserted)
        result.failed_ids = [coin_id for coin_id, _ in report.failures]

        self.stats['coins_stored'] += result.stored
        self.stats['store_failures'] += len(result.failed_ids)
        self.stats['last_cycle_time'] = result.timestamp
        logger.info(f"Stored {result.stored}/{result.fetched} coins at {result.timestamp}")

        if self.broadcaster is not None and report.inserted:
            result.broadcast_task = self._start_broadcast(report.inserted)

        return result

    def _start_broadcast(self, coins: List[Coin]) -> Optional["asyncio.Future[BroadcastReport]"]:
        """Broadcast a cycle's stored coins in the background, unless the backlog is full"""
        if len(self._broadcast_tasks) >= MAX_PENDING_BROADCASTS:
            self.stats['broadcasts_skipped'] += 1
            logger.warning(f"{len(self._broadcast_tasks)} broadcasts still pending, not broadcasting this cycle")
            return None

        if self._broadcast_executor is None:
            self._broadcast_executor = ThreadPoolExecutor(
                max_workers=MAX_PENDING_BROADCASTS, thread_name_prefix="coin-ingest-broadcast"
            )

        loop = asyncio.get_running_loop()
        task = loop.run_in_executor(self._broadcast_executor, self.broadcaster.broadcast, coins)
        self._broadcast_tasks.add(task)
        task.add_done_callback(self._on_broadcast_done)
        return task

    def _on_broadcast_done(self, task: "asyncio.Future[BroadcastReport]"):
        self._broadcast_tasks.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            self.stats['broadcast_errors'] += 1
            logger.error(f"Ingest broadcast crashed: {exc!r}", exc_info=exc)
            return

        report = task.result()
        if not report.ok:
            self.stats['broadcast_errors'] += 1
            reason = report.connection_error or f"{len(report.failures)} sends failed"
            logger.warning(f"Ingest broadcast incomplete: {reason}")

    async def ingest_once(self) -> CycleResult:
        """Run a single cycle outside the scheduler, including its broadcast"""
        if self._client is not None:
            result = await self.run_cycle()
        else:
            async with httpx.AsyncClient(timeout=self.fetch_timeout) as client:
                self._client = client
                try:
                    result = await self.run_cycle()
                finally:
                    self._client = None

        if result.broadcast_task is not None:
            await result.broadcast_task
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get ingest statistics"""
        stats = self.stats.copy()
        stats['running'] = self.running
        stats['api_url'] = self.api_url
        stats['interval'] = self.interval
        stats['cycle_in_flight'] = self._cycle_task is not None and not self._cycle_task.done()

        if stats['start_time']:
            stats['uptime_seconds'] = (datetime.now() - stats['start_time']).total_seconds()
            stats['start_time'] = stats['start_time'].isoformat()

        return stats
