"""
Concurrent fan-out of coin observations to a streaming sink.

Every batch shares one WebSocket connection. Each record is serialized and
sent by its own unit of work on a bounded thread pool, and every unit reports
its outcome on a completion channel that the caller drains before returning.
"""
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import websocket

from coin_market.models import Coin, encode_coin
from utils.logging import get_logger
from websocket_proxy.sink_adapter import SinkConnectionError, StreamSinkAdapter

logger = get_logger(__name__)


@dataclass
class SendOutcome:
    """Delivery result of a single record"""
    coin_id: int
    ok: bool
    error: Optional[str] = None


@dataclass
class BroadcastReport:
    """Aggregated delivery results of one batch"""
    total: int = 0
    outcomes: List[SendOutcome] = field(default_factory=list)
    connection_error: Optional[str] = None

    @property
    def sent(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failures(self) -> List[SendOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def ok(self) -> bool:
        return self.connection_error is None and not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'sent': self.sent,
            'failed': len(self.failures),
            'connection_error': self.connection_error,
            'failures': [
                {'id': outcome.coin_id, 'error': outcome.error}
                for outcome in self.failures
            ],
        }


class CoinBroadcaster:
    """Sends each coin of a batch as one JSON text message to the sink"""

    def __init__(
        self,
        url: str,
        handshake_timeout: float = 10.0,
        max_workers: int = 8,
        connect: Callable[..., Any] = websocket.create_connection,
        serializer: Callable[[Coin], str] = encode_coin,
    ):
        """
        Args:
            url: Sink WebSocket address
            handshake_timeout: Seconds allowed for the connection handshake
            max_workers: Upper bound on concurrent sends per batch
            connect: Connection factory handed to the sink adapter
            serializer: Coin to text encoder
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.url = url
        self.handshake_timeout = handshake_timeout
        self.max_workers = max_workers
        self._connect = connect
        self._serializer = serializer
        self._lock = threading.Lock()

        self.stats = {
            'batches': 0,
            'messages_sent': 0,
            'send_failures': 0,
            'connection_failures': 0,
        }

    def broadcast(self, coins: Iterable[Coin]) -> BroadcastReport:
        """
        Deliver a batch and wait for every record's outcome

        Args:
            coins: Observations to send, one message each

        Returns:
            BroadcastReport with one outcome per record, or a single
            connection error when the sink could not be reached
        """
        batch = list(coins)
        report = BroadcastReport(total=len(batch))
        if not batch:
            return report

        sink = StreamSinkAdapter(self.url, self.handshake_timeout, connect=self._connect)
        try:
            sink.connect()
        except SinkConnectionError as e:
            report.connection_error = str(e)
            self._record(report)
            return report

        workers = min(len(batch), self.max_workers)
        completions: "queue.Queue[SendOutcome]" = queue.Queue(maxsize=workers)

        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="coin-broadcast") as pool:
                for coin in batch:
                    pool.submit(self._send_one, sink, coin, completions)

                for _ in batch:
                    report.outcomes.append(completions.get())
        finally:
            sink.disconnect()

        self._record(report)
        logger.info(f"Broadcast {report.sent}/{report.total} coins to {self.url}")
        return report

    def broadcast_and_forget(self, coins: Iterable[Coin]) -> threading.Thread:
        """
        Deliver a batch in the background; failures are only logged

        Returns:
            The background thread, for callers that want to join it
        """
        batch = list(coins)
        thread = threading.Thread(
            target=self.broadcast, args=(batch,), name="coin-broadcast-forget", daemon=True
        )
        thread.start()
        return thread

    def _send_one(self, sink: StreamSinkAdapter, coin: Coin,
                  completions: "queue.Queue[SendOutcome]") -> None:
        """Serialize and send one coin, then report the outcome"""
        try:
            message = self._serializer(coin)
        except Exception as e:
            logger.error(f"error marshaling coin {coin.id}: {e}")
            completions.put(SendOutcome(coin.id, False, f"encode failed: {e}"))
            return

        try:
            sink.send_text(message)
        except Exception as e:
            logger.error(f"error writing coin {coin.id} to WebSocket: {e}")
            completions.put(SendOutcome(coin.id, False, f"send failed: {e}"))
            return

        logger.debug(f"sent coin {coin.full_name} ({coin.coin})")
        completions.put(SendOutcome(coin.id, True))

    def _record(self, report: BroadcastReport) -> None:
        with self._lock:
            self.stats['batches'] += 1
            self.stats['messages_sent'] += report.sent
            self.stats['send_failures'] += len(report.failures)
            if report.connection_error is not None:
                self.stats['connection_failures'] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get broadcast statistics"""
        with self._lock:
            stats = self.stats.copy()
        stats['url'] = self.url
        stats['max_workers'] = self.max_workers
        return stats
