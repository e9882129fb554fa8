"""
Main entry point for the Coin Market Pipeline.
Starts the FastAPI server with the scheduled ingestor, or runs one-shot
ingest and broadcast commands.
"""
import argparse
import asyncio
import sys
from typing import List, Optional

import uvicorn

from coin_market.broadcaster import CoinBroadcaster
from coin_market.database import CoinDatabase
from coin_market.errors import StoreError
from coin_market.ingestor import CoinIngestor
from coin_market.snapshot import SnapshotReader
from config import Settings, get_settings
from utils.logging import configure_logging, get_logger, log_startup_banner

logger = get_logger(__name__)


def serve(settings: Settings) -> int:
    """Run the API server with the scheduled ingestor"""
    server_url = f"http://{settings.HOST}:{settings.PORT}"
    log_startup_banner(logger, "Coin Market Pipeline Started", server_url)

    logger.info(f"Database: {settings.DATABASE_PATH}")
    logger.info(f"Ingest: {settings.COINS_API_URL} every {settings.INGEST_INTERVAL}s")
    logger.info(f"Snapshot: {server_url}/get-coins")
    logger.info(f"Health Check: {server_url}/health")
    logger.info("=" * 60)

    uvicorn.run(
        "coin_market.api:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.RELOAD,
        access_log=True,
    )
    return 0


def ingest_once(settings: Settings) -> int:
    """Run a single ingest cycle and exit"""
    db = CoinDatabase(settings.DATABASE_PATH)
    try:
        ingestor = CoinIngestor(
            db,
            settings.COINS_API_URL,
            interval=settings.INGEST_INTERVAL,
            fetch_timeout=settings.FETCH_TIMEOUT,
        )
        result = asyncio.run(ingestor.ingest_once())
    finally:
        db.close()

    if result.error:
        logger.error(f"Ingest failed: {result.error}")
        return 1

    logger.info(f"Ingested {result.stored}/{result.fetched} coins at {result.timestamp}")
    return 0 if result.ok else 1


def broadcast(settings: Settings, since: Optional[str]) -> int:
    """Send stored coins to the streaming sink and exit"""
    db = CoinDatabase(settings.DATABASE_PATH)
    try:
        coins = SnapshotReader(db).read(since)
    except (StoreError, ValueError) as e:
        logger.error(f"error querying coins: {e}")
        return 1
    finally:
        db.close()

    broadcaster = CoinBroadcaster(
        settings.STREAM_URL,
        handshake_timeout=settings.HANDSHAKE_TIMEOUT,
        max_workers=settings.BROADCAST_MAX_WORKERS,
    )
    report = broadcaster.broadcast(coins)

    if report.connection_error:
        logger.error(f"Broadcast aborted: {report.connection_error}")
        return 1

    for outcome in report.failures:
        logger.error(f"error occurred for coin {outcome.coin_id}: {outcome.error}")

    logger.info(f"Sent {report.sent}/{report.total} coins to WebSocket server")
    return 0 if report.ok else 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Coin Market Pipeline")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("serve", help="Run the API server and scheduled ingest (default)")
    subparsers.add_parser("ingest-once", help="Run one ingest cycle")

    broadcast_parser = subparsers.add_parser("broadcast", help="Send stored coins to the streaming sink")
    broadcast_parser.add_argument("--since", help="Only coins captured at or after this timestamp")

    parser.add_argument("--print-config", action="store_true", help="Print configuration before running")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to start the coin market pipeline"""
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    if args.print_config:
        settings.print_config()

    if not settings.validate():
        return 1

    try:
        if args.command == "ingest-once":
            return ingest_once(settings)
        if args.command == "broadcast":
            return broadcast(settings, args.since)
        return serve(settings)

    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        return 0
    except StoreError as e:
        logger.error(f"Failed to open database: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
