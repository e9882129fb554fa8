"""
FastAPI application for the coin market pipeline.
Serves snapshot queries over stored coins and triggers broadcasts to the sink.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coin_market.broadcaster import CoinBroadcaster
from coin_market.database import CoinDatabase
from coin_market.errors import StoreError
from coin_market.ingestor import CoinIngestor
from coin_market.models import CoinListResponse
from coin_market.snapshot import SnapshotReader
from config import Settings, get_settings
from utils.logging import get_logger

logger = get_logger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# Dependencies
def get_database(request: Request) -> CoinDatabase:
    """Dependency to get the store"""
    return request.app.state.db


def get_reader(request: Request) -> SnapshotReader:
    """Dependency to get the snapshot reader"""
    return request.app.state.reader


def get_ingestor(request: Request) -> Optional[CoinIngestor]:
    """Dependency to get the ingestor, if one is configured"""
    return request.app.state.ingestor


def get_broadcaster(request: Request) -> Optional[CoinBroadcaster]:
    """Dependency to get the broadcaster, if one is configured"""
    return request.app.state.broadcaster


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[CoinDatabase] = None,
    ingestor: Optional[CoinIngestor] = None,
    broadcaster: Optional[CoinBroadcaster] = None,
    start_ingestor: Optional[bool] = None,
) -> FastAPI:
    """
    Build the API application

    Dependencies not passed in are created from settings. A store created
    here is owned by the app and closed on shutdown.

    Args:
        settings: Configuration, the global settings by default
        db: Coin store
        ingestor: Scheduled ingestor
        broadcaster: Sink broadcaster
        start_ingestor: Start the ingestor on startup, INGEST_ENABLED by default
    """
    settings = settings or get_settings()
    owns_db = db is None
    db = db or CoinDatabase(settings.DATABASE_PATH)

    if broadcaster is None and settings.STREAM_URL:
        broadcaster = CoinBroadcaster(
            settings.STREAM_URL,
            handshake_timeout=settings.HANDSHAKE_TIMEOUT,
            max_workers=settings.BROADCAST_MAX_WORKERS,
        )

    if ingestor is None:
        ingestor = CoinIngestor(
            db,
            settings.COINS_API_URL,
            interval=settings.INGEST_INTERVAL,
            fetch_timeout=settings.FETCH_TIMEOUT,
            broadcaster=broadcaster if settings.BROADCAST_ON_INGEST else None,
        )

    if start_ingestor is None:
        start_ingestor = settings.INGEST_ENABLED

    app = FastAPI(
        title="Coin Market API",
        description="Periodically ingested coin listings with snapshot queries and streaming broadcast",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db = db
    app.state.reader = SnapshotReader(db, window_seconds=settings.SNAPSHOT_WINDOW)
    app.state.ingestor = ingestor
    app.state.broadcaster = broadcaster

    @app.on_event("startup")
    async def startup_event():
        """Start the ingestor when the app starts"""
        logger.info("Starting Coin Market API...")
        if start_ingestor:
            await ingestor.start()
        else:
            logger.info("Scheduled ingest disabled")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop the ingestor and release the store"""
        logger.info("Shutting down Coin Market API...")
        await ingestor.stop()
        if owns_db:
            db.close()

    @app.get("/get-coins", response_model=CoinListResponse)
    async def get_recent_coins(reader: SnapshotReader = Depends(get_reader)):
        """Coins captured within the recent snapshot window, newest first"""
        try:
            coins = await asyncio.to_thread(reader.read_recent)
        except StoreError as e:
            logger.error(f"Error fetching coins from database: {e}")
            return _error_response(500, str(e))

        return CoinListResponse(coins=coins)

    @app.get("/coins", response_model=CoinListResponse)
    async def get_coins(since: Optional[str] = None, reader: SnapshotReader = Depends(get_reader)):
        """Coins captured at or after `since`, or every stored coin"""
        try:
            coins = await asyncio.to_thread(reader.read, since)
        except ValueError as e:
            return _error_response(400, f"invalid since timestamp: {e}")
        except StoreError as e:
            logger.error(f"Error fetching coins from database: {e}")
            return _error_response(500, str(e))

        return CoinListResponse(coins=coins)

    @app.get("/health", response_model=Dict[str, Any])
    async def health_check(store: CoinDatabase = Depends(get_database)):
        """Health check endpoint"""
        try:
            status = await asyncio.to_thread(store.get_status)
        except StoreError as e:
            logger.error(f"Health check failed: {e}")
            return _error_response(503, str(e))

        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "database": status,
        }

    @app.get("/ingest/status", response_model=Dict[str, Any])
    async def ingest_status(coin_ingestor: Optional[CoinIngestor] = Depends(get_ingestor)):
        """Ingestor statistics"""
        if coin_ingestor is None:
            return _error_response(503, "ingestor is not configured")
        return coin_ingestor.get_stats()

    @app.post("/broadcast", response_model=Dict[str, Any])
    async def broadcast_coins(
        since: Optional[str] = None,
        reader: SnapshotReader = Depends(get_reader),
        coin_broadcaster: Optional[CoinBroadcaster] = Depends(get_broadcaster),
    ):
        """Send stored coins, or those at or after `since`, to the streaming sink"""
        if coin_broadcaster is None:
            return _error_response(503, "broadcasting is not configured")

        try:
            coins = await asyncio.to_thread(reader.read, since)
        except ValueError as e:
            return _error_response(400, f"invalid since timestamp: {e}")
        except StoreError as e:
            logger.error(f"Error fetching coins for broadcast: {e}")
            return _error_response(500, str(e))

        report = await asyncio.to_thread(coin_broadcaster.broadcast, coins)
        if report.connection_error is not None:
            return _error_response(502, report.connection_error)

        return report.to_dict()

    return app
