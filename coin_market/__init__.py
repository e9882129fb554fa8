"""
Coin Market Pipeline

Ingests the exchange's coin listing on a fixed interval, stores every
timestamped observation in DuckDB, and makes recent observations available
through a REST snapshot endpoint and a WebSocket broadcast to a streaming sink.

Features:
- Scheduled ingest with per-cycle failure isolation
- Insert-only observation store keyed by (id, timestamp)
- Snapshot queries over a recent time window
- Concurrent per-record broadcast with per-record delivery outcomes
"""

__version__ = "1.0.0"

from .broadcaster import BroadcastReport, CoinBroadcaster, SendOutcome
from .database import CoinDatabase, InsertReport
from .ingestor import CoinIngestor, CycleResult
from .models import Coin, CoinListResponse
from .snapshot import SnapshotReader

__all__ = [
    "BroadcastReport",
    "CoinBroadcaster",
    "SendOutcome",
    "CoinDatabase",
    "InsertReport",
    "CoinIngestor",
    "CycleResult",
    "Coin",
    "CoinListResponse",
    "SnapshotReader",
]
