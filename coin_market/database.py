"""
DuckDB database implementation for coin observation storage.
Observations are insert-only and keyed by (id, timestamp).
"""
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import duckdb
from pydantic import ValidationError

from coin_market.errors import StoreError
from coin_market.models import Coin
from utils.logging import get_logger

logger = get_logger(__name__)

COLUMNS = (
    "id", "full_name", "coin", "buy_limit", "sell_limit", "withdrawal_fee",
    "deposit_fees", "status", "deposit_status", "withdrawal_status", "icon", "timestamp",
)

_SELECT_COLUMNS = ", ".join(COLUMNS)


@dataclass
class InsertReport:
    """Per-record outcome of writing one batch of coins"""
    inserted: List[Coin] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class CoinDatabase:
    """DuckDB-based store of timestamped coin observations"""

    def __init__(self, db_path: str = "coins.db"):
        """
        Initialize the coin database with DuckDB

        Args:
            db_path: Path to the DuckDB database file, or ":memory:"

        Raises:
            StoreError: if the database cannot be opened
        """
        self.db_path = db_path
        self.conn = None
        self._lock = threading.RLock()
        self._initialize_database()

    def _initialize_database(self):
        """Initialize database connection and create schema"""
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self.conn = duckdb.connect(self.db_path)
            self._create_schema()
            logger.info(f"Initialized DuckDB database at {self.db_path}")

        except (duckdb.Error, OSError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StoreError(f"cannot open database {self.db_path}: {e}") from e

    def _create_schema(self):
        """Create the coins table"""
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS coins (
                    id INTEGER,
                    full_name TEXT,
                    coin TEXT,
                    buy_limit INTEGER,
                    sell_limit INTEGER,
                    withdrawal_fee TEXT,
                    deposit_fees TEXT,
                    status TEXT,
                    deposit_status TEXT,
                    withdrawal_status TEXT,
                    icon TEXT,
                    timestamp TEXT,
                    PRIMARY KEY (id, timestamp)
                )
            """)

            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_coins_timestamp
                ON coins(timestamp)
            """)

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            raise StoreError("database is closed")
        return self.conn

    def insert_coin(self, coin: Coin):
        """
        Insert a single stamped observation

        Raises:
            StoreError: if the row cannot be written, e.g. a duplicate (id, timestamp)
        """
        if coin.timestamp is None:
            raise StoreError(f"coin {coin.id} has no timestamp")

        with self._lock:
            try:
                self._connection().execute(
                    f"INSERT INTO coins ({_SELECT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [getattr(coin, column) for column in COLUMNS],
                )
            except duckdb.Error as e:
                raise StoreError(f"failed to insert coin {coin.id} at {coin.timestamp}: {e}") from e

    def insert_coins(self, coins: List[Coin]) -> InsertReport:
        """
        Insert one cycle's observations, each row independently

        A failed row is logged and reported; the remaining rows are still written.

        Args:
            coins: Stamped coins to store

        Returns:
            InsertReport listing inserted coins and (id, error) failures
        """
        report = InsertReport()

        for coin in coins:
            try:
                self.insert_coin(coin)
                report.inserted.append(coin)
                logger.debug(f"Inserted coin: {coin.id}, {coin.coin}, {coin.full_name} at {coin.timestamp}")
            except StoreError as e:
                logger.error(f"Error inserting coin {coin.id}: {e}")
                report.failures.append((coin.id, str(e)))

        return report

    def get_coins(self, since: Optional[str] = None) -> List[Coin]:
        """
        Read stored observations

        Args:
            since: Lower bound in stored timestamp format. When given, returns
                rows with timestamp >= since, newest first (ties in insertion
                order). When omitted, returns every row in insertion order.

        Returns:
            List of Coin observations

        Raises:
            StoreError: if the query fails or any stored row is malformed
        """
        if since is None:
            query = f"SELECT {_SELECT_COLUMNS} FROM coins ORDER BY rowid"
            params: List[Any] = []
        else:
            query = (
                f"SELECT {_SELECT_COLUMNS} FROM coins "
                f"WHERE timestamp >= ? ORDER BY timestamp DESC, rowid"
            )
            params = [since]

        with self._lock:
            try:
                rows = self._connection().execute(query, params).fetchall()
            except duckdb.Error as e:
                raise StoreError(f"failed to query coins: {e}") from e

        try:
            return [Coin(**dict(zip(COLUMNS, row))) for row in rows]
        except ValidationError as e:
            raise StoreError(f"failed to scan row: {e}") from e

    def count_coins(self) -> int:
        """Count stored observations"""
        with self._lock:
            try:
                return self._connection().execute("SELECT COUNT(*) FROM coins").fetchone()[0]
            except duckdb.Error as e:
                raise StoreError(f"failed to count coins: {e}") from e

    def get_status(self) -> Dict[str, Any]:
        """
        Get store statistics

        Returns:
            Dict with row count, distinct coins, latest timestamp and file size
        """
        with self._lock:
            try:
                rows, distinct_coins, latest = self._connection().execute("""
                    SELECT COUNT(*), COUNT(DISTINCT id), MAX(timestamp)
                    FROM coins
                """).fetchone()
            except duckdb.Error as e:
                raise StoreError(f"failed to get store status: {e}") from e

        return {
            'rows': rows,
            'coins_tracked': distinct_coins,
            'latest_timestamp': latest,
            'database_size_mb': self._get_db_size_mb(),
        }

    def _get_db_size_mb(self) -> float:
        """Get database file size in MB"""
        db_file = Path(self.db_path)
        if self.db_path == ":memory:" or not db_file.exists():
            return 0.0
        return db_file.stat().st_size / (1024 * 1024)

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.info("Database connection closed")
