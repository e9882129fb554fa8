"""Snapshot reads over recently stored coin observations."""
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

from coin_market.database import CoinDatabase
from coin_market.models import Coin, format_timestamp, normalize_bound, utc_now


class SnapshotReader:
    """Reads the observations captured within a recent time window"""

    def __init__(self, db: CoinDatabase, window_seconds: float = 1.0,
                 clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock

    def read(self, since: Union[datetime, str, None] = None) -> List[Coin]:
        """
        Return observations at or after `since`, newest first

        Without a bound every stored observation is returned in storage order.

        Raises:
            ValueError: if `since` is text that is not a valid timestamp
            StoreError: if the store query fails
        """
        return self.db.get_coins(normalize_bound(since))

    def read_recent(self) -> List[Coin]:
        """Return observations captured within the last window"""
        return self.db.get_coins(self.boundary())

    def boundary(self, now: Optional[datetime] = None) -> str:
        """Lower bound of the recent window"""
        return format_timestamp((now or self._clock()) - self.window)
