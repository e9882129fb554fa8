"""Shared fixtures for the coin market tests."""

import threading
from datetime import datetime, timezone

import pytest

from coin_market.database import CoinDatabase
from coin_market.models import Coin

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

COINS_API_URL = "https://api.example.test/api/v1/get-coins"
SINK_URL = "wss://sink.example.test/coin_market_history/"


def coin_payload(coin_id: int, symbol: str = "BTC", name: str = "Bitcoin") -> dict:
    """One upstream coin entry, without timestamp."""
    return {
        "id": coin_id,
        "full_name": name,
        "coin": symbol,
        "buy_limit": 100,
        "sell_limit": 0,
        "withdrawal_fee": "0.0005",
        "deposit_fees": "0",
        "status": "active",
        "deposit_status": "enabled",
        "withdrawal_status": "enabled",
        "icon": f"https://cdn.example.test/{symbol.lower()}.png",
    }


def make_coin(coin_id: int, timestamp: str, symbol: str = "BTC") -> Coin:
    return Coin(**coin_payload(coin_id, symbol=symbol), timestamp=timestamp)


class FakeWebSocket:
    """Records text messages like a websocket-client connection."""

    def __init__(self, fail_on=None):
        self.messages = []
        self.closed = False
        self._fail_on = fail_on
        self._active = 0
        self.max_concurrent_sends = 0
        self._guard = threading.Lock()

    def send(self, message):
        with self._guard:
            self._active += 1
            self.max_concurrent_sends = max(self.max_concurrent_sends, self._active)
        try:
            if self._fail_on is not None and self._fail_on(message):
                raise ConnectionResetError("connection reset by peer")
            self.messages.append(message)
        finally:
            with self._guard:
                self._active -= 1

    def close(self):
        self.closed = True


class FakeConnector:
    """Stands in for websocket.create_connection."""

    def __init__(self, error=None, fail_on=None):
        self.error = error
        self.fail_on = fail_on
        self.calls = []
        self.sockets = []

    def __call__(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        ws = FakeWebSocket(fail_on=self.fail_on)
        self.sockets.append(ws)
        return ws

    @property
    def messages(self):
        return [message for ws in self.sockets for message in ws.messages]


@pytest.fixture
def db():
    """In-memory coin store."""
    database = CoinDatabase(":memory:")
    yield database
    database.close()


@pytest.fixture
def connector():
    return FakeConnector()
