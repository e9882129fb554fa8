"""Tests for CoinBroadcaster and the sink adapter."""

import json
import threading
import time

import pytest
import websocket

from coin_market.broadcaster import CoinBroadcaster
from coin_market.models import decode_coin, encode_coin, format_timestamp
from websocket_proxy.sink_adapter import SinkConnectionError, StreamSinkAdapter

from .conftest import SINK_URL, T0, FakeConnector, make_coin

TS0 = format_timestamp(T0)


def _coins(count):
    return [make_coin(n, TS0) for n in range(1, count + 1)]


class TestBroadcast:
    """Delivery of a batch over one shared connection."""

    def test_one_message_per_record(self, connector):
        coins = _coins(5)
        broadcaster = CoinBroadcaster(SINK_URL, connect=connector)

        report = broadcaster.broadcast(coins)

        assert report.ok
        assert report.total == 5
        assert report.sent == 5
        assert len(report.outcomes) == 5
        assert sorted(decode_coin(m).id for m in connector.messages) == [1, 2, 3, 4, 5]

    def test_messages_are_json_with_timestamp(self, connector):
        CoinBroadcaster(SINK_URL, connect=connector).broadcast(_coins(1))

        message = json.loads(connector.messages[0])
        assert message["id"] == 1
        assert message["timestamp"] == TS0

    def test_batch_shares_one_connection(self, connector):
        CoinBroadcaster(SINK_URL, handshake_timeout=3.5, connect=connector).broadcast(_coins(4))

        assert connector.calls == [(SINK_URL, 3.5)]
        assert connector.sockets[0].closed

    def test_empty_batch_does_not_connect(self, connector):
        report = CoinBroadcaster(SINK_URL, connect=connector).broadcast([])

        assert report.total == 0
        assert report.ok
        assert connector.calls == []

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            CoinBroadcaster(SINK_URL, max_workers=0)


class TestFailures:
    """Connection and per-record failures."""

    @pytest.mark.parametrize("error", [
        ConnectionRefusedError("connection refused"),
        websocket.WebSocketTimeoutException("handshake timed out"),
        websocket.WebSocketBadStatusException("Handshake status %d %s", 403, "Forbidden"),
    ])
    def test_connection_failure_sends_nothing(self, error):
        connector = FakeConnector(error=error)
        broadcaster = CoinBroadcaster(SINK_URL, connect=connector)

        report = broadcaster.broadcast(_coins(3))

        assert report.connection_error is not None
        assert report.outcomes == []
        assert report.sent == 0
        assert not report.ok
        assert connector.messages == []
        assert broadcaster.get_stats()['connection_failures'] == 1

    def test_serialization_failure_isolated(self, connector):
        def serializer(coin):
            if coin.id == 3:
                raise ValueError("cannot encode")
            return encode_coin(coin)

        report = CoinBroadcaster(SINK_URL, connect=connector, serializer=serializer).broadcast(_coins(4))

        assert report.sent == 3
        assert [f.coin_id for f in report.failures] == [3]
        assert "encode failed" in report.failures[0].error
        assert sorted(decode_coin(m).id for m in connector.messages) == [1, 2, 4]

    def test_write_failure_isolated(self):
        connector = FakeConnector(fail_on=lambda message: json.loads(message)["id"] == 2)

        report = CoinBroadcaster(SINK_URL, connect=connector).broadcast(_coins(3))

        assert len(report.outcomes) == 3
        assert report.sent == 2
        assert [f.coin_id for f in report.failures] == [2]
        assert "send failed" in report.failures[0].error

    def test_report_dict(self, connector):
        def serializer(coin):
            if coin.id == 1:
                raise ValueError("bad")
            return encode_coin(coin)

        report = CoinBroadcaster(SINK_URL, connect=connector, serializer=serializer).broadcast(_coins(2))

        data = report.to_dict()
        assert data['total'] == 2
        assert data['sent'] == 1
        assert data['failed'] == 1
        assert data['failures'][0]['id'] == 1
        assert data['connection_error'] is None


class TestConcurrency:
    """Bounded fan-out and serialized writes."""

    def test_workers_bounded(self, connector):
        active = 0
        peak = 0
        guard = threading.Lock()

        def slow_serializer(coin):
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with guard:
                active -= 1
            return encode_coin(coin)

        broadcaster = CoinBroadcaster(SINK_URL, max_workers=3, connect=connector,
                                      serializer=slow_serializer)
        report = broadcaster.broadcast(_coins(12))

        assert report.sent == 12
        assert 1 <= peak <= 3

    def test_writes_never_overlap(self, connector):
        CoinBroadcaster(SINK_URL, max_workers=8, connect=connector).broadcast(_coins(40))

        assert len(connector.messages) == 40
        assert connector.sockets[0].max_concurrent_sends == 1

    def test_stats_accumulate(self, connector):
        broadcaster = CoinBroadcaster(SINK_URL, connect=connector)
        broadcaster.broadcast(_coins(2))
        broadcaster.broadcast(_coins(3))

        stats = broadcaster.get_stats()
        assert stats['batches'] == 2
        assert stats['messages_sent'] == 5
        assert stats['send_failures'] == 0

    def test_fire_and_forget(self, connector):
        thread = CoinBroadcaster(SINK_URL, connect=connector).broadcast_and_forget(_coins(3))
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(connector.messages) == 3


class TestStreamSinkAdapter:
    """The shared connection wrapper."""

    def test_send_requires_connection(self, connector):
        sink = StreamSinkAdapter(SINK_URL, connect=connector)

        with pytest.raises(SinkConnectionError):
            sink.send_text("{}")

    def test_context_manager_connects_and_closes(self, connector):
        with StreamSinkAdapter(SINK_URL, connect=connector) as sink:
            assert sink.connected
            sink.send_text("hello")

        assert not sink.connected
        assert connector.sockets[0].messages == ["hello"]
        assert connector.sockets[0].closed

    def test_connect_error_wrapped(self):
        sink = StreamSinkAdapter(SINK_URL, connect=FakeConnector(error=OSError("unreachable")))

        with pytest.raises(SinkConnectionError, match="cannot connect"):
            sink.connect()
        assert not sink.connected
