"""Tests for the coin model and its wire format."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from coin_market.errors import DecodeError
from coin_market.models import (
    Coin,
    decode_coin,
    decode_coin_list,
    encode_coin,
    format_timestamp,
    normalize_bound,
    parse_timestamp,
    stamp_coins,
)

from .conftest import T0, coin_payload, make_coin


class TestWireFormat:
    """Encoding and decoding of coin messages."""

    def test_encode_decode_preserves_every_field(self):
        coin = make_coin(7, format_timestamp(T0), symbol="ETH")
        assert decode_coin(encode_coin(coin)) == coin

    def test_encoded_message_uses_upstream_field_names(self):
        coin = make_coin(1, format_timestamp(T0))
        data = json.loads(encode_coin(coin))

        assert set(data) == {
            "id", "full_name", "coin", "buy_limit", "sell_limit", "withdrawal_fee",
            "deposit_fees", "status", "deposit_status", "withdrawal_status", "icon", "timestamp",
        }
        assert data["timestamp"] == "2024-05-01T12:00:00.000000Z"

    def test_fees_stay_opaque_strings(self):
        coin = Coin(id=1, withdrawal_fee="0.00050000 BTC", deposit_fees="free")
        assert decode_coin(encode_coin(coin)).withdrawal_fee == "0.00050000 BTC"

    def test_decode_invalid_message(self):
        with pytest.raises(DecodeError):
            decode_coin("{not json")


class TestDecodeCoinList:
    """Decoding the upstream {"coins": [...]} body."""

    def test_decodes_all_entries_without_timestamp(self):
        body = json.dumps({"coins": [coin_payload(1), coin_payload(2, "ETH", "Ether")]})

        coins = decode_coin_list(body)

        assert [c.id for c in coins] == [1, 2]
        assert all(c.timestamp is None for c in coins)

    def test_missing_fields_decode_to_zero_values(self):
        coins = decode_coin_list(b'{"coins": [{"id": 5}]}')

        assert coins[0].full_name == ""
        assert coins[0].buy_limit == 0

    def test_missing_coins_key_is_empty(self):
        assert decode_coin_list("{}") == []

    def test_malformed_body_raises(self):
        with pytest.raises(DecodeError):
            decode_coin_list("<html>Bad Gateway</html>")

    def test_entry_without_id_raises(self):
        with pytest.raises(DecodeError):
            decode_coin_list('{"coins": [{"full_name": "Bitcoin"}]}')


class TestTimestamps:
    """Stored timestamp representation."""

    def test_format_is_fixed_width_utc(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        moment = datetime(2024, 5, 1, 17, 30, 0, 42, tzinfo=ist)

        assert format_timestamp(moment) == "2024-05-01T12:00:00.000042Z"

    def test_naive_datetime_is_utc(self):
        assert format_timestamp(datetime(2024, 5, 1, 12, 0, 0)) == format_timestamp(T0)

    def test_text_order_matches_time_order(self):
        moments = [T0 + timedelta(microseconds=n * 333_333) for n in range(40)]
        texts = [format_timestamp(m) for m in moments]

        assert sorted(texts) == texts

    def test_parse_round_trip(self):
        assert parse_timestamp(format_timestamp(T0)) == T0

    def test_parse_rejects_other_formats(self):
        with pytest.raises(ValueError):
            parse_timestamp("1714564800")

    def test_normalize_bound(self):
        assert normalize_bound(None) is None
        assert normalize_bound(T0) == "2024-05-01T12:00:00.000000Z"
        assert normalize_bound("2024-05-01T12:00:00.000000Z") == "2024-05-01T12:00:00.000000Z"


def test_stamp_coins_shares_one_timestamp():
    coins = decode_coin_list(json.dumps({"coins": [coin_payload(1), coin_payload(2)]}))
    timestamp = format_timestamp(T0)

    stamped = stamp_coins(coins, timestamp)

    assert {c.timestamp for c in stamped} == {timestamp}
    assert all(c.timestamp is None for c in coins)
