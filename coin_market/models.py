"""
Coin observation model and its JSON wire format.
"""
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel, ValidationError

from coin_market.errors import DecodeError

# Fixed width, zero padded and always UTC, so stored text sorts chronologically
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Coin(BaseModel):
    """One observation of a coin's attributes, captured in a single ingest cycle"""
    id: int
    full_name: str = ""
    coin: str = ""
    buy_limit: int = 0
    sell_limit: int = 0
    withdrawal_fee: str = ""
    deposit_fees: str = ""
    status: str = ""
    deposit_status: str = ""
    withdrawal_status: str = ""
    icon: str = ""
    timestamp: Optional[str] = None


class CoinListResponse(BaseModel):
    """Upstream API response and query endpoint body"""
    coins: List[Coin] = []


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """
    Render a point in time in the stored timestamp format

    Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """
    Parse stored timestamp text back into an aware UTC datetime

    Raises:
        ValueError: if the text is not in the stored format
    """
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def normalize_bound(since: Union[datetime, str, None]) -> Optional[str]:
    """Convert a lower time bound into stored timestamp text"""
    if since is None:
        return None
    if isinstance(since, datetime):
        return format_timestamp(since)
    return format_timestamp(parse_timestamp(since))


def stamp_coins(coins: List[Coin], timestamp: str) -> List[Coin]:
    """Return copies of the coins, all carrying the same capture timestamp"""
    return [coin.model_copy(update={"timestamp": timestamp}) for coin in coins]


def encode_coin(coin: Coin) -> str:
    """Serialize a coin to one JSON text message"""
    return coin.model_dump_json()


def decode_coin(text: Union[str, bytes]) -> Coin:
    """Parse one JSON text message back into a coin"""
    try:
        return Coin.model_validate_json(text)
    except ValidationError as e:
        raise DecodeError(f"invalid coin message: {e}") from e


def decode_coin_list(body: Union[str, bytes]) -> List[Coin]:
    """
    Decode an upstream response body shaped as {"coins": [...]}

    Raises:
        DecodeError: if the body is not valid JSON of that shape
    """
    try:
        return CoinListResponse.model_validate_json(body).coins
    except ValidationError as e:
        raise DecodeError(f"invalid coin list: {e}") from e
