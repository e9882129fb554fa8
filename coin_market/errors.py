"""
Error types raised across the coin market pipeline.
"""


class CoinMarketError(Exception):
    """Base class for pipeline errors"""


class FetchError(CoinMarketError):
    """The upstream coin list could not be fetched (transport error or non-200)"""


class DecodeError(CoinMarketError):
    """The upstream response body was not a valid coin list"""


class StoreError(CoinMarketError):
    """A write or query against the coin store failed"""
