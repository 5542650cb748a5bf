"""
Market Data

Candles from the broker API, turned into the indicator payload every stage reads.
"""

from swingsetups.services.market_data.service import (
    MarketDataService,
    build_market_payload,
    get_market_data_service,
)
from swingsetups.services.market_data.upstox import CandleProvider, UpstoxCandleProvider

__all__ = [
    "CandleProvider",
    "MarketDataService",
    "UpstoxCandleProvider",
    "build_market_payload",
    "get_market_data_service",
]
