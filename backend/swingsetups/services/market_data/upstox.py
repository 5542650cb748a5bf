"""
Upstox Candle Adapter

Historical + intraday OHLCV from the Upstox v3 candle API.

Upstox API Documentation: https://upstox.com/developer/api-documentation/
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import quote

import aiohttp

from swingsetups.core.config import settings
from swingsetups.core.market_hours import IST, get_ist_now
from swingsetups.schemas.market import OHLCV, Timeframe
from swingsetups.services.base import ExternalServiceError, InsufficientDataError

logger = logging.getLogger(__name__)


# Upstox v3 (unit, interval) per timeframe
INTERVAL_MAP = {
    Timeframe.M1: ("minutes", "1"),
    Timeframe.M3: ("minutes", "3"),
    Timeframe.M15: ("minutes", "15"),
    Timeframe.H1: ("hours", "1"),
    Timeframe.D1: ("days", "1"),
}

# Calendar lookback per timeframe (enough bars for SMA200 on daily)
LOOKBACK_DAYS = {
    Timeframe.M1: 5,
    Timeframe.M3: 10,
    Timeframe.M15: 30,
    Timeframe.H1: 90,
    Timeframe.D1: 400,
}


class CandleProvider(ABC):
    """Source of normalized candles."""

    @abstractmethod
    async def get_candles(
        self,
        instrument_key: str,
        timeframe: Timeframe,
        skip_intraday: bool = False,
    ) -> list[OHLCV]:
        """
        Candles oldest first.

        Raises:
            InsufficientDataError: no candles for the instrument/timeframe
            ExternalServiceError: upstream failure or timeout
        """
        pass

    async def close(self) -> None:
        pass


class UpstoxCandleProvider(CandleProvider):
    """Upstox REST candles over a shared aiohttp session."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._access_token = access_token or settings.upstox_access_token
        self._base_url = (base_url or settings.upstox_base_url).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or settings.market_data_timeout_seconds
        )
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure we have an active HTTP session."""
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self._access_token:
                headers["Authorization"] = f"Bearer {self._access_token}"
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _fetch(self, url: str, instrument_key: str, timeframe: Timeframe) -> list:
        session = await self._ensure_session()
        try:
            async with session.get(url) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.error(f"Upstox candles {resp.status} for {instrument_key} {timeframe.value}: {body[:200]}")
                    raise ExternalServiceError(
                        "market_data",
                        f"Upstox returned {resp.status}",
                        stage="market_data",
                        key=instrument_key,
                    )
                result = await resp.json()
        except aiohttp.ClientError as e:
            raise ExternalServiceError(
                "market_data", f"Upstox request failed: {e}", stage="market_data", key=instrument_key
            ) from e
        except TimeoutError as e:
            raise ExternalServiceError(
                "market_data", "Upstox request timed out", stage="market_data", key=instrument_key
            ) from e

        if result.get("status") != "success":
            return []
        return result.get("data", {}).get("candles", [])

    @staticmethod
    def _parse(candles: list) -> list[OHLCV]:
        # Upstox candle format: [timestamp, open, high, low, close, volume, oi]
        parsed = []
        for candle in candles:
            ts = datetime.fromisoformat(candle[0].replace("Z", "+00:00"))
            parsed.append(
                OHLCV(
                    timestamp=ts.astimezone(IST),
                    open=float(candle[1]),
                    high=float(candle[2]),
                    low=float(candle[3]),
                    close=float(candle[4]),
                    volume=int(candle[5]),
                )
            )
        return parsed

    async def get_candles(
        self,
        instrument_key: str,
        timeframe: Timeframe,
        skip_intraday: bool = False,
    ) -> list[OHLCV]:
        unit, interval = INTERVAL_MAP[timeframe]
        encoded = quote(instrument_key, safe="")
        to_date = get_ist_now()
        from_date = to_date - timedelta(days=LOOKBACK_DAYS[timeframe])

        url = (
            f"{self._base_url}/historical-candle/{encoded}/{unit}/{interval}/"
            f"{to_date.strftime('%Y-%m-%d')}/{from_date.strftime('%Y-%m-%d')}"
        )
        raw = await self._fetch(url, instrument_key, timeframe)

        if not skip_intraday:
            intraday_url = f"{self._base_url}/historical-candle/intraday/{encoded}/{unit}/{interval}"
            raw = raw + await self._fetch(intraday_url, instrument_key, timeframe)

        candles = self._parse(raw)
        if not candles:
            raise InsufficientDataError(
                "market_data",
                f"No {timeframe.value} candles for {instrument_key}",
                stage="market_data",
                key=instrument_key,
            )

        # Upstox returns newest first; intraday overlaps the historical tail
        deduped = {c.timestamp: c for c in candles}
        return sorted(deduped.values(), key=lambda c: c.timestamp)
