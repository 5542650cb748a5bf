"""
Quick live check of the market data and news services.
Run with: python smoke_market_data.py [INSTRUMENT_KEY] [SYMBOL]

Needs UPSTOX_ACCESS_TOKEN (and an LLM key for sentiment) in .env.
"""

import asyncio
import os
import sys

# Set working directory
backend_dir = os.path.dirname(os.path.abspath(__file__))
os.chdir(backend_dir)
sys.path.insert(0, backend_dir)

from dotenv import load_dotenv
load_dotenv(os.path.join(backend_dir, ".env"))


async def smoke(instrument_key: str, symbol: str):
    print("\n" + "=" * 60)
    print("SWINGSETUPS - MARKET DATA SMOKE TEST")
    print("=" * 60)

    from swingsetups.core.market_hours import get_market_status
    from swingsetups.schemas.market import AnalysisType
    from swingsetups.services.market_data import get_market_data_service
    from swingsetups.services.news import get_news_service
    from swingsetups.services.pipeline import summarize_market

    market = get_market_data_service()
    news = get_news_service()

    # Test 1: Market status
    print("\n[1] Market Status...")
    print("-" * 40)
    for key, value in get_market_status().items():
        print(f"{key}: {value}")

    # Test 2: Payload per horizon
    for analysis_type in (AnalysisType.SWING, AnalysisType.INTRADAY):
        print(f"\n[2] {analysis_type.value.upper()} payload for {symbol}...")
        print("-" * 40)
        payload = await market.build_payload(instrument_key, symbol, analysis_type)
        ind = payload.indicators
        print(f"  Last: {payload.last}")
        print(f"  EMA20/EMA50/SMA200 (1D): {ind.ema20_1D} / {ind.ema50_1D} / {ind.sma200_1D}")
        print(f"  ATR14 1D/1h: {ind.atr14_1D} / {ind.atr14_1h}  RSI14 1h: {ind.rsi14_1h}")
        print(f"  Volume: {payload.volume_class.value} ({payload.volume_ratio})")
        print(f"  Frames: {sorted(payload.bars)}  Missing: {payload.missing_frames}")

        summary = summarize_market(payload)
        print(f"  Trend: {summary.market_summary.trend.value}  Volatility: {summary.market_summary.volatility}")
        print(f"  Insufficient: {summary.insufficientData}")

    # Test 3: Headlines + sentiment
    print(f"\n[3] Sentiment for {symbol}...")
    print("-" * 40)
    context, usage = await news.get_sentiment(symbol, "", "swing")
    print(f"  Sentiment: {context.sentiment} ({context.confidence:.2f})")
    for headline in context.headlines:
        print(f"  - {headline}")
    if usage:
        print(f"  Tokens: in={usage.tokens.input_tokens} out={usage.tokens.output_tokens}")

    await market.close()
    await news.close()

    print("\n" + "=" * 60)
    print("SMOKE TEST COMPLETE")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    key = sys.argv[1] if len(sys.argv) > 1 else "NSE_EQ|INE002A01018"
    sym = sys.argv[2] if len(sys.argv) > 2 else "RELIANCE"
    asyncio.run(smoke(key, sym))
