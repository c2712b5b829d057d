from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone

import ccxt
import httpx

from signaldesk.schemas import PriceQuote
from signaldesk.utils.num import parse_decimal

logger = logging.getLogger(__name__)

YAHOO_CHART = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def market_offline() -> bool:
    return os.getenv("MARKET_OFFLINE", "").strip().lower() in {"1", "true", "yes", "on"}


def _normalize_symbol(sym: str) -> str:
    s = sym.replace(':USDT', '/USDT') if ':USDT' in sym else sym
    if '/' in s:
        return s
    # convert e.g. XRPUSDT -> XRP/USDT
    su = s.upper()
    if su.endswith('USDT') and '/' not in su:
        base = su[:-4]
        return f"{base}/USDT"
    return s


class YahooPriceSource:
    """Last regular-market price from the Yahoo chart endpoint (stocks, ETFs, FX)."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self.client = client

    async def get_price(self, symbol: str, timeout: float) -> PriceQuote:
        url = YAHOO_CHART.format(symbol=symbol.upper())
        params = {"interval": "1d", "range": "1d"}
        headers = {"User-Agent": _UA, "Accept": "application/json"}
        try:
            if self.client is not None:
                r = await self.client.get(url, params=params, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as cli:
                    r = await cli.get(url, params=params, headers=headers)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Yahoo quote failed", extra={"symbol": symbol, "error": str(exc)})
            return PriceQuote(ok=False)
        try:
            meta = data["chart"]["result"][0]["meta"]
        except (KeyError, IndexError, TypeError):
            return PriceQuote(ok=False)
        price = parse_decimal(meta.get("regularMarketPrice"))
        ts = meta.get("regularMarketTime")
        as_of = datetime.fromtimestamp(int(ts), tz=timezone.utc) if ts else None
        if price is None or price <= 0:
            return PriceQuote(ok=False)
        return PriceQuote(price=price, as_of=as_of, ok=True)


class CcxtPriceSource:
    """Ticker last price from a ccxt exchange (crypto pairs such as BTCUSDT)."""

    def __init__(self, exchange: object | None = None):
        self.ex = exchange or ccxt.binance()

    async def get_price(self, symbol: str, timeout: float) -> PriceQuote:
        # ccxt is sync; keep it off the event loop
        try:
            t = await asyncio.wait_for(asyncio.to_thread(self.ex.fetch_ticker, _normalize_symbol(symbol)), timeout)
        except ccxt.BaseError as exc:
            logger.warning("ccxt ticker failed", extra={"symbol": symbol, "error": str(exc)})
            return PriceQuote(ok=False)
        price = parse_decimal(t.get("last") or t.get("close"))
        ts = t.get("timestamp")
        as_of = datetime.fromtimestamp(ts / 1000.0, tz=timezone.utc) if ts else None
        if price is None or price <= 0:
            return PriceQuote(ok=False)
        return PriceQuote(price=price, as_of=as_of, ok=True)


class OfflinePriceSource:
    """Never has a price; every symbol shows as unavailable."""

    async def get_price(self, symbol: str, timeout: float) -> PriceQuote:
        return PriceQuote(ok=False)


def build_price_source(provider: str):
    if market_offline():
        return OfflinePriceSource()
    p = (provider or "yahoo").strip().lower()
    if p == "ccxt":
        return CcxtPriceSource()
    if p == "offline":
        return OfflinePriceSource()
    return YahooPriceSource()
