"""Pyth Network price oracle — Hermes latest-price updates for the keeper.

Only positive, fresh prices are returned. A feed that fails either check is
left out, so the market keeps the price it had before.
"""
import logging
import ssl
import time
from decimal import Decimal
from typing import Any, NamedTuple

import aiohttp
import certifi

from ..config import PythConfig

logger = logging.getLogger(__name__)


class PriceUpdate(NamedTuple):
    feed_id: str
    price: Decimal
    publish_time: int


def parse_price_update(item: dict[str, Any]) -> PriceUpdate:
    """Decode one entry of the Hermes ``parsed`` list (price × 10^expo)."""
    price_data = item.get("price") or {}
    mantissa = int(price_data.get("price", 0))
    expo = int(price_data.get("expo", 0))
    return PriceUpdate(
        feed_id=str(item.get("id", "")),
        price=Decimal(mantissa).scaleb(expo),
        publish_time=int(price_data.get("publish_time", 0)),
    )


class PythOracle:
    """Fetch USD prices from the Pyth Hermes API."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)
        self.max_price_age = config.max_price_age

    def _assets_by_feed(self, symbols: list[str] | None) -> dict[str, list[str]]:
        # Several assets may share one feed (e.g. WETH and ETH)
        by_feed: dict[str, list[str]] = {}
        for asset, feed_id in self.price_feeds.items():
            if symbols is None or asset in symbols:
                by_feed.setdefault(feed_id, []).append(asset)
        return by_feed

    async def _request_updates(self, feed_ids: list[str]) -> list[dict[str, Any]]:
        query_params = "&".join(f"ids[]={fid}" for fid in feed_ids)
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.get(url) as response:
                if response.status != 200:
                    logger.error("Error fetching prices from Pyth: HTTP %s", response.status)
                    return []
                data = await response.json()
        return data.get("parsed", [])

    def _usable(self, update: PriceUpdate, now: float) -> bool:
        if update.price <= 0:
            logger.warning("Ignoring non-positive Pyth price for feed %s", update.feed_id)
            return False
        age = now - update.publish_time
        if self.max_price_age and age > self.max_price_age:
            logger.warning(
                "Ignoring stale Pyth price for feed %s (%ds old)", update.feed_id, age
            )
            return False
        return True

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, Decimal]:
        """Fetch current prices for ``symbols`` (all configured feeds if None).

        Returns a partial or empty mapping when the API is unreachable or a
        feed is unusable; the caller keeps its previous prices for the rest.
        """
        by_feed = self._assets_by_feed(symbols)
        if not by_feed:
            return {}

        try:
            items = await self._request_updates(sorted(by_feed))
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        now = time.time()
        prices: dict[str, Decimal] = {}
        for item in items:
            try:
                update = parse_price_update(item)
            except (TypeError, ValueError) as e:
                logger.warning("Malformed Pyth update %r: %s", item, e)
                continue
            if not self._usable(update, now):
                continue
            for asset in by_feed.get(update.feed_id, []):
                prices[asset] = update.price

        logger.debug("Pyth prices: %s", prices)
        return prices
