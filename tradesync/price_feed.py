# tradesync/price_feed.py
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from tradesync.backend_connector import BackendConnector
from tradesync.config import config
from tradesync.datastructures import Quote
from tradesync.errors import BackendConnectionError
from tradesync.scheduling import cancel_tasks, jittered_delay

class PriceFeedPoller:
    """
    Polls the backend for live bid/ask quotes and keeps the shared quote map.
    This is the only writer of `quotes`; everything else reads it.

    A symbol is only overwritten when the response carries a usable bid for it,
    so a partial outage leaves the last known quote in place instead of
    dropping the instrument to a price of zero.
    """
    def __init__(
        self,
        connector: BackendConnector,
        symbol_source: Callable[[], Iterable[str]],
        interval: Optional[float] = None,
        jitter: Optional[float] = None,
        on_update: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.connector = connector
        self.symbol_source = symbol_source
        self.interval = config.PRICE_POLL_INTERVAL if interval is None else interval
        self.jitter = config.POLL_JITTER if jitter is None else jitter
        self.on_update = on_update
        self.clock = clock

        self.quotes: Dict[str, Quote] = {}
        self.consecutive_failures = 0
        self._request_seq = 0
        self._applied_seq = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def quote(self, symbol: str) -> Optional[Quote]:
        return self.quotes.get(symbol)

    def stale_symbols(self, max_age: Optional[float] = None) -> List[str]:
        """Symbols whose last quote is older than `max_age` seconds."""
        max_age = config.QUOTE_STALE_AFTER if max_age is None else max_age
        now = self.clock()
        return [symbol for symbol, quote in self.quotes.items() if quote.is_stale(max_age, now)]

    async def poll_once(self) -> bool:
        """Runs one batch lookup. Returns True when at least one quote was updated."""
        symbols = list(self.symbol_source())
        if not symbols:
            return False

        self._request_seq += 1
        seq = self._request_seq
        try:
            response = await self.connector.get_batch_prices(symbols)
        except BackendConnectionError as e:
            self.consecutive_failures += 1
            logging.warning(f"PRICE FEED: Batch quote request failed ({self.consecutive_failures} in a row): {e}")
            return False

        prices = response.get('prices')
        if not response.get('success') or not isinstance(prices, dict):
            self.consecutive_failures += 1
            logging.warning(f"PRICE FEED: Backend returned no prices: {response.get('message')}")
            return False

        if seq < self._applied_seq:
            logging.debug(f"PRICE FEED: Dropping response #{seq}, #{self._applied_seq} already applied.")
            return False
        self._applied_seq = seq
        self.consecutive_failures = 0

        updated = self._merge(prices, self.clock())
        logging.debug(f"PRICE FEED: Updated {updated}/{len(symbols)} quotes.")
        if updated and self.on_update:
            self.on_update()
        return updated > 0

    def _merge(self, prices: Mapping[str, Any], received_at: float) -> int:
        """Copy-merges fresh quotes into a new map so readers never see a half-applied tick."""
        merged = dict(self.quotes)
        updated = 0
        for symbol, entry in prices.items():
            quote = Quote.from_dict(symbol, entry, received_at) if isinstance(entry, dict) else None
            if quote is None:
                continue
            merged[symbol] = quote
            updated += 1
        if updated:
            self.quotes = merged
        return updated

    async def run(self):
        """Main loop. Each tick is awaited before sleeping, so requests never overlap."""
        logging.info(f"PriceFeedPoller is running every {self.interval}s.")
        while True:
            try:
                await self.poll_once()
            except Exception:
                logging.critical("An unexpected error occurred in PriceFeedPoller", exc_info=True)
            await asyncio.sleep(jittered_delay(self.interval, self.jitter))

    def start(self):
        if self.running:
            logging.warning("PriceFeedPoller is already running.")
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is not None:
            await cancel_tasks([self._task])
            self._task = None
            logging.info("PriceFeedPoller stopped.")
