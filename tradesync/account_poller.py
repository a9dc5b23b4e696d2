# tradesync/account_poller.py
import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Mapping, Optional, Set

from tradesync.backend_connector import BackendConnector
from tradesync.config import config
from tradesync.datastructures import (
    AccountSnapshot, AccountSummary, ClosedTrade, PendingOrder, Position, Quote, TradingAccount
)
from tradesync.errors import BackendConnectionError, TradeSyncError
from tradesync.scheduling import cancel_tasks, jittered_delay

POSITIONS = 'positions'
PENDING = 'pending_orders'
HISTORY = 'history'
SUMMARY = 'summary'

COLLECTIONS = (POSITIONS, PENDING, HISTORY, SUMMARY)
FAST_COLLECTIONS = (POSITIONS, PENDING, SUMMARY)

# Passed to on_update once a selected account has been fully loaded
LOADED = 'loaded'

class AccountStatePoller:
    """
    Keeps the selected account's positions, pending orders, history and summary
    in sync with the backend. This is the only writer of `snapshot`.

    A newly selected account is loaded all at once: the four collections are
    fetched together and installed in a single snapshot assignment, or not at
    all. Until that succeeds every refresh retries the full load, so a consumer
    never sees one account's positions next to an empty summary.

    Once loaded, positions, pending orders and the summary are refreshed on the
    fast cadence, history on the slow one. Each collection is then fetched and
    applied on its own: one failing request never clears or blocks the others.
    Every request remembers the account it was sent for and a per-collection
    sequence number; responses for a deselected account, or older than one
    already applied, are dropped.
    """
    def __init__(
        self,
        connector: BackendConnector,
        quote_source: Callable[[], Mapping[str, Quote]],
        fast_interval: Optional[float] = None,
        history_interval: Optional[float] = None,
        history_limit: Optional[int] = None,
        jitter: Optional[float] = None,
        on_update: Optional[Callable[[str], None]] = None
    ):
        self.connector = connector
        self.quote_source = quote_source
        self.fast_interval = config.ACCOUNT_POLL_INTERVAL if fast_interval is None else fast_interval
        self.history_interval = config.HISTORY_POLL_INTERVAL if history_interval is None else history_interval
        self.history_limit = config.HISTORY_LIMIT if history_limit is None else history_limit
        self.jitter = config.POLL_JITTER if jitter is None else jitter
        self.on_update = on_update

        # --- State ---
        self.account: Optional[TradingAccount] = None
        self.snapshot = AccountSnapshot()
        self.loaded = False
        self._request_seq: Dict[str, int] = {kind: 0 for kind in COLLECTIONS}
        self._applied_seq: Dict[str, int] = {kind: 0 for kind in COLLECTIONS}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def account_id(self) -> Optional[str]:
        return self.snapshot.account_id

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def select(self, account: Optional[TradingAccount]):
        """Swaps in an empty snapshot for `account` in a single assignment."""
        self.account = account
        self.loaded = False
        self.snapshot = AccountSnapshot(account_id=account.id if account else None)
        logging.info(f"ACCOUNT POLLER: Selected account {account.id if account else None}.")
        if self.on_update:
            self.on_update('account')

    # --- Fetching ---

    async def _request(self, kind: str, account_id: str) -> Dict[str, Any]:
        if kind == POSITIONS:
            return await self.connector.get_open_trades(account_id)
        if kind == PENDING:
            return await self.connector.get_pending_orders(account_id)
        if kind == HISTORY:
            return await self.connector.get_trade_history(account_id, limit=self.history_limit)
        prices = {symbol: quote.to_dict() for symbol, quote in self.quote_source().items()}
        return await self.connector.get_account_summary(account_id, prices=prices)

    @staticmethod
    def _parse(kind: str, response: Dict[str, Any]):
        if kind == SUMMARY:
            return AccountSummary.from_dict(response.get('summary'))
        record = {POSITIONS: Position, PENDING: PendingOrder, HISTORY: ClosedTrade}[kind]
        return tuple(record.from_dict(item) for item in response.get('trades') or [])

    def _next_seq(self, kind: str) -> int:
        self._request_seq[kind] += 1
        return self._request_seq[kind]

    async def _fetch(self, kind: str, account_id: str):
        """Returns the parsed collection, or None when the request failed or was refused."""
        try:
            response = await self._request(kind, account_id)
        except BackendConnectionError as e:
            logging.warning(f"ACCOUNT POLLER: [{account_id}] Fetching {kind} failed: {e}")
            return None

        if not response.get('success'):
            logging.warning(f"ACCOUNT POLLER: [{account_id}] Backend refused {kind}: {response.get('message')}")
            return None

        try:
            return self._parse(kind, response)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logging.error(f"ACCOUNT POLLER: [{account_id}] Malformed {kind} payload: {e}", exc_info=True)
            return None

    def _is_current(self, kind: str, account_id: str, seq: int) -> bool:
        if account_id != self.account_id:
            logging.info(f"ACCOUNT POLLER: Dropping {kind} for {account_id}, now on {self.account_id}.")
            return False
        if seq < self._applied_seq[kind]:
            logging.debug(f"ACCOUNT POLLER: Dropping stale {kind} response #{seq}.")
            return False
        return True

    async def load(self) -> bool:
        """
        Fetches all four collections for the selected account and installs them
        in one snapshot assignment. Nothing is applied unless every fetch
        succeeded and the account is still selected.
        """
        account_id = self.account_id
        if account_id is None:
            return False

        seqs = {kind: self._next_seq(kind) for kind in COLLECTIONS}
        values = await asyncio.gather(*(self._fetch(kind, account_id) for kind in COLLECTIONS))
        fetched = dict(zip(COLLECTIONS, values))

        failed = [kind for kind, value in fetched.items() if value is None]
        if failed:
            logging.warning(f"ACCOUNT POLLER: [{account_id}] Load incomplete, {failed} failed. Retrying on next poll.")
            return False
        if not all(self._is_current(kind, account_id, seqs[kind]) for kind in COLLECTIONS):
            return False

        self._applied_seq.update(seqs)
        self.snapshot = AccountSnapshot(account_id=account_id, **fetched)
        self.loaded = True
        if self.on_update:
            self.on_update(LOADED)
        return True

    async def _refresh_one(self, kind: str) -> bool:
        account_id = self.account_id
        if account_id is None:
            return False

        seq = self._next_seq(kind)
        value = await self._fetch(kind, account_id)
        if value is None or not self._is_current(kind, account_id, seq):
            return False

        self._applied_seq[kind] = seq
        self.snapshot = replace(self.snapshot, **{kind: value})
        if self.on_update:
            self.on_update(kind)
        return True

    async def refresh(self, *kinds: str) -> Dict[str, bool]:
        """
        Fetches the given collections right away, concurrently, outside the
        timer cadence. Returns which of them were applied.

        Before the selected account has loaded, this runs the full load instead
        and reports its outcome for every requested collection.
        """
        unknown = set(kinds) - set(COLLECTIONS)
        if unknown:
            raise ValueError(f"Unknown collections: {sorted(unknown)}")
        kinds = tuple(dict.fromkeys(kinds))
        if not self.loaded:
            loaded = await self.load()
            return {kind: loaded for kind in kinds}
        results = await asyncio.gather(*(self._refresh_one(kind) for kind in kinds))
        return dict(zip(kinds, results))

    async def refresh_all(self) -> Dict[str, bool]:
        return await self.refresh(*COLLECTIONS)

    # --- Lifecycle ---

    async def _poll_loop(self, kinds, interval: float):
        while True:
            await asyncio.sleep(jittered_delay(interval, self.jitter))
            try:
                await self.refresh(*kinds)
            except Exception:
                logging.critical(f"An unexpected error occurred while polling {kinds}", exc_info=True)

    async def start(self) -> bool:
        """
        Loads the selected account, then keeps polling on both cadences. If the
        first load fails the loops keep retrying it. Returns False if the
        initial load was cancelled by stop().
        """
        if self.account is None:
            raise TradeSyncError("No trading account selected.")
        if self.running:
            logging.warning(f"ACCOUNT POLLER: Already polling {self.account_id}.")
            return True

        logging.info(f"ACCOUNT POLLER: Loading account {self.account_id}...")
        load = asyncio.create_task(self.load())
        self._tasks = {
            load,
            asyncio.create_task(self._poll_loop(FAST_COLLECTIONS, self.fast_interval)),
            asyncio.create_task(self._poll_loop((HISTORY,), self.history_interval)),
        }
        await asyncio.wait({load})
        if load.cancelled():
            return False
        if load.exception() is not None:
            logging.error(f"ACCOUNT POLLER: Initial load of {self.account_id} failed", exc_info=load.exception())
            return True
        if load.result():
            logging.info(f"ACCOUNT POLLER: Account {self.account_id} loaded.")
        return True

    async def stop(self):
        """Cancels the initial load and both poll loops and waits for them to finish."""
        if not self._tasks:
            return
        await cancel_tasks(self._tasks)
        self._tasks = set()
        logging.info(f"ACCOUNT POLLER: Stopped polling {self.account_id}.")
