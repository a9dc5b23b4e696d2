# tradesync/session.py
import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from tradesync.account_poller import LOADED, AccountStatePoller
from tradesync.backend_connector import BackendConnector
from tradesync.datastructures import (
    AccountMetrics, AccountSnapshot, AccountSummary, ClosedTrade, PendingOrder, Position, Quote, TradingAccount
)
from tradesync.errors import BackendConnectionError, TradeSyncError
from tradesync.instruments import InstrumentCatalog
from tradesync.metrics import compute_metrics
from tradesync.order_gateway import OrderActionGateway
from tradesync.price_feed import PriceFeedPoller

MetricsListener = Callable[[AccountMetrics], None]

class SessionState(str, Enum):
    UNSELECTED = 'UNSELECTED'
    LOADING = 'LOADING'
    ACTIVE = 'ACTIVE'
    SWITCHING = 'SWITCHING'

class TradingSession:
    """
    Binds one user to their trading accounts and owns everything that keeps the
    selected account live: the price feed, the account poller, their tasks, the
    derived metrics and the order gateway.

    Lifecycle: start() -> switch_account() any number of times -> stop().
    After stop() every task is cancelled and no further request is issued.
    """
    def __init__(
        self,
        connector: BackendConnector,
        user_id: str,
        catalog: Optional[InstrumentCatalog] = None,
        price_interval: Optional[float] = None,
        account_interval: Optional[float] = None,
        history_interval: Optional[float] = None,
        history_limit: Optional[int] = None,
        jitter: Optional[float] = None,
        default_leverage: Optional[str] = None
    ):
        self.connector = connector
        self.user_id = user_id
        self.catalog = catalog or InstrumentCatalog()
        self.accounts: List[TradingAccount] = []
        self.state = SessionState.UNSELECTED

        self.price_feed = PriceFeedPoller(
            connector,
            symbol_source=self.catalog.symbols,
            interval=price_interval,
            jitter=jitter,
            on_update=self._on_state_change
        )
        self.account_poller = AccountStatePoller(
            connector,
            quote_source=lambda: self.price_feed.quotes,
            fast_interval=account_interval,
            history_interval=history_interval,
            history_limit=history_limit,
            jitter=jitter,
            on_update=self._on_state_change
        )
        self.gateway = OrderActionGateway(
            connector,
            self.price_feed,
            self.account_poller,
            user_id=user_id,
            default_leverage=default_leverage
        )

        self._listeners: List[MetricsListener] = []
        self._lock = asyncio.Lock()
        self._started = False
        self._stopping = False

    # --- Read Side ---

    @property
    def quotes(self) -> Dict[str, Quote]:
        return self.price_feed.quotes

    @property
    def snapshot(self) -> AccountSnapshot:
        return self.account_poller.snapshot

    @property
    def selected_account(self) -> Optional[TradingAccount]:
        return self.account_poller.account

    @property
    def positions(self) -> Tuple[Position, ...]:
        return self.snapshot.positions

    @property
    def pending_orders(self) -> Tuple[PendingOrder, ...]:
        return self.snapshot.pending_orders

    @property
    def history(self) -> Tuple[ClosedTrade, ...]:
        return self.snapshot.history

    @property
    def summary(self) -> AccountSummary:
        return self.snapshot.summary

    @property
    def metrics(self) -> AccountMetrics:
        """Derived values for the current snapshot and quotes, computed on read."""
        snapshot = self.account_poller.snapshot
        return compute_metrics(snapshot.positions, self.price_feed.quotes, snapshot.summary)

    # --- Publishing ---

    def subscribe(self, listener: MetricsListener) -> MetricsListener:
        """Registers a callback that receives fresh metrics after every state change."""
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: MetricsListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _on_state_change(self, kind: Optional[str] = None):
        if kind == LOADED and self.state == SessionState.LOADING and not self._stopping:
            self._transition(SessionState.ACTIVE)
        if not self._listeners:
            return
        metrics = self.metrics
        for listener in list(self._listeners):
            try:
                listener(metrics)
            except Exception:
                logging.error("SESSION: Metrics listener raised", exc_info=True)

    def _transition(self, state: SessionState):
        if state != self.state:
            logging.info(f"SESSION: {self.state.value} -> {state.value}")
            self.state = state

    # --- Accounts ---

    async def load_accounts(self) -> List[TradingAccount]:
        """Fetches the user's trading accounts. Keeps the previous list on failure."""
        try:
            response = await self.connector.get_accounts(self.user_id)
        except BackendConnectionError as e:
            logging.error(f"SESSION: Could not load accounts for user {self.user_id}: {e}")
            return self.accounts
        self.accounts = [TradingAccount.from_dict(item) for item in response.get('accounts') or []]
        logging.info(f"SESSION: User {self.user_id} has {len(self.accounts)} trading account(s).")
        return self.accounts

    def find_account(self, account_id: str) -> Optional[TradingAccount]:
        """Looks an account up by its id or by its display number."""
        for account in self.accounts:
            if account_id in (account.id, account.number):
                return account
        return None

    # --- Lifecycle ---

    async def start(self, account_id: Optional[str] = None) -> SessionState:
        """
        Loads the user's accounts, resolves `account_id` (or the first account),
        then starts the price feed and selects the account. Without any account
        the session stays UNSELECTED with prices still streaming. An unknown
        `account_id` raises before anything is started, so start() can be retried.
        """
        if self._started:
            logging.warning("SESSION: Already started.")
            return self.state
        self._started = True
        logging.info(f"SESSION: Starting for user {self.user_id}.")

        await self.load_accounts()
        if not self._started:
            return self.state

        account = None
        if account_id is not None:
            account = self.find_account(account_id)
            if account is None:
                self._started = False
                raise TradeSyncError(f"Unknown trading account: {account_id}")
        elif self.accounts:
            account = self.accounts[0]

        self.price_feed.start()
        if account is None:
            logging.warning(f"SESSION: No trading accounts for user {self.user_id}.")
            return self.state

        async with self._lock:
            if self._stopping:
                return self.state
            self.account_poller.select(account)
            return await self._load_selected()

    async def _load_selected(self) -> SessionState:
        # ACTIVE only once the whole account has loaded; a failed first load
        # stays LOADING until the poll loops retry it successfully.
        self._transition(SessionState.LOADING)
        started = await self.account_poller.start()
        if started and self.account_poller.loaded and not self._stopping:
            self._transition(SessionState.ACTIVE)
        return self.state

    async def switch_account(self, account_id: str) -> SessionState:
        """
        Moves polling to another account. The old account's loops are cancelled
        and awaited before the new one is selected, and any of its responses
        still in flight are dropped on arrival.
        """
        if not self._started:
            raise TradeSyncError("Session is not started.")
        account = self.find_account(account_id)
        if account is None:
            raise TradeSyncError(f"Unknown trading account: {account_id}")
        if account.id == self.account_poller.account_id and self.state == SessionState.ACTIVE:
            return self.state

        async with self._lock:
            self._transition(SessionState.SWITCHING)
            await self.account_poller.stop()
            if self._stopping:
                return self.state
            self.account_poller.select(account)
            return await self._load_selected()

    async def stop(self):
        """Logout: cancels every poller task and clears the selected account."""
        if not self._started:
            return
        logging.info("SESSION: Stopping...")
        self._stopping = True
        try:
            # Abort any load in progress before waiting for the lock
            await self.account_poller.stop()
            await self.price_feed.stop()
            async with self._lock:
                await self.account_poller.stop()
                self.account_poller.select(None)
                self._transition(SessionState.UNSELECTED)
        finally:
            self._stopping = False
            self._started = False
        logging.info("SESSION: Stopped. No further requests will be issued.")
