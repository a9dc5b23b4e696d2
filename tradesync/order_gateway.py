# tradesync/order_gateway.py
import logging
from typing import Any, Dict, Optional, Set

from tradesync.account_poller import HISTORY, PENDING, POSITIONS, SUMMARY, AccountStatePoller
from tradesync.backend_connector import BackendConnector
from tradesync.config import config
from tradesync.datastructures import ActionResult, OrderRequest, Position, Quote
from tradesync.errors import BackendConnectionError
from tradesync.instruments import category_for
from tradesync.metrics import CloseFilter, select_positions
from tradesync.price_feed import PriceFeedPoller

MIN_LOT = 0.01
MARKET_CLOSED = 'Market is closed or no price data available'

class OrderActionGateway:
    """
    Sends user-initiated order actions to the backend.

    Checks what can be checked locally (quantity, trigger price, a live quote)
    before any request is made, allows one outstanding request per action kind,
    and after a success forces an immediate refresh of the affected collections
    instead of editing cached state. Every outcome comes back as an ActionResult.
    """
    def __init__(
        self,
        connector: BackendConnector,
        price_feed: PriceFeedPoller,
        account_poller: AccountStatePoller,
        user_id: str,
        default_leverage: Optional[str] = None
    ):
        self.connector = connector
        self.price_feed = price_feed
        self.account_poller = account_poller
        self.user_id = user_id
        self.default_leverage = default_leverage or config.DEFAULT_LEVERAGE
        self._in_flight: Set[str] = set()
        self.busy_ids: Set[str] = set() # Rows the UI should show as disabled

    def is_busy(self, action: str) -> bool:
        return action in self._in_flight

    def _claim(self, *actions: str) -> bool:
        if any(action in self._in_flight for action in actions):
            return False
        self._in_flight.update(actions)
        return True

    def _release(self, *actions: str):
        self._in_flight.difference_update(actions)

    @staticmethod
    def _reject(message: str) -> ActionResult:
        logging.warning(f"ORDER GATEWAY: Rejected: {message}")
        return ActionResult(success=False, message=message)

    def _valid_quote(self, symbol: str) -> Optional[Quote]:
        quote = self.price_feed.quote(symbol)
        return quote if quote is not None and quote.is_valid else None

    # --- Open ---

    def _open_payload(self, request: OrderRequest, bid: float, ask: float) -> Dict[str, Any]:
        account = self.account_poller.account
        payload = {
            'userId': self.user_id,
            'tradingAccountId': account.id,
            'symbol': request.symbol,
            'segment': category_for(request.symbol),
            'side': request.side,
            'orderType': request.wire_order_type,
            'quantity': request.quantity,
            'bid': bid,
            'ask': ask,
            'leverage': request.leverage or account.leverage or self.default_leverage,
        }
        if request.stop_loss:
            payload['sl'] = request.stop_loss
        if request.take_profit:
            payload['tp'] = request.take_profit
        return payload

    async def open_order(self, request: OrderRequest) -> ActionResult:
        """Places a market or pending order on the selected account."""
        if self.account_poller.account is None:
            return self._reject('Please select a trading account first')
        if request.side not in ('BUY', 'SELL'):
            return self._reject(f"Unknown order side: {request.side}")
        if not request.quantity or request.quantity < MIN_LOT:
            return self._reject(f"Quantity must be at least {MIN_LOT} lots")
        if request.is_pending and not (request.trigger_price and request.trigger_price > 0):
            return self._reject('Please enter a pending price')
        quote = self._valid_quote(request.symbol)
        if quote is None:
            return self._reject(MARKET_CLOSED)
        if not self._claim('open'):
            return self._reject('An order is already being placed')

        try:
            # Pending orders carry the trigger price on both sides
            if request.is_pending:
                bid = ask = request.trigger_price
            else:
                bid, ask = quote.bid, quote.ask
            payload = self._open_payload(request, bid, ask)
            try:
                response = await self.connector.open_trade(payload)
            except BackendConnectionError as e:
                logging.error(f"ORDER GATEWAY: Open order for {request.symbol} failed: {e}")
                return ActionResult(False, f"Network error: {e.reason}")

            if not response.get('success'):
                return self._reject(response.get('message') or 'Failed to place order')

            label = request.pending_type if request.is_pending else 'Market'
            logging.info(f"ORDER GATEWAY: {request.side} {label} order for {request.quantity} {request.symbol} accepted.")
            await self.account_poller.refresh(POSITIONS, PENDING, SUMMARY)
            return ActionResult(True, f"{request.side} {label} order placed!")
        finally:
            self._release('open')

    # --- Modify ---

    async def modify_position(
        self,
        position_id: str,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None
    ) -> ActionResult:
        """Sets SL/TP on an open position. None clears the level."""
        if not position_id:
            return self._reject('No trade selected')
        if not self._claim('modify'):
            return self._reject('An SL/TP update is already in progress')

        self.busy_ids.add(position_id)
        try:
            try:
                response = await self.connector.modify_trade(position_id, stop_loss, take_profit)
            except BackendConnectionError as e:
                logging.error(f"ORDER GATEWAY: Modify of {position_id} failed: {e}")
                return ActionResult(False, f"Network error: {e.reason}")

            if not response.get('success'):
                return self._reject(response.get('message') or 'Failed to update SL/TP')

            await self.account_poller.refresh(POSITIONS)
            return ActionResult(True, 'SL/TP updated successfully')
        finally:
            self.busy_ids.discard(position_id)
            self._release('modify')

    # --- Close ---

    async def _submit_close(self, position: Position) -> Optional[Dict[str, Any]]:
        """Sends one close at the current quote. Returns None when there is no usable quote."""
        quote = self._valid_quote(position.symbol)
        if quote is None:
            logging.warning(f"ORDER GATEWAY: No price for {position.symbol}, not closing {position.id}.")
            return None
        self.busy_ids.add(position.id)
        try:
            return await self.connector.close_trade(position.id, quote.bid, quote.ask)
        finally:
            self.busy_ids.discard(position.id)

    async def close_position(self, position: Position) -> ActionResult:
        """Closes one open position at the current bid/ask."""
        if self._valid_quote(position.symbol) is None:
            return self._reject(MARKET_CLOSED)
        if not self._claim('close'):
            return self._reject('A close is already in progress')

        try:
            try:
                response = await self._submit_close(position)
            except BackendConnectionError as e:
                logging.error(f"ORDER GATEWAY: Close of {position.id} failed: {e}")
                return ActionResult(False, f"Network error: {e.reason}")

            if response is None:
                return self._reject(MARKET_CLOSED)
            if not response.get('success'):
                return self._reject(response.get('message') or 'Failed to close')

            trade = response.get('trade') or {}
            pnl = float(trade.get('realizedPnl') or response.get('realizedPnl') or 0)
            logging.info(f"ORDER GATEWAY: Closed {position.id} ({position.symbol}) with P/L {pnl:.2f}.")
            await self.account_poller.refresh(POSITIONS, HISTORY, SUMMARY)
            return ActionResult(True, f"Closed! P/L: ${pnl:.2f}", realized_pnl=pnl, closed=1)
        finally:
            self._release('close')

    async def _close_each(self, positions) -> int:
        closed = 0
        for position in positions:
            try:
                response = await self._submit_close(position)
            except BackendConnectionError as e:
                logging.error(f"ORDER GATEWAY: Close of {position.id} failed: {e}")
                continue
            if response is not None and response.get('success'):
                closed += 1
            elif response is not None:
                logging.warning(f"ORDER GATEWAY: Close of {position.id} refused: {response.get('message')}")
        return closed

    async def close_all(self, which: CloseFilter = 'all') -> ActionResult:
        """
        Closes every open position, or only those currently in profit or in loss.
        Positions are picked by their P&L at the moment of the call and closed
        one after another.
        """
        if which not in ('all', 'profit', 'loss'):
            return self._reject(f"Unknown close filter: {which}")
        positions = self.account_poller.snapshot.positions
        if not positions:
            return self._reject('No open positions to close')
        if not self._claim('close'):
            return self._reject('A close is already in progress')

        try:
            targets = select_positions(positions, self.price_feed.quotes, which)
            logging.info(f"ORDER GATEWAY: Close-all ({which}) targets {len(targets)}/{len(positions)} positions.")
            closed = await self._close_each(targets)
            await self.account_poller.refresh(POSITIONS, HISTORY, SUMMARY)
            return ActionResult(True, f"Closed {closed} trade(s)", closed=closed)
        finally:
            self._release('close')

    # --- Cancel ---

    async def _submit_cancel(self, order_id: str) -> Dict[str, Any]:
        self.busy_ids.add(order_id)
        try:
            return await self.connector.cancel_order(order_id)
        finally:
            self.busy_ids.discard(order_id)

    async def cancel_order(self, order_id: str) -> ActionResult:
        """Cancels a pending order."""
        if not order_id:
            return self._reject('No order selected')
        if not self._claim('cancel'):
            return self._reject('A cancellation is already in progress')

        try:
            try:
                response = await self._submit_cancel(order_id)
            except BackendConnectionError as e:
                logging.error(f"ORDER GATEWAY: Cancel of {order_id} failed: {e}")
                return ActionResult(False, f"Network error: {e.reason}")

            if not response.get('success'):
                return self._reject(response.get('message') or 'Failed to cancel order')

            await self.account_poller.refresh(PENDING)
            return ActionResult(True, 'Order cancelled', cancelled=1)
        finally:
            self._release('cancel')

    # --- Kill Switch ---

    async def kill_switch(self) -> ActionResult:
        """Closes every open position and cancels every pending order."""
        if not self._claim('close', 'cancel'):
            return self._reject('Another close or cancellation is in progress')

        try:
            snapshot = self.account_poller.snapshot
            closed = await self._close_each(snapshot.positions)

            cancelled = 0
            for order in snapshot.pending_orders:
                try:
                    response = await self._submit_cancel(order.id)
                except BackendConnectionError as e:
                    logging.error(f"ORDER GATEWAY: Cancel of {order.id} failed: {e}")
                    continue
                if response.get('success'):
                    cancelled += 1

            logging.warning(f"ORDER GATEWAY: Kill switch closed {closed} trades and cancelled {cancelled} orders.")
            await self.account_poller.refresh(POSITIONS, PENDING, HISTORY, SUMMARY)
            return ActionResult(
                True,
                f"Kill Switch: Closed {closed} trades, cancelled {cancelled} orders",
                closed=closed,
                cancelled=cancelled,
            )
        finally:
            self._release('close', 'cancel')
