import asyncio

import pytest

from tradesync.account_poller import AccountStatePoller
from tradesync.datastructures import OrderRequest, TradingAccount
from tradesync.errors import BackendConnectionError
from tradesync.order_gateway import MARKET_CLOSED, OrderActionGateway
from tradesync.price_feed import PriceFeedPoller
from tests.factories import make_connector, make_quote, ok, refused, trade_payload

ACCOUNT = TradingAccount(id="acc-1", number="100001", leverage="1:200")


def _gateway(connector, quotes=None, account=ACCOUNT):
    feed = PriceFeedPoller(connector, symbol_source=list, interval=0.01, jitter=0)
    feed.quotes = quotes if quotes is not None else {"EURUSD": make_quote(bid=1.10050, ask=1.10060)}
    poller = AccountStatePoller(connector, quote_source=lambda: feed.quotes, jitter=0)
    if account is not None:
        poller.select(account)
    return OrderActionGateway(connector, feed, poller, user_id="user-7")


async def _loaded_gateway(connector, quotes=None):
    gateway = _gateway(connector, quotes)
    await gateway.account_poller.refresh_all()
    return gateway


# --- Open ---

@pytest.mark.asyncio
async def test_market_order_payload_and_refresh():
    connector = make_connector()
    gateway = await _loaded_gateway(connector)
    connector.reset_mock()

    result = await gateway.open_order(OrderRequest("EURUSD", "BUY", 0.1, stop_loss=1.09, take_profit=None))

    assert result.success
    assert result.message == "BUY Market order placed!"
    connector.open_trade.assert_awaited_once_with({
        "userId": "user-7",
        "tradingAccountId": "acc-1",
        "symbol": "EURUSD",
        "segment": "Forex",
        "side": "BUY",
        "orderType": "MARKET",
        "quantity": 0.1,
        "bid": 1.10050,
        "ask": 1.10060,
        "leverage": "1:200",
        "sl": 1.09,
    })
    connector.get_open_trades.assert_awaited_once_with("acc-1")
    connector.get_pending_orders.assert_awaited_once_with("acc-1")
    connector.get_account_summary.assert_awaited_once()
    connector.get_trade_history.assert_not_awaited()


@pytest.mark.asyncio
async def test_pending_order_sends_trigger_price_on_both_sides():
    connector = make_connector()
    gateway = _gateway(connector)
    request = OrderRequest("EURUSD", "BUY", 0.2, order_type="PENDING", pending_type="LIMIT", trigger_price=1.0950)

    result = await gateway.open_order(request)

    assert result.message == "BUY LIMIT order placed!"
    payload = connector.open_trade.await_args.args[0]
    assert payload["orderType"] == "BUY_LIMIT"
    assert payload["bid"] == payload["ask"] == 1.0950


@pytest.mark.asyncio
async def test_pending_order_without_trigger_is_rejected_locally():
    connector = make_connector()
    gateway = _gateway(connector)
    result = await gateway.open_order(OrderRequest("EURUSD", "SELL", 0.1, order_type="PENDING", pending_type="STOP"))
    assert not result.success
    assert result.message == "Please enter a pending price"
    connector.open_trade.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("quotes", [{}, {"EURUSD": make_quote(bid=0, ask=0)}])
async def test_open_without_live_quote_reports_market_closed(quotes):
    connector = make_connector()
    gateway = _gateway(connector, quotes=quotes)
    result = await gateway.open_order(OrderRequest("EURUSD", "BUY", 0.1))
    assert result.message == MARKET_CLOSED
    connector.open_trade.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, 0.001, -1])
async def test_quantity_below_minimum_lot_is_rejected(quantity):
    connector = make_connector()
    result = await _gateway(connector).open_order(OrderRequest("EURUSD", "BUY", quantity))
    assert not result.success
    connector.open_trade.assert_not_awaited()


@pytest.mark.asyncio
async def test_open_requires_selected_account():
    connector = make_connector()
    result = await _gateway(connector, account=None).open_order(OrderRequest("EURUSD", "BUY", 0.1))
    assert result.message == "Please select a trading account first"


@pytest.mark.asyncio
async def test_business_rejection_is_passed_through():
    connector = make_connector()
    connector.open_trade.return_value = refused("Insufficient free margin. Required: $1100.60")
    result = await _gateway(connector).open_order(OrderRequest("EURUSD", "BUY", 10))
    assert not result.success
    assert result.message == "Insufficient free margin. Required: $1100.60"
    connector.get_open_trades.assert_not_awaited()


@pytest.mark.asyncio
async def test_network_error_is_reported_and_releases_the_action():
    connector = make_connector()
    connector.open_trade.side_effect = BackendConnectionError("POST", "/trade/open", "Cannot connect to host")
    gateway = _gateway(connector)

    result = await gateway.open_order(OrderRequest("EURUSD", "BUY", 0.1))

    assert not result.success
    assert result.message == "Network error: Cannot connect to host"
    assert not gateway.is_busy("open")


@pytest.mark.asyncio
async def test_second_submit_while_in_flight_is_rejected():
    connector = make_connector()
    sent = asyncio.Event()
    release = asyncio.Event()

    async def open_trade(payload):
        sent.set()
        await release.wait()
        return ok()

    connector.open_trade.side_effect = open_trade
    gateway = _gateway(connector)

    first = asyncio.create_task(gateway.open_order(OrderRequest("EURUSD", "BUY", 0.1)))
    await sent.wait()
    assert gateway.is_busy("open")
    second = await gateway.open_order(OrderRequest("EURUSD", "BUY", 0.1))
    release.set()

    assert not second.success
    assert (await first).success
    assert connector.open_trade.await_count == 1
    assert not gateway.is_busy("open")


# --- Modify / Cancel ---

@pytest.mark.asyncio
async def test_modify_clears_levels_with_none():
    connector = make_connector()
    gateway = _gateway(connector)
    result = await gateway.modify_position("p1", stop_loss=1.09, take_profit=None)
    assert result.message == "SL/TP updated successfully"
    connector.modify_trade.assert_awaited_once_with("p1", 1.09, None)
    connector.get_open_trades.assert_awaited_once()


@pytest.mark.asyncio
async def test_cancel_refreshes_pending_orders():
    connector = make_connector()
    gateway = _gateway(connector)
    result = await gateway.cancel_order("o1")
    assert result.success
    assert result.cancelled == 1
    connector.cancel_order.assert_awaited_once_with("o1")
    connector.get_pending_orders.assert_awaited_once_with("acc-1")
    assert gateway.busy_ids == set()


# --- Close ---

@pytest.mark.asyncio
async def test_close_position_reports_realized_pnl():
    connector = make_connector(positions=[trade_payload("p1")])
    connector.close_trade.return_value = ok(trade={"realizedPnl": 1.0})
    gateway = await _loaded_gateway(connector)

    result = await gateway.close_position(gateway.account_poller.snapshot.positions[0])

    assert result.success
    assert result.realized_pnl == 1.0
    assert result.message == "Closed! P/L: $1.00"
    connector.close_trade.assert_awaited_once_with("p1", 1.10050, 1.10060)
    assert connector.get_trade_history.await_count == 2


@pytest.mark.asyncio
async def test_close_position_marks_row_busy_until_done():
    connector = make_connector(positions=[trade_payload("p1")])
    busy_during_call = []

    async def close_trade(trade_id, bid, ask):
        busy_during_call.append(set(gateway.busy_ids))
        return ok(trade={"realizedPnl": -2.5})

    connector.close_trade.side_effect = close_trade
    gateway = await _loaded_gateway(connector)

    result = await gateway.close_position(gateway.account_poller.snapshot.positions[0])

    assert busy_during_call == [{"p1"}]
    assert gateway.busy_ids == set()
    assert result.message == "Closed! P/L: $-2.50"


@pytest.mark.asyncio
async def test_close_all_loss_targets_exactly_the_losing_positions():
    connector = make_connector(positions=[
        trade_payload("win", symbol="BTCUSD", quantity=1, open_price=100, contract_size=1),
        trade_payload("loss-1", symbol="ETHUSD", quantity=1, open_price=100, contract_size=1),
        trade_payload("loss-2", symbol="SOLUSD", quantity=1, open_price=100, contract_size=1),
    ])
    quotes = {
        "BTCUSD": make_quote("BTCUSD", bid=105, ask=105),
        "ETHUSD": make_quote("ETHUSD", bid=99, ask=99),
        "SOLUSD": make_quote("SOLUSD", bid=97, ask=97),
    }
    gateway = await _loaded_gateway(connector, quotes)

    result = await gateway.close_all("loss")

    closed_ids = {call.args[0] for call in connector.close_trade.await_args_list}
    assert closed_ids == {"loss-1", "loss-2"}
    assert result.closed == 2
    assert result.message == "Closed 2 trade(s)"


@pytest.mark.asyncio
async def test_close_all_with_no_positions_is_rejected():
    connector = make_connector()
    gateway = await _loaded_gateway(connector)
    result = await gateway.close_all()
    assert not result.success
    assert result.message == "No open positions to close"
    connector.close_trade.assert_not_awaited()


@pytest.mark.asyncio
async def test_kill_switch_counts_what_actually_went_through():
    connector = make_connector(
        positions=[trade_payload("p1"), trade_payload("p2")],
        pending=[trade_payload("o1", pendingPrice=1.09), trade_payload("o2", pendingPrice=1.08)],
    )
    connector.close_trade.side_effect = [ok(trade={"realizedPnl": 0.5}), refused("Trade not found")]
    connector.cancel_order.side_effect = [ok(), BackendConnectionError("POST", "/trade/cancel", "timeout")]
    gateway = await _loaded_gateway(connector)

    result = await gateway.kill_switch()

    assert result.success
    assert (result.closed, result.cancelled) == (1, 1)
    assert result.message == "Kill Switch: Closed 1 trades, cancelled 1 orders"
    assert not gateway.is_busy("close")
    assert not gateway.is_busy("cancel")
