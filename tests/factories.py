"""
Payload and record builders shared by the test suite.

Payloads mirror the backend's camelCase JSON so parsing is exercised on the
way in, the same way production data arrives.
"""

from unittest.mock import AsyncMock

from tradesync.backend_connector import BackendConnector
from tradesync.datastructures import AccountSummary, PendingOrder, Position, Quote


def ok(**body):
    return {"success": True, **body}


def refused(message):
    return {"success": False, "message": message}


def trade_payload(
    trade_id="p1",
    symbol="EURUSD",
    side="BUY",
    quantity=0.01,
    open_price=1.10050,
    contract_size=100000,
    margin_used=11.0,
    commission=0.0,
    swap=0.0,
    account_id="acc-1",
    **extra,
):
    payload = {
        "_id": trade_id,
        "tradingAccountId": account_id,
        "tradeId": f"T{trade_id}",
        "symbol": symbol,
        "side": side,
        "orderType": "MARKET",
        "quantity": quantity,
        "openPrice": open_price,
        "contractSize": contract_size,
        "leverage": "1:100",
        "marginUsed": margin_used,
        "commission": commission,
        "swap": swap,
        "openedAt": "2024-05-01T10:00:00.000Z",
    }
    payload.update(extra)
    return payload


def make_position(**kwargs) -> Position:
    return Position.from_dict(trade_payload(**kwargs))


def make_pending(trigger_price=1.09, **kwargs) -> PendingOrder:
    kwargs.setdefault("trade_id", "o1")
    return PendingOrder.from_dict(trade_payload(pendingPrice=trigger_price, **kwargs))


def make_quote(symbol="EURUSD", bid=1.10050, ask=None, received_at=0.0) -> Quote:
    return Quote(symbol=symbol, bid=bid, ask=bid if ask is None else ask, received_at=received_at)


def summary_payload(balance=1000.0, credit=0.0, **extra):
    payload = {
        "balance": balance,
        "credit": credit,
        "equity": balance + credit,
        "usedMargin": 0,
        "freeMargin": balance + credit,
        "floatingPnl": 0,
    }
    payload.update(extra)
    return payload


def make_summary(balance=1000.0, credit=0.0) -> AccountSummary:
    return AccountSummary.from_dict(summary_payload(balance, credit))


def account_payload(account_id="acc-1", number="100001", leverage="1:100", balance=1000.0):
    return {
        "_id": account_id,
        "accountId": number,
        "leverage": leverage,
        "balance": balance,
        "credit": 0,
        "status": "Active",
    }


def make_connector(
    prices=None,
    accounts=None,
    positions=None,
    pending=None,
    history=None,
    summary=None,
):
    """
    An AsyncMock standing in for BackendConnector with a healthy backend.
    Individual tests override return values or side effects as needed.
    """
    connector = AsyncMock(spec=BackendConnector)
    connector.get_batch_prices.return_value = ok(
        prices=prices if prices is not None else {"EURUSD": {"bid": 1.10050, "ask": 1.10060}}
    )
    connector.get_accounts.return_value = ok(
        accounts=accounts if accounts is not None else [account_payload()]
    )
    connector.get_open_trades.return_value = ok(trades=positions or [])
    connector.get_pending_orders.return_value = ok(trades=pending or [])
    connector.get_trade_history.return_value = ok(trades=history or [])
    connector.get_account_summary.return_value = ok(summary=summary or summary_payload())
    connector.open_trade.return_value = ok(message="Trade opened")
    connector.modify_trade.return_value = ok()
    connector.close_trade.return_value = ok(trade={"realizedPnl": 0.0})
    connector.cancel_order.return_value = ok()
    return connector
