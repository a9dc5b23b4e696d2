# tradesync/metrics.py
"""
Real-time account metrics derived from live quotes and open positions.

Everything here is pure: no I/O, no clocks. The session calls
`compute_metrics` synchronously after every state write so the values a
consumer reads always match the quotes and positions it can see.
"""
from typing import Iterable, List, Literal, Mapping, Optional

from tradesync.datastructures import AccountMetrics, AccountSummary, Position, Quote

CloseFilter = Literal['all', 'profit', 'loss']


def position_pnl(position: Position, quote: Optional[Quote]) -> float:
    """
    Floating P&L of one position, net of commission and swap.

    A BUY is valued at the bid (what closing it would receive), a SELL at the
    ask. Without a usable quote the position contributes 0.
    """
    if quote is None or not quote.is_valid:
        return 0.0
    if position.side == 'BUY':
        move = quote.bid - position.open_price
    else:
        move = position.open_price - quote.ask
    return move * position.quantity * position.contract_size - position.commission - position.swap


def compute_metrics(
    positions: Iterable[Position],
    quotes: Mapping[str, Quote],
    summary: AccountSummary
) -> AccountMetrics:
    """Derives floating P&L, equity, used and free margin for an account."""
    positions = list(positions)
    balance = summary.balance or 0.0
    credit = summary.credit or 0.0

    if not positions:
        return AccountMetrics(
            total_floating_pnl=0.0,
            equity=balance + credit,
            free_margin=balance + credit,
            used_margin=0.0,
            margin_level=0.0,
            position_pnl={},
        )

    # Sum unrounded, round once
    pnl_by_id = {}
    total_pnl = 0.0
    total_margin = 0.0
    for position in positions:
        pnl = position_pnl(position, quotes.get(position.symbol))
        pnl_by_id[position.id] = pnl
        total_pnl += pnl
        total_margin += position.margin_used or 0.0

    equity = balance + credit + total_pnl
    free_margin = equity - total_margin
    margin_level = (equity / total_margin) * 100 if total_margin > 0 else 0.0

    return AccountMetrics(
        total_floating_pnl=round(total_pnl, 2),
        equity=round(equity, 2),
        free_margin=round(free_margin, 2),
        used_margin=round(total_margin, 2),
        margin_level=round(margin_level, 2),
        position_pnl=pnl_by_id,
    )


def select_positions(
    positions: Iterable[Position],
    quotes: Mapping[str, Quote],
    which: CloseFilter = 'all'
) -> List[Position]:
    """
    Picks the positions a close-all action targets, judged by their P&L right now.
    Prices keep moving afterwards, so a position picked as 'profit' may still
    close at a loss.
    """
    if which not in ('all', 'profit', 'loss'):
        raise ValueError(f"Unknown close filter: {which}")
    selected = []
    for position in positions:
        pnl = position_pnl(position, quotes.get(position.symbol))
        if which == 'profit' and not pnl > 0:
            continue
        if which == 'loss' and not pnl < 0:
            continue
        selected.append(position)
    return selected
