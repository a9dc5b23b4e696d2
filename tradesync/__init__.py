# tradesync/__init__.py
from tradesync.backend_connector import BackendConnector
from tradesync.datastructures import (
    AccountMetrics, AccountSnapshot, AccountSummary, ActionResult, ClosedTrade,
    OrderRequest, PendingOrder, Position, Quote, TradingAccount
)
from tradesync.errors import BackendConnectionError, TradeSyncError
from tradesync.instruments import Instrument, InstrumentCatalog
from tradesync.logger import setup_logging
from tradesync.session import SessionState, TradingSession

__all__ = [
    'AccountMetrics', 'AccountSnapshot', 'AccountSummary', 'ActionResult',
    'BackendConnectionError', 'BackendConnector', 'ClosedTrade', 'Instrument',
    'InstrumentCatalog', 'OrderRequest', 'PendingOrder', 'Position', 'Quote',
    'SessionState', 'TradeSyncError', 'TradingAccount', 'TradingSession', 'setup_logging',
]
