# tradesync/instruments.py
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Literal

Category = Literal['Forex', 'Metals', 'Crypto']

METALS = {'XAUUSD', 'XAGUSD'}
CRYPTO = {
    'BTCUSD', 'ETHUSD', 'BNBUSD', 'SOLUSD', 'XRPUSD', 'ADAUSD',
    'DOGEUSD', 'DOTUSD', 'MATICUSD', 'LTCUSD', 'AVAXUSD', 'LINKUSD',
}

# Units per lot
FOREX_CONTRACT_SIZE = 100000
CONTRACT_SIZES = {'XAUUSD': 100, 'XAGUSD': 5000}
CRYPTO_CONTRACT_SIZE = 1


def category_for(symbol: str) -> Category:
    """Returns the market segment a symbol trades in. Unknown symbols are treated as forex."""
    if symbol in METALS:
        return 'Metals'
    if symbol in CRYPTO:
        return 'Crypto'
    return 'Forex'


def contract_size_for(symbol: str) -> float:
    if symbol in CONTRACT_SIZES:
        return CONTRACT_SIZES[symbol]
    if symbol in CRYPTO:
        return CRYPTO_CONTRACT_SIZE
    return FOREX_CONTRACT_SIZE


@dataclass(frozen=True)
class Instrument:
    """A tradable symbol as shown in the market watch."""
    symbol: str
    name: str
    category: Category
    contract_size: float
    starred: bool = False

    @classmethod
    def create(cls, symbol: str, name: str, starred: bool = False) -> 'Instrument':
        return cls(symbol, name, category_for(symbol), contract_size_for(symbol), starred)


DEFAULT_INSTRUMENTS: List[Instrument] = [
    Instrument.create('EURUSD', 'EUR/USD', starred=True),
    Instrument.create('GBPUSD', 'GBP/USD', starred=True),
    Instrument.create('USDJPY', 'USD/JPY'),
    Instrument.create('USDCHF', 'USD/CHF'),
    Instrument.create('AUDUSD', 'AUD/USD'),
    Instrument.create('NZDUSD', 'NZD/USD'),
    Instrument.create('USDCAD', 'USD/CAD'),
    Instrument.create('EURGBP', 'EUR/GBP'),
    Instrument.create('EURJPY', 'EUR/JPY'),
    Instrument.create('GBPJPY', 'GBP/JPY'),
    Instrument.create('XAUUSD', 'Gold', starred=True),
    Instrument.create('XAGUSD', 'Silver'),
    Instrument.create('BTCUSD', 'Bitcoin', starred=True),
    Instrument.create('ETHUSD', 'Ethereum'),
    Instrument.create('BNBUSD', 'BNB'),
    Instrument.create('SOLUSD', 'Solana'),
    Instrument.create('XRPUSD', 'XRP'),
    Instrument.create('ADAUSD', 'Cardano'),
    Instrument.create('DOGEUSD', 'Dogecoin'),
    Instrument.create('DOTUSD', 'Polkadot'),
    Instrument.create('MATICUSD', 'Polygon'),
    Instrument.create('LTCUSD', 'Litecoin'),
    Instrument.create('AVAXUSD', 'Avalanche'),
    Instrument.create('LINKUSD', 'Chainlink'),
]


class InstrumentCatalog:
    """
    Holds the instrument list for a session and the user's watchlist.
    The price feed reads `symbols()` on every tick, so additions and removals
    take effect on the next poll.
    """
    def __init__(self, instruments: List[Instrument] | None = None):
        source = DEFAULT_INSTRUMENTS if instruments is None else instruments
        self._instruments: Dict[str, Instrument] = {inst.symbol: inst for inst in source}

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._instruments

    def __len__(self) -> int:
        return len(self._instruments)

    def get(self, symbol: str) -> Instrument | None:
        return self._instruments.get(symbol)

    def symbols(self) -> List[str]:
        return list(self._instruments)

    def all(self) -> List[Instrument]:
        return list(self._instruments.values())

    def add(self, instrument: Instrument):
        if instrument.symbol in self._instruments:
            logging.warning(f"CATALOG: {instrument.symbol} is already listed.")
            return
        self._instruments[instrument.symbol] = instrument

    def remove(self, symbol: str):
        self._instruments.pop(symbol, None)

    def toggle_star(self, symbol: str) -> bool:
        """Flips watchlist membership and returns the new starred flag."""
        instrument = self._instruments.get(symbol)
        if instrument is None:
            raise KeyError(symbol)
        updated = replace(instrument, starred=not instrument.starred)
        self._instruments[symbol] = updated
        return updated.starred

    def watchlist(self, search: str = '') -> List[Instrument]:
        return [inst for inst in self._instruments.values() if inst.starred and self._matches(inst, search)]

    def by_category(self, category: Category, search: str = '') -> List[Instrument]:
        return [inst for inst in self._instruments.values() if inst.category == category and self._matches(inst, search)]

    @staticmethod
    def _matches(instrument: Instrument, search: str) -> bool:
        term = search.lower()
        return term in instrument.symbol.lower() or term in instrument.name.lower()
