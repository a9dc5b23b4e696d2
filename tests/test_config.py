import logging
import sys

from tradesync.account_poller import AccountStatePoller
from tradesync.config import config
from tradesync.logger import setup_logging
from tradesync.price_feed import PriceFeedPoller
from tests.factories import make_connector


def test_setup_logging_uses_requested_level(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    setup_logging("debug")

    assert calls[0]["level"] == logging.DEBUG
    assert calls[0]["stream"] is sys.stdout


def test_setup_logging_falls_back_to_config(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(config, "LOG_LEVEL", "WARNING")

    setup_logging()

    assert calls[0]["level"] == logging.WARNING


def test_components_default_to_config_cadence():
    connector = make_connector()
    feed = PriceFeedPoller(connector, symbol_source=list)
    poller = AccountStatePoller(connector, quote_source=dict)

    assert feed.interval == config.PRICE_POLL_INTERVAL
    assert feed.jitter == config.POLL_JITTER
    assert poller.fast_interval == config.ACCOUNT_POLL_INTERVAL
    assert poller.history_interval == config.HISTORY_POLL_INTERVAL
    assert poller.history_limit == config.HISTORY_LIMIT


def test_overrides_win_over_config():
    feed = PriceFeedPoller(make_connector(), symbol_source=list, interval=0.25, jitter=0.1)
    assert (feed.interval, feed.jitter) == (0.25, 0.1)


def test_setup_logging_unknown_level_falls_back_to_info(monkeypatch):
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: None)
    assert setup_logging("chatty") == logging.INFO
