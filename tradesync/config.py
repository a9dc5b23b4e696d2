# tradesync/config.py
import os
from dotenv import load_dotenv

# Load environment variables from a .env file for local development
load_dotenv()

class Config:
    """Main configuration class loading settings from environment variables."""
    # --- Backend ---
    API_URL = os.getenv('TRADESYNC_API_URL', 'http://localhost:5001/api').rstrip('/')
    REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', 10.0)) # Seconds, per request

    # --- Polling Cadence (seconds) ---
    PRICE_POLL_INTERVAL = float(os.getenv('PRICE_POLL_INTERVAL', 1.0))
    ACCOUNT_POLL_INTERVAL = float(os.getenv('ACCOUNT_POLL_INTERVAL', 2.0))
    HISTORY_POLL_INTERVAL = float(os.getenv('HISTORY_POLL_INTERVAL', 10.0))
    POLL_JITTER = float(os.getenv('POLL_JITTER', 0.0)) # Max random delay added to each sleep
    HISTORY_LIMIT = int(os.getenv('HISTORY_LIMIT', 50))

    # --- Trading Defaults ---
    DEFAULT_LEVERAGE = os.getenv('DEFAULT_LEVERAGE', '1:100')
    QUOTE_STALE_AFTER = float(os.getenv('QUOTE_STALE_AFTER', 5.0))

    # --- Logging ---
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

config = Config()
