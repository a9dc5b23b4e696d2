# tradesync/backend_connector.py
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from tradesync.config import config
from tradesync.errors import BackendConnectionError

class BackendConnector:
    """
    Handles all network I/O with the trading backend.
    - Batch quote lookups for the price feed.
    - Account, position, pending order, history and summary reads.
    - Order mutations (open, modify, close, cancel).
    Every call returns the backend's JSON envelope (`{"success": ..., ...}`),
    including business rejections sent with a 4xx status. Transport failures,
    timeouts and non-JSON bodies raise BackendConnectionError.
    """
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = (base_url or config.API_URL).rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout or config.REQUEST_TIMEOUT)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> 'BackendConnector':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        """Closes the underlying HTTP session if this connector created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.request(method, url, params=params, json=body) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise BackendConnectionError(method, path, f"HTTP {response.status} with a non-JSON body") from e
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendConnectionError(method, path, str(e) or type(e).__name__) from e

        if not isinstance(data, dict):
            raise BackendConnectionError(method, path, f"HTTP {status} with an unexpected payload")
        if status >= 400:
            logging.debug(f"{method} {path} answered HTTP {status}: {data.get('message')}")
        return data

    # --- Market Data ---

    async def get_batch_prices(self, symbols: List[str]) -> Dict[str, Any]:
        """Fetches bid/ask for a batch of symbols."""
        return await self._request('POST', '/prices/batch', body={'symbols': list(symbols)})

    # --- Account Reads ---

    async def get_accounts(self, user_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/trading-accounts/user/{user_id}')

    async def get_open_trades(self, account_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/trade/open/{account_id}')

    async def get_pending_orders(self, account_id: str) -> Dict[str, Any]:
        return await self._request('GET', f'/trade/pending/{account_id}')

    async def get_trade_history(self, account_id: str, limit: int = 50) -> Dict[str, Any]:
        return await self._request('GET', f'/trade/history/{account_id}', params={'limit': limit})

    async def get_account_summary(self, account_id: str, prices: Optional[Dict[str, Dict[str, float]]] = None) -> Dict[str, Any]:
        """
        Fetches the server-side account summary. The client's current quotes are
        passed along so the server's floating P&L matches what the client shows.
        """
        params = {'prices': json.dumps(prices)} if prices else None
        return await self._request('GET', f'/trade/summary/{account_id}', params=params)

    # --- Order Mutations ---

    async def open_trade(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logging.info(f"Submitting {payload.get('orderType')} {payload.get('side')} {payload.get('quantity')} {payload.get('symbol')}")
        return await self._request('POST', '/trade/open', body=payload)

    async def modify_trade(self, trade_id: str, stop_loss: Optional[float], take_profit: Optional[float]) -> Dict[str, Any]:
        logging.info(f"Modifying trade {trade_id}: SL={stop_loss} TP={take_profit}")
        return await self._request('PUT', '/trade/modify', body={'tradeId': trade_id, 'sl': stop_loss, 'tp': take_profit})

    async def close_trade(self, trade_id: str, bid: float, ask: float) -> Dict[str, Any]:
        logging.info(f"Closing trade {trade_id} at bid={bid} ask={ask}")
        return await self._request('POST', '/trade/close', body={'tradeId': trade_id, 'bid': bid, 'ask': ask})

    async def cancel_order(self, trade_id: str) -> Dict[str, Any]:
        logging.info(f"Cancelling pending order {trade_id}")
        return await self._request('POST', '/trade/cancel', body={'tradeId': trade_id})
