"""CLOB REST client for order-book snapshots."""
import logging
from typing import Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import CLOB_BASE_URL
from ..models import OrderBook, PriceLevel
from .gamma import MAX_RETRY_ATTEMPTS, REQUEST_TIMEOUT, RETRY_MAX_WAIT, RETRY_MIN_WAIT

logger = logging.getLogger(__name__)


class ClobBookClient:
    """
    Fetches full order books from ``GET {CLOB_BASE_URL}/book?token_id=...``.

    Used by the engine to refresh both outcome books once per cycle.
    """

    def __init__(self, base_url: str = CLOB_BASE_URL, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    @retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=RETRY_MIN_WAIT, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _get_book_json(self, token_id: str) -> dict:
        response = self.session.get(
            f"{self.base_url}/book",
            params={"token_id": token_id},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()

    def fetch_orderbook(self, token_id: str) -> Optional[OrderBook]:
        """
        Fetch the order book for a token.

        Args:
            token_id: Outcome token ID

        Returns:
            OrderBook with levels in server order, or None on failure.
        """
        try:
            data = self._get_book_json(token_id)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Failed to fetch order book for {token_id[:16]}...: {e}")
            return None

        if not isinstance(data, dict):
            return None

        try:
            bids = [PriceLevel(float(b["price"]), float(b["size"])) for b in data.get("bids", [])]
            asks = [PriceLevel(float(a["price"]), float(a["size"])) for a in data.get("asks", [])]
            timestamp = int(float(data.get("timestamp") or 0))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed order book for {token_id[:16]}...: {e}")
            return None

        return OrderBook(
            token_id=token_id,
            market=str(data.get("market", "")),
            bids=bids,
            asks=asks,
            timestamp=timestamp,
            hash=str(data.get("hash", "")),
        )
