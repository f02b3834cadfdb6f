"""
Market resolver for rotating 15-minute up/down markets.

The Gamma API exposes these markets under a predictable slug:

    {asset}-updown-15m-{unix_timestamp}
    e.g. btc-updown-15m-1767729600

The timestamp sits on a 900s boundary. The resolver tries the five windows
around "now" (two before, the current one and two after) and returns the
first market that is active, not closed and not yet expired.

Gamma returns ``outcomes``, ``clobTokenIds`` and ``outcomePrices`` as
JSON-encoded strings. "Up"/"Yes" maps to the yes token, "Down"/"No" to the
no token.
"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import GAMMA_API_URL, MARKET_ASSET, MARKET_WINDOW_SECONDS
from ..models import MarketDescriptor

logger = logging.getLogger(__name__)

# REST retry policy (shared with the CLOB book client)
MAX_RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT = 0.5
RETRY_MAX_WAIT = 2.0

REQUEST_TIMEOUT = 10


class MarketResolutionError(Exception):
    """Raised when a Gamma market payload cannot be mapped to a descriptor."""
    pass


def _decode_list(value) -> List:
    """Decode a JSON-string list field (Gamma encodes arrays as strings)."""
    if isinstance(value, str):
        try:
            value = json.loads(value or "[]")
        except ValueError as e:
            raise MarketResolutionError(f"Malformed list field: {value[:50]}") from e
    if not isinstance(value, list):
        raise MarketResolutionError(f"Expected list, got {type(value).__name__}")
    return value


def _parse_end_time(data: Dict) -> Optional[datetime]:
    """Parse market end time from ISO date fields, falling back to the slug."""
    end_date = data.get("endDate") or data.get("endDateIso")
    if isinstance(end_date, str) and end_date:
        try:
            end_time = datetime.fromisoformat(end_date.replace("Z", "+00:00"))
        except ValueError:
            end_time = None
        if end_time is not None:
            if end_time.tzinfo is None:
                end_time = end_time.replace(tzinfo=timezone.utc)
            return end_time

    parts = str(data.get("slug", "")).split("-")
    if parts and parts[-1].isdigit():
        return datetime.fromtimestamp(int(parts[-1]), tz=timezone.utc)
    return None


class GammaMarketResolver:
    """
    Finds the currently active 15-minute market for an asset.

    Example:
        resolver = GammaMarketResolver(asset="btc")
        market = resolver.detect_current_market()
        if market:
            print(market.question, market.yes_token_id, market.no_token_id)
    """

    def __init__(
        self,
        asset: str = MARKET_ASSET,
        base_url: str = GAMMA_API_URL,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the resolver.

        Args:
            asset: Asset prefix used in slugs (btc, eth, ...)
            base_url: Gamma API base URL
            session: Optional requests session (replaceable in tests)
            clock: Unix time source in seconds
        """
        self.asset = asset.lower()
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self._clock = clock

    # =========================================================================
    # Slugs
    # =========================================================================

    def build_slug(self, timestamp: int) -> str:
        return f"{self.asset}-updown-15m-{timestamp}"

    def candidate_timestamps(self) -> List[int]:
        """Window boundaries to try: current window plus two on each side."""
        now = int(self._clock())
        base = (now // MARKET_WINDOW_SECONDS) * MARKET_WINDOW_SECONDS
        return [base + i * MARKET_WINDOW_SECONDS for i in range(-2, 3)]

    # =========================================================================
    # HTTP
    # =========================================================================

    @retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=RETRY_MIN_WAIT, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _get_market_json(self, slug: str) -> Optional[Dict]:
        response = self.session.get(
            f"{self.base_url}/markets/slug/{slug}", timeout=REQUEST_TIMEOUT
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, dict) else None

    def _fetch_raw(self, slug: str) -> Optional[Dict]:
        try:
            return self._get_market_json(slug)
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"Failed to fetch market {slug}: {e}")
            return None

    # =========================================================================
    # Public API
    # =========================================================================

    def detect_current_market(self) -> Optional[MarketDescriptor]:
        """
        Locate the active market by trying the windows around now.

        Returns:
            MarketDescriptor for the first active, open, unexpired market,
            or None if none is found.
        """
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)

        for ts in self.candidate_timestamps():
            slug = self.build_slug(ts)
            raw = self._fetch_raw(slug)
            if raw is None:
                continue

            end_time = _parse_end_time(raw)
            expired = end_time is None or end_time <= now
            if raw.get("closed") or not raw.get("active") or expired:
                logger.debug(
                    f"Market {slug} not tradeable "
                    f"(closed={raw.get('closed')}, active={raw.get('active')}, expired={expired})"
                )
                continue

            market = self.parse_market(raw, slug)
            if market is not None:
                logger.info(f"Found active market: {market.question}")
                return market

        logger.warning(f"No active {self.asset} 15m market found in recent windows")
        return None

    def fetch_market_by_slug(self, slug: str) -> Optional[MarketDescriptor]:
        """
        Fetch a specific market by slug.

        Returns:
            MarketDescriptor, or None when missing, inactive or closed.
        """
        raw = self._fetch_raw(slug)
        if raw is None:
            return None
        if not raw.get("active") or raw.get("closed"):
            logger.warning(f"Market {slug} is not active")
            return None
        return self.parse_market(raw, slug)

    def parse_market(self, data: Dict, slug: str = "") -> Optional[MarketDescriptor]:
        """
        Map a Gamma market payload to a MarketDescriptor.

        Returns:
            MarketDescriptor, or None if the structure is invalid.
        """
        try:
            return self._build_descriptor(data, slug)
        except MarketResolutionError as e:
            logger.warning(f"Invalid market structure for {data.get('slug') or slug}: {e}")
            return None

    def _build_descriptor(self, data: Dict, slug: str) -> MarketDescriptor:
        outcomes = _decode_list(data.get("outcomes", "[]"))
        token_ids = _decode_list(data.get("clobTokenIds", "[]"))
        prices = _decode_list(data.get("outcomePrices", "[]"))

        if len(outcomes) != 2 or len(token_ids) != 2:
            raise MarketResolutionError("expected 2 outcomes and 2 tokens")

        up_idx = down_idx = None
        for i, outcome in enumerate(outcomes):
            name = str(outcome).strip().lower()
            if name in ("up", "yes"):
                up_idx = i
            elif name in ("down", "no"):
                down_idx = i

        if up_idx is None or down_idx is None:
            raise MarketResolutionError(f"could not identify up/down outcomes in {outcomes}")

        end_time = _parse_end_time(data)
        if end_time is None:
            raise MarketResolutionError("missing end date")

        def price_at(idx: int) -> float:
            try:
                return float(prices[idx])
            except (IndexError, TypeError, ValueError):
                return 0.5

        return MarketDescriptor(
            market_id=data.get("conditionId", "") or data.get("condition_id", ""),
            question=data.get("question", "Unknown"),
            end_time=end_time,
            yes_token_id=str(token_ids[up_idx]),
            no_token_id=str(token_ids[down_idx]),
            yes_price=price_at(up_idx),
            no_price=price_at(down_idx),
            slug=data.get("slug") or slug,
        )
