"""Configuration management for the up/down signal engine."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# =============================================================================
# API ENDPOINTS
# =============================================================================

CLOB_BASE_URL = os.getenv("CLOB_BASE_URL", "https://clob.polymarket.com")
GAMMA_API_URL = os.getenv("GAMMA_API_URL", "https://gamma-api.polymarket.com")
CLOB_WS_URL = os.getenv("CLOB_WS_URL", "wss://ws-subscriptions-clob.polymarket.com/ws/market")
BINANCE_WS_URL = os.getenv("BINANCE_WS_URL", "wss://stream.binance.com:9443/ws/btcusdt@miniTicker")

# Public Polygon RPC endpoint (Chainlink aggregator reads)
POLYGON_RPC_URL = os.getenv("POLYGON_RPC_URL", "https://polygon-rpc.com")

# Chainlink BTC/USD aggregator proxy on Polygon
CHAINLINK_BTC_USD_FEED = os.getenv(
    "CHAINLINK_BTC_USD_FEED", "0xc907E116054Ad103354f2D350FD2514433D57F6f"
)

# =============================================================================
# STREAM SETTINGS
# =============================================================================

WS_MAX_RECONNECT_ATTEMPTS = int(os.getenv("WS_MAX_RECONNECT_ATTEMPTS", "5"))
WS_RECONNECT_BASE_DELAY = float(os.getenv("WS_RECONNECT_BASE_DELAY", "1.0"))
WS_PING_INTERVAL = float(os.getenv("WS_PING_INTERVAL", "30"))

# Chainlink updates every ~15-30s
CHAINLINK_POLL_INTERVAL = float(os.getenv("CHAINLINK_POLL_INTERVAL", "15"))
CHAINLINK_STALE_AFTER = float(os.getenv("CHAINLINK_STALE_AFTER", "60"))

# =============================================================================
# PAPER TRADING
# =============================================================================

# Starting simulated capital (USD)
STARTING_CAPITAL = float(os.getenv("STARTING_CAPITAL", "100"))

# Hard cap per trade used by Kelly sizing (USD)
MAX_POSITION_SIZE = float(os.getenv("MAX_POSITION_SIZE", "100"))

# Seconds between evaluation cycles
CHECK_INTERVAL = float(os.getenv("CHECK_INTERVAL", "10"))

# =============================================================================
# 15-MINUTE MARKETS
# =============================================================================

# Asset prefix used in market slugs: {asset}-updown-15m-{timestamp}
MARKET_ASSET = os.getenv("MARKET_ASSET", "btc")

# Market window length in seconds
MARKET_WINDOW_SECONDS = 900
