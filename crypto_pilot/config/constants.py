"""Project-wide constants for the futures signal bot."""

from __future__ import annotations

DEFAULT_QUOTE_ASSET = "USDT"
DEFAULT_CONTRACT_TYPE = "PERPETUAL"
DEFAULT_INTERVAL = "15m"

# Engine behavior
DEFAULT_SCAN_INTERVAL_SECONDS = 4 * 3600.0
DEFAULT_POLL_INTERVAL_SECONDS = 60.0
DEFAULT_TOP_N = 5
DEFAULT_CANDLE_LIMIT = 300
DEFAULT_UNIVERSE_LIMIT = 100

# Fallback quantity precision when exchange info omits it
QTY_DECIMALS = 6

# Environment variable overriding the settings file location
CONFIG_ENV_VAR = "CRYPTO_PILOT_CONFIG"
