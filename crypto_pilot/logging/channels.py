"""Per-channel event loggers (signal, trade, ledger, scan)."""

from __future__ import annotations

import logging

_CHANNELS = {
    "signal": "SIGNAL",
    "trade": "TRADE",
    "ledger": "LEDGER",
    "scan": "SCAN",
}


def _channel_logger(channel: str) -> logging.Logger:
    logger = logging.getLogger(f"crypto_pilot.{channel}")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(f"%(asctime)s | {_CHANNELS[channel]} | %(levelname)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def get_signal_logger() -> logging.Logger:
    return _channel_logger("signal")


def get_trade_logger() -> logging.Logger:
    return _channel_logger("trade")


def get_ledger_logger() -> logging.Logger:
    return _channel_logger("ledger")


def get_scan_logger() -> logging.Logger:
    return _channel_logger("scan")


def set_level(level: str | int) -> None:
    """Apply one level to every channel, e.g. from the ``logging.level`` setting."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    for channel in _CHANNELS:
        _channel_logger(channel).setLevel(level)
