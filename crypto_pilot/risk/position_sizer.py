"""Position sizing from a per-trade risk budget."""

from __future__ import annotations

from enum import Enum
from math import floor

from crypto_pilot.config.constants import QTY_DECIMALS


class RiskMode(str, Enum):
    FIXED = "fixed"
    FRACTION = "fraction"


class PositionSizer:
    """Converts a risk budget and stop distance into contract quantity."""

    def __init__(self, risk_mode: RiskMode | str, risk_fraction: float, risk_amount: float) -> None:
        self.risk_mode = RiskMode(risk_mode)
        self.risk_fraction = risk_fraction
        self.risk_amount = risk_amount

    def risk_budget(self, capital: float) -> float:
        """Quote amount the trade may lose at its stop."""
        if self.risk_mode is RiskMode.FIXED:
            return self.risk_amount
        return max(0.0, capital) * self.risk_fraction

    def size(self, capital: float, entry: float, stop: float, qty_decimals: int = QTY_DECIMALS) -> float:
        """Return quantity; 0 means skip."""
        per_unit = abs(entry - stop)
        budget = self.risk_budget(capital)
        if per_unit <= 0 or budget <= 0:
            return 0.0

        scale = 10 ** qty_decimals
        # Floor so the realized risk never exceeds the budget.
        return floor((budget / per_unit) * scale) / scale
