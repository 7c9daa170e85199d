from decimal import Decimal

LEVERAGE_OPTIONS = (2, 5, 10)

MIN_MARGIN = Decimal("10.00")

# Liquidate slightly before the position's margin is fully consumed
LIQUIDATION_BUFFER = Decimal("0.05")

LEVERAGE_DESCRIPTIONS = {
    2: {"label": "2x", "description": "Conservative - Liquidation at -50%", "risk": "Low"},
    5: {"label": "5x", "description": "Moderate - Liquidation at -20%", "risk": "Medium"},
    10: {"label": "10x", "description": "Aggressive - Liquidation at -10%", "risk": "High"},
}
