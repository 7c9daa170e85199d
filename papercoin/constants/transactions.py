from enum import Enum

class TransactionType(str, Enum):
    MARGIN_OPEN = "MARGIN_OPEN"
    MARGIN_CLOSE = "MARGIN_CLOSE"
    MARGIN_LIQUIDATION = "MARGIN_LIQUIDATION"
