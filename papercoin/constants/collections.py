from enum import Enum

class Collections(Enum):
    POSITIONS = "margin_positions"
    PORTFOLIOS = "portfolios"
    TRANSACTIONS = "transactions"
