from enum import Enum

class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    LIQUIDATED = "LIQUIDATED"

class PositionDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

class PositionFilter(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    LIQUIDATED = "LIQUIDATED"
    ALL = "ALL"
