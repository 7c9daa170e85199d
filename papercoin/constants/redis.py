from enum import Enum

class HashSets(Enum):
    PRICES = "prices"
