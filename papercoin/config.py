import os
from dotenv import load_dotenv

load_dotenv()

PORT = int(os.getenv("PORT", 8001))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "papercoin.log")

# "mongodb" for the real store, "memory" for local runs without a replica set
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "mongodb")

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
MONGO_DB = os.getenv("MONGO_DB", "papercoin")

# Price cache is disabled when unset
REDIS_HOST = os.getenv("REDIS_HOST")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", 0))

# Seconds a cached price stays usable for live P&L
PRICE_CACHE_TTL = int(os.getenv("PRICE_CACHE_TTL", 60))
