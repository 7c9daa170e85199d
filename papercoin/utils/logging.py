from loguru import logger

from papercoin.config import LOG_FILE

logger.add(LOG_FILE, rotation="200 MB", retention="10 days", compression="zip", format="{time} {level} {message}", backtrace=True, diagnose=True)
