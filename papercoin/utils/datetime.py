from datetime import datetime
import pytz

UTC = pytz.timezone("UTC")

def get_utc_time() -> datetime:
    return datetime.now(UTC)

def ensure_utc(value: datetime) -> datetime:
    """MongoDB hands back naive datetimes, re-attach UTC so comparisons stay consistent"""
    if value.tzinfo is None:
        return UTC.localize(value)
    return value.astimezone(UTC)
