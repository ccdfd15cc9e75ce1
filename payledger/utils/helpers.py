from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.dialects import postgresql, sqlite

from payledger.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_dt(ts: Any) -> Optional[datetime]:
    """Stripe epoch seconds -> aware UTC datetime."""
    if ts is None or ts == "":
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def safe_int(value: Any) -> Optional[int]:
    """Metadata ids arrive as strings; anything unparsable is treated as absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def dialect_insert(table):
    """INSERT construct that supports ON CONFLICT on the bound dialect."""
    if db.engine.dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)
