from datetime import datetime, timezone

def to_iso(value) -> str:
    # Supabase returns ISO strings or datetimes, normalize to a string
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def parse_timestamp(value) -> datetime | None:
    """Narrow a store timestamp (ISO string, datetime or epoch ms) to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        # Postgres may emit a trailing Z or a +00 offset
        s = str(value).strip().replace("Z", "+00:00")
        if s.endswith("+00"):
            s += ":00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
