from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Server-side timestamp in the ISO-8601 form stored inside documents."""
    return utc_now().isoformat()
