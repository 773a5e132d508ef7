from datetime import datetime, timezone


def utcnow() -> datetime:
    """UTC actual sin tzinfo, el mismo formato que se guarda en la base."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
