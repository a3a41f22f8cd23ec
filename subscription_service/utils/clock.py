from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    """Time source handed to the services so tests can freeze or move time"""

    def now(self) -> datetime:
        return utcnow()
