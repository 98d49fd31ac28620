"""Wall-clock capability used by the validity and activity rules."""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fixed_clock(moment: datetime) -> Clock:
    """Return a clock frozen at ``moment`` (assumed UTC when naive)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    def _now() -> datetime:
        return moment

    return _now
