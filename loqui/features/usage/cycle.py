"""
loqui/features/usage/cycle.py

Monthly usage cycles anchored at signup.

Cycle k spans [anchor + k months, anchor + (k+1) months). Month math is
always applied to the original anchor, so a day-31 anchor clamps to the
end of short months without drifting (Jan 31 -> Feb 28 -> Mar 31).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict

from loqui.core.errors import format_timestamp


class BillingCycle(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    def contains(self, t: datetime) -> bool:
        return self.start <= _utc(t) < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {"cycleStart": format_timestamp(self.start), "cycleEnd": format_timestamp(self.end)}


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _shift(anchor: datetime, months: int) -> datetime:
    return anchor + relativedelta(months=months)


def cycle_window(anchor: datetime, now: Optional[datetime] = None) -> BillingCycle:
    """Return the cycle containing now. A future anchor yields its first cycle."""
    anchor = _utc(anchor)
    now = _utc(now) if now is not None else datetime.now(timezone.utc)

    if anchor > now:
        return BillingCycle(start=anchor, end=_shift(anchor, 1))

    # Estimate from the calendar difference, then correct by at most a step each way
    k = max(0, (now.year - anchor.year) * 12 + (now.month - anchor.month))
    while k > 0 and _shift(anchor, k) > now:
        k -= 1
    while _shift(anchor, k + 1) <= now:
        k += 1

    return BillingCycle(start=_shift(anchor, k), end=_shift(anchor, k + 1))
