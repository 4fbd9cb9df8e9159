"""Calendar bucketing for trade frames.

Frames come from ``TradeCollection.to_frame()``. Keys are naive pandas
Timestamps at midnight (day, Monday of the ISO week) or monthly Periods.
"""

from __future__ import annotations

import pandas as pd

DAY = "day"
WEEK = "week"
MONTH = "month"
PERIODS = (DAY, WEEK, MONTH)

# gap-filling steps; weeks are anchored on Monday
_FREQ = {DAY: "D", WEEK: "W-MON"}


def localize(frame: pd.DataFrame, timezone: str = "UTC") -> pd.DataFrame:
    """Project naive (UTC) trade times into ``timezone``.

    The result is naive again, holding wall-clock time in the target zone, so
    day and week keys follow that zone. Only ``time`` changes.
    """
    out = frame.copy()
    if timezone == "UTC" or out.empty:
        return out
    out["time"] = (
        out["time"].dt.tz_localize("UTC").dt.tz_convert(timezone).dt.tz_localize(None)
    )
    return out


def day_key(times: pd.Series) -> pd.Series:
    return times.dt.normalize()


def week_key(times: pd.Series) -> pd.Series:
    """Monday 00:00 of the ISO week containing each timestamp."""
    days = times.dt.normalize()
    return days - pd.to_timedelta(days.dt.dayofweek, unit="D")


def month_key(times: pd.Series) -> pd.Series:
    return times.dt.to_period("M")


_KEYS = {DAY: day_key, WEEK: week_key, MONTH: month_key}


def bucket(frame: pd.DataFrame, period: str) -> pd.DataFrame:
    """Sum closed PNL and count trades per period.

    Rows are in first-appearance order of their key (upload order), which is
    what ranking ties resolve against. Only periods with trades are present.
    """
    if period not in _KEYS:
        raise ValueError(f"Unknown period {period!r}. Expected one of {PERIODS}")
    if frame.empty:
        return pd.DataFrame({"pnl": pd.Series(dtype=float), "trades": pd.Series(dtype=int)})

    keys = _KEYS[period](frame["time"]).rename("key")
    out = frame.groupby(keys, sort=False).agg(
        pnl=("closed_pnl", "sum"),
        trades=("closed_pnl", "size"),
    )
    return out


def fill_gaps(buckets: pd.DataFrame, period: str) -> pd.DataFrame:
    """Return a contiguous, ascending series from the first to the last key.

    Days or weeks with no trades get pnl 0.0 and trades 0.
    """
    if period not in _FREQ:
        raise ValueError(f"Gap filling supports {list(_FREQ)}, not {period!r}")
    if buckets.empty:
        return buckets

    ordered = buckets.sort_index()
    full = pd.date_range(ordered.index.min(), ordered.index.max(), freq=_FREQ[period])
    filled = ordered.reindex(full, fill_value=0)
    filled["pnl"] = filled["pnl"].astype(float)
    filled["trades"] = filled["trades"].astype(int)
    filled.index.name = "key"
    return filled


def period_bounds(key, period: str) -> tuple[pd.Timestamp, pd.Timestamp]:
    """First and last calendar day covered by a bucket key."""
    if period == DAY:
        start = pd.Timestamp(key)
        return start, start
    if period == WEEK:
        start = pd.Timestamp(key)
        return start, start + pd.Timedelta(days=6)
    if period == MONTH:
        p = pd.Period(key, freq="M")
        return p.start_time.normalize(), p.end_time.normalize()
    raise ValueError(f"Unknown period {period!r}. Expected one of {PERIODS}")
