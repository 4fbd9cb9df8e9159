from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidFilterInput
from .trades import TradeCollection

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"

# zones offered by the dashboard picker; any valid IANA name is accepted
SUPPORTED_TIMEZONES = {
    "UTC": "UTC",
    "America/New_York": "Eastern Time",
    "America/Chicago": "Central Time",
    "America/Denver": "Mountain Time",
    "America/Los_Angeles": "Pacific Time",
    "Asia/Tokyo": "Japan Time",
    "Asia/Kuala_Lumpur": "Kuala Lumpur Time",
}


def validate_timezone(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidFilterInput("timezone", name, "expected an IANA zone name")
    name = name.strip()
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidFilterInput("timezone", name, "unknown zone") from e
    return name


def parse_filter_date(field: str, value) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime bound; '' or None clears it.

    Aware values are converted to naive UTC to compare with trade times.
    A bare date means midnight of that day.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidFilterInput(field, value, "expected ISO-8601, e.g. 2024-01-31") from e
    else:
        raise InvalidFilterInput(field, value, "expected a string")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt_timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class InsightsState:
    """One revision of the dashboard selections.

    Every ``with_*`` method returns a new revision; on invalid input it raises
    InvalidFilterInput and the current object is left as it was.
    """
    trades: TradeCollection = TradeCollection()
    timezone: str = DEFAULT_TIMEZONE
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    revision: int = 0

    def _next(self, **changes) -> "InsightsState":
        return replace(self, revision=self.revision + 1, **changes)

    def with_trades(self, trades: TradeCollection) -> "InsightsState":
        # a new upload replaces the previous collection wholesale
        return self._next(trades=trades)

    def with_timezone(self, name) -> "InsightsState":
        return self._next(timezone=validate_timezone(name))

    def with_start(self, value) -> "InsightsState":
        return self._next(start=parse_filter_date("start date", value))

    def with_end(self, value) -> "InsightsState":
        return self._next(end=parse_filter_date("end date", value))

    def window(self) -> TradeCollection:
        """Trades inside the inclusive [start, end] range on raw time."""
        return self.trades.between(self.start, self.end)


def build_state(trades: TradeCollection, timezone=None, start=None, end=None) -> InsightsState:
    """Apply optional selections to a fresh state, validating each one."""
    state = InsightsState().with_trades(trades)
    if timezone:
        state = state.with_timezone(timezone)
    if start:
        state = state.with_start(start)
    if end:
        state = state.with_end(end)
    if state.start and state.end and state.start > state.end:
        logger.info("Date filter start %s is after end %s; window is empty", state.start, state.end)
    return state
