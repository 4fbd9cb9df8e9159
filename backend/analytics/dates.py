"""Date resolution for exported trade timestamps.

Exports from different tools disagree on the timestamp layout, so every value
is tried against a fixed, ordered list of layouts. The first layout that parses
the whole string into a real calendar date wins. The order is part of the
contract: ``03/04/2024`` resolves to 4 March 2024 because ``%m/%d/%Y`` comes
before ``%d/%m/%Y``. Do not reorder.
"""

from __future__ import annotations

from datetime import datetime

from .errors import DateResolutionFailure

DATE_FORMATS = [
    "%d/%m/%Y - %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
]


def _resolve(value) -> tuple[datetime, str]:
    if isinstance(value, str) and value.strip():
        for fmt in DATE_FORMATS:
            try:
                # strptime rejects impossible dates (Feb 30, hour 25) as ValueError
                return datetime.strptime(value.strip(), fmt), fmt
            except ValueError:
                continue
    raise DateResolutionFailure(value)


def resolve_date(value) -> datetime:
    """Return the naive datetime for ``value`` or raise DateResolutionFailure."""
    return _resolve(value)[0]


def resolve_format(value) -> str:
    """Return the layout ``resolve_date`` would use for ``value``."""
    return _resolve(value)[1]
