from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from functools import cached_property
from typing import Iterator, Optional, Sequence

import pandas as pd

# CSV column -> Trade attribute
COLUMN_FIELDS = {
    "time": "time",
    "coin": "coin",
    "dir": "dir",
    "px": "px",
    "sz": "sz",
    "ntl": "ntl",
    "fee": "fee",
    "closedPnl": "closed_pnl",
}
NUMERIC_FIELDS = ["px", "sz", "ntl", "fee", "closed_pnl"]


@dataclass(frozen=True)
class Trade:
    """One executed fill from the exchange export.

    ``time`` is naive: it carries no timezone until analytics projects it into
    the zone the user picked.
    """
    time: datetime
    coin: str
    dir: str
    px: float
    sz: float
    ntl: float
    fee: float
    closed_pnl: float

    def as_row(self) -> dict:
        """Return the trade keyed by CSV column names."""
        return {col: getattr(self, attr) for col, attr in COLUMN_FIELDS.items()}


def _field_for(key: str) -> str:
    if key in COLUMN_FIELDS:
        return COLUMN_FIELDS[key]
    if key in COLUMN_FIELDS.values():
        return key
    raise ValueError(f"Unknown trade field: {key!r}. Expected one of {list(COLUMN_FIELDS)}")


@dataclass(frozen=True)
class TradeCollection:
    """Immutable, ordered set of trades from a single upload.

    Order is input row order, not time order.
    """
    trades: tuple[Trade, ...] = ()

    @classmethod
    def of(cls, trades: Sequence[Trade]) -> "TradeCollection":
        return cls(tuple(trades))

    def __len__(self) -> int:
        return len(self.trades)

    def __iter__(self) -> Iterator[Trade]:
        return iter(self.trades)

    def __getitem__(self, index: int) -> Trade:
        return self.trades[index]

    def __bool__(self) -> bool:
        return bool(self.trades)

    @cached_property
    def _frame(self) -> pd.DataFrame:
        attrs = [f.name for f in fields(Trade)]
        df = pd.DataFrame.from_records(
            [tuple(getattr(t, a) for a in attrs) for t in self.trades],
            columns=attrs,
        )
        df["time"] = pd.to_datetime(df["time"])
        df["coin"] = df["coin"].astype(object)
        df["dir"] = df["dir"].astype(object)
        df[NUMERIC_FIELDS] = df[NUMERIC_FIELDS].astype(float)
        return df

    def to_frame(self) -> pd.DataFrame:
        """Return the trades as a DataFrame (one column per Trade attribute).

        The returned frame is a copy; callers may mutate it freely.
        """
        return self._frame.copy()

    def sorted_by(self, key: str = "time", descending: bool = False) -> "TradeCollection":
        """Sort for tabular display.

        ``key`` may be a CSV column name (``closedPnl``) or an attribute name
        (``closed_pnl``). Ties keep upload order in both directions.
        """
        attr = _field_for(key)
        ordered = sorted(self.trades, key=lambda t: getattr(t, attr), reverse=descending)
        return TradeCollection(tuple(ordered))

    def between(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> "TradeCollection":
        """Trades with ``start <= time <= end``; either bound may be None."""
        if start is None and end is None:
            return self
        kept = [
            t for t in self.trades
            if (start is None or t.time >= start) and (end is None or t.time <= end)
        ]
        return TradeCollection(tuple(kept))
