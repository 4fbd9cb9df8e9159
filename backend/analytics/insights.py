from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .errors import UndefinedStatistic
from .periods import DAY, MONTH, WEEK, bucket, fill_gaps, localize, period_bounds
from .state import InsightsState
from .trades import Trade, TradeCollection

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Descriptive statistics over a list of fills.
# Three scopes feed the bundle:
# - all trades (unfiltered, raw time): best/worst trade, win/loss, gain/loss,
#   fees, allocation, months
# - the date window (raw time): cumulative/average PNL, pairs
# - the date window projected into the selected zone: days and weeks
# Months ignore both the date window and the timezone.
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class PairStat:
    coin: str
    pnl: float


@dataclass(frozen=True)
class PeriodStat:
    key: str
    start: date
    end: date
    pnl: float
    trades: int


@dataclass(frozen=True)
class SeriesPoint:
    start: date
    pnl: float
    trades: int


@dataclass(frozen=True)
class AllocationSlice:
    coin: str
    share: float  # percent of total absolute notional
    notional: float
    pnl: float


# --------------------------
# PNL totals and ratios
# --------------------------

def cumulative_pnl(trades: TradeCollection) -> float:
    return float(sum(t.closed_pnl for t in trades))


def average_pnl(trades: TradeCollection) -> float:
    if not trades:
        raise UndefinedStatistic("average_pnl")
    return cumulative_pnl(trades) / len(trades)


def total_gain(trades: TradeCollection) -> float:
    return float(sum(t.closed_pnl for t in trades if t.closed_pnl > 0))


def total_loss(trades: TradeCollection) -> float:
    """Sum of losing PNL (zero or negative)."""
    return float(sum(t.closed_pnl for t in trades if t.closed_pnl < 0))


def total_fees(trades: TradeCollection) -> float:
    return float(sum(t.fee for t in trades))


def win_count(trades: TradeCollection) -> int:
    return sum(1 for t in trades if t.closed_pnl > 0)


def loss_count(trades: TradeCollection) -> int:
    return sum(1 for t in trades if t.closed_pnl < 0)


def win_lose_ratio(trades: TradeCollection) -> float:
    """Winning trades over losing trades.

    With no losing trades the divisor is 1, so the ratio equals the win count
    (0.0 for an empty collection). Break-even trades count on neither side.
    """
    return win_count(trades) / (loss_count(trades) or 1)


def pnl_volatility_ratio(trades: TradeCollection) -> float:
    """Average PNL over gross PNL magnitude, scaled by sqrt(trade count).

    avg / (gain - loss) * sqrt(n). A consistency score, not a Sharpe ratio.
    """
    n = len(trades)
    if n == 0:
        raise UndefinedStatistic("pnl_volatility_ratio")
    gross = total_gain(trades) - total_loss(trades)
    if gross == 0:
        raise UndefinedStatistic("pnl_volatility_ratio", "every trade closed flat")
    return float(average_pnl(trades) / gross * np.sqrt(n))


# --------------------------
# Rankings
# --------------------------

def _ranked(trades: TradeCollection) -> List[Trade]:
    # stable: equal PNL keeps upload order
    return sorted(trades, key=lambda t: t.closed_pnl, reverse=True)


def best_trade(trades: TradeCollection) -> Trade:
    if not trades:
        raise UndefinedStatistic("best_trade")
    return _ranked(trades)[0]


def worst_trade(trades: TradeCollection) -> Trade:
    if not trades:
        raise UndefinedStatistic("worst_trade")
    return _ranked(trades)[-1]


def pair_performance(trades: TradeCollection) -> pd.Series:
    """Closed PNL per coin, coins in first-appearance order."""
    df = trades.to_frame()
    return df.groupby("coin", sort=False)["closed_pnl"].sum().astype(float)


def best_pair(trades: TradeCollection) -> PairStat:
    perf = pair_performance(trades)
    if perf.empty:
        raise UndefinedStatistic("best_pair")
    coin = perf.idxmax()
    return PairStat(coin=coin, pnl=float(perf[coin]))


def worst_pair(trades: TradeCollection) -> PairStat:
    perf = pair_performance(trades)
    if perf.empty:
        raise UndefinedStatistic("worst_pair")
    coin = perf.idxmin()
    return PairStat(coin=coin, pnl=float(perf[coin]))


def coin_pnl_breakdown(trades: TradeCollection) -> List[PairStat]:
    perf = pair_performance(trades).sort_values(ascending=False, kind="stable")
    return [PairStat(coin=c, pnl=float(p)) for c, p in perf.items()]


# --------------------------
# Calendar periods
# --------------------------

def period_pnl(trades: TradeCollection, period: str, timezone: str = "UTC") -> pd.DataFrame:
    """Per-period ``pnl`` and ``trades`` for days, weeks or months.

    Months are always bucketed on raw trade time; ``timezone`` only applies to
    days and weeks.
    """
    df = trades.to_frame()
    if period != MONTH:
        df = localize(df, timezone)
    return bucket(df, period)


def _period_stat(buckets: pd.DataFrame, key, period: str) -> PeriodStat:
    start, end = period_bounds(key, period)
    label = str(key) if period == MONTH else start.date().isoformat()
    row = buckets.loc[key]
    return PeriodStat(
        key=label,
        start=start.date(),
        end=end.date(),
        pnl=float(row["pnl"]),
        trades=int(row["trades"]),
    )


def best_week(trades: TradeCollection, timezone: str = "UTC") -> PeriodStat:
    """Week (Mon-Sun) with the highest summed PNL, even if every week lost."""
    weeks = period_pnl(trades, WEEK, timezone)
    if weeks.empty:
        raise UndefinedStatistic("best_week")
    return _period_stat(weeks, weeks["pnl"].idxmax(), WEEK)


def best_month(trades: TradeCollection) -> PeriodStat:
    months = period_pnl(trades, MONTH)
    if months.empty:
        raise UndefinedStatistic("best_month")
    return _period_stat(months, months["pnl"].idxmax(), MONTH)


def busiest_week(trades: TradeCollection, timezone: str = "UTC") -> PeriodStat:
    weeks = period_pnl(trades, WEEK, timezone)
    if weeks.empty:
        raise UndefinedStatistic("busiest_week")
    return _period_stat(weeks, weeks["trades"].idxmax(), WEEK)


def quietest_week(trades: TradeCollection, timezone: str = "UTC") -> PeriodStat:
    """Week with the fewest trades; weeks with no trades are not candidates."""
    weeks = period_pnl(trades, WEEK, timezone)
    if weeks.empty:
        raise UndefinedStatistic("quietest_week")
    return _period_stat(weeks, weeks["trades"].idxmin(), WEEK)


def average_trades_per_week(trades: TradeCollection, timezone: str = "UTC") -> float:
    weeks = period_pnl(trades, WEEK, timezone)
    if weeks.empty:
        raise UndefinedStatistic("average_trades_per_week")
    return len(trades) / len(weeks)


def _series(trades: TradeCollection, period: str, timezone: str) -> List[SeriesPoint]:
    filled = fill_gaps(period_pnl(trades, period, timezone), period)
    return [
        SeriesPoint(start=key.date(), pnl=float(row["pnl"]), trades=int(row["trades"]))
        for key, row in filled.iterrows()
    ]


def daily_series(trades: TradeCollection, timezone: str = "UTC") -> List[SeriesPoint]:
    """One point per calendar day from first to last trading day."""
    return _series(trades, DAY, timezone)


def weekly_series(trades: TradeCollection, timezone: str = "UTC") -> List[SeriesPoint]:
    """One point per ISO week (keyed by Monday) from first to last trading week."""
    return _series(trades, WEEK, timezone)


# --------------------------
# Allocation
# --------------------------

def portfolio_allocation(trades: TradeCollection) -> List[AllocationSlice]:
    """Share of total absolute notional per coin, largest first.

    If every trade has zero notional the shares are all 0.0 rather than NaN.
    """
    df = trades.to_frame()
    if df.empty:
        return []
    df["abs_ntl"] = df["ntl"].abs()
    per_coin = df.groupby("coin", sort=False).agg(notional=("abs_ntl", "sum"), pnl=("closed_pnl", "sum"))
    total = float(per_coin["notional"].sum())
    if total > 0:
        per_coin["share"] = per_coin["notional"] / total * 100.0
    else:
        per_coin["share"] = 0.0
    per_coin = per_coin.sort_values("share", ascending=False, kind="stable")
    return [
        AllocationSlice(coin=coin, share=float(r["share"]), notional=float(r["notional"]), pnl=float(r["pnl"]))
        for coin, r in per_coin.iterrows()
    ]


# --------------------------
# Aggregate
# --------------------------

@dataclass(frozen=True)
class InsightsBundle:
    """Every derived statistic for one state revision.

    Statistics that need trades and had none are None and named in
    ``undefined``; a None here never means zero.
    """
    timezone: str
    start: Optional[datetime]
    end: Optional[datetime]
    trade_count: int
    window_count: int
    cumulative_pnl: float
    average_pnl: Optional[float]
    best_trade: Optional[Trade]
    worst_trade: Optional[Trade]
    best_pair: Optional[PairStat]
    worst_pair: Optional[PairStat]
    win_count: int
    loss_count: int
    win_lose_ratio: float
    total_gain: float
    total_loss: float
    pnl_volatility_ratio: Optional[float]
    total_fees: float
    best_week: Optional[PeriodStat]
    best_month: Optional[PeriodStat]
    busiest_week: Optional[PeriodStat]
    quietest_week: Optional[PeriodStat]
    average_trades_per_week: Optional[float]
    daily_series: Tuple[SeriesPoint, ...] = ()
    weekly_series: Tuple[SeriesPoint, ...] = ()
    portfolio_allocation: Tuple[AllocationSlice, ...] = ()
    coin_pnl_breakdown: Tuple[PairStat, ...] = ()
    undefined: Tuple[str, ...] = field(default_factory=tuple)

    def is_defined(self, name: str) -> bool:
        return name not in self.undefined

    def as_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable payload."""
        return {
            "meta": {
                "timezone": self.timezone,
                "start": _iso(self.start),
                "end": _iso(self.end),
                "n_trades": self.trade_count,
                "n_trades_in_window": self.window_count,
                "undefined": list(self.undefined),
            },
            "pnl": {
                "cumulative": self.cumulative_pnl,
                "average": self.average_pnl,
                "total_gain": self.total_gain,
                "total_loss": self.total_loss,
                "total_fees": self.total_fees,
            },
            "ratios": {
                "wins": self.win_count,
                "losses": self.loss_count,
                "win_lose": self.win_lose_ratio,
                "pnl_volatility": self.pnl_volatility_ratio,
            },
            "best_trade": _trade_payload(self.best_trade),
            "worst_trade": _trade_payload(self.worst_trade),
            "best_pair": _plain(self.best_pair),
            "worst_pair": _plain(self.worst_pair),
            "best_week": _plain(self.best_week),
            "best_month": _plain(self.best_month),
            "busiest_week": _plain(self.busiest_week),
            "quietest_week": _plain(self.quietest_week),
            "average_trades_per_week": self.average_trades_per_week,
            "daily_series": [_plain(p) for p in self.daily_series],
            "weekly_series": [_plain(p) for p in self.weekly_series],
            "portfolio_allocation": [_plain(s) for s in self.portfolio_allocation],
            "coin_pnl_breakdown": [_plain(p) for p in self.coin_pnl_breakdown],
        }


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _plain(obj) -> Optional[Dict[str, Any]]:
    if obj is None:
        return None
    return {k: (v.isoformat() if isinstance(v, (date, datetime)) else v) for k, v in asdict(obj).items()}


def _trade_payload(trade: Optional[Trade]) -> Optional[Dict[str, Any]]:
    if trade is None:
        return None
    row = trade.as_row()
    row["time"] = trade.time.isoformat()
    return row


def build_insights(state: InsightsState) -> InsightsBundle:
    """Recompute the full bundle for one state revision."""
    every = state.trades
    window = state.window()
    tz = state.timezone
    undefined: List[str] = []

    def attempt(fn, *args):
        try:
            return fn(*args)
        except UndefinedStatistic as e:
            undefined.append(e.statistic)
            return None

    bundle = InsightsBundle(
        timezone=tz,
        start=state.start,
        end=state.end,
        trade_count=len(every),
        window_count=len(window),
        cumulative_pnl=cumulative_pnl(window),
        average_pnl=attempt(average_pnl, window),
        best_trade=attempt(best_trade, every),
        worst_trade=attempt(worst_trade, every),
        best_pair=attempt(best_pair, window),
        worst_pair=attempt(worst_pair, window),
        win_count=win_count(every),
        loss_count=loss_count(every),
        win_lose_ratio=win_lose_ratio(every),
        total_gain=total_gain(every),
        total_loss=total_loss(every),
        pnl_volatility_ratio=attempt(pnl_volatility_ratio, every),
        total_fees=total_fees(every),
        best_week=attempt(best_week, window, tz),
        best_month=attempt(best_month, every),
        busiest_week=attempt(busiest_week, window, tz),
        quietest_week=attempt(quietest_week, window, tz),
        average_trades_per_week=attempt(average_trades_per_week, window, tz),
        daily_series=tuple(daily_series(window, tz)),
        weekly_series=tuple(weekly_series(window, tz)),
        portfolio_allocation=tuple(portfolio_allocation(every)),
        coin_pnl_breakdown=tuple(coin_pnl_breakdown(every)),
        undefined=tuple(undefined),
    )
    if undefined:
        logger.debug("Revision %d: undefined statistics %s", state.revision, undefined)
    return bundle
