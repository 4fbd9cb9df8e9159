import io
import json
from dataclasses import FrozenInstanceError
from datetime import date, datetime
from pathlib import Path
from unittest import mock

import pandas as pd
import requests
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase

from .coach import (
    ChatCompletionSummarizer,
    SummaryRequest,
    build_prompt,
    coaching_message,
    generate_summary,
    summary_request,
)
from .dates import DATE_FORMATS, resolve_date, resolve_format
from .errors import (
    DateResolutionFailure,
    InvalidFilterInput,
    MalformedInput,
    NumericFieldInvalid,
    RequiredFieldMissing,
    SummaryUnavailable,
    UndefinedStatistic,
)
from .insights import (
    average_pnl,
    best_month,
    best_pair,
    best_trade,
    best_week,
    build_insights,
    busiest_week,
    coin_pnl_breakdown,
    cumulative_pnl,
    daily_series,
    pnl_volatility_ratio,
    portfolio_allocation,
    quietest_week,
    total_fees,
    total_gain,
    total_loss,
    weekly_series,
    win_lose_ratio,
    worst_pair,
    worst_trade,
)
from .parser import NO_TRADES_MESSAGE, parse_trade_csv, parse_trade_file, serialize_trades
from .periods import DAY, WEEK, bucket, fill_gaps, localize, week_key
from .state import InsightsState, build_state
from .trades import Trade, TradeCollection

HEADER = "time,coin,dir,px,sz,ntl,fee,closedPnl"


def _csv(*rows: str) -> str:
    return "\n".join((HEADER,) + rows) + "\n"


def _trade(time="2024-01-01 12:00:00", coin="BTC", pnl=0.0, ntl=100.0, fee=0.1) -> Trade:
    return Trade(
        time=datetime.fromisoformat(time),
        coin=coin,
        dir="Close Long",
        px=100.0,
        sz=1.0,
        ntl=ntl,
        fee=fee,
        closed_pnl=pnl,
    )


def _trades(*trades: Trade) -> TradeCollection:
    return TradeCollection.of(trades)


class DatasetMixin:
    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls.datasets_dir = Path(__file__).resolve().parents[2] / "trading_datasets"

    def _load_dataset(self, filename: str = "sample_fills.csv"):
        return parse_trade_csv((self.datasets_dir / filename).read_bytes())


class DateResolverTests(SimpleTestCase):
    def test_every_layout_resolves(self):
        cases = {
            "05/01/2024 - 10:11:12": datetime(2024, 1, 5, 10, 11, 12),
            "2024-01-05 10:11:12": datetime(2024, 1, 5, 10, 11, 12),
            "01/05/2024 10:11:12": datetime(2024, 1, 5, 10, 11, 12),
            "25/01/2024 10:11:12": datetime(2024, 1, 25, 10, 11, 12),
            "2024-01-05": datetime(2024, 1, 5),
            "01/25/2024": datetime(2024, 1, 25),
            "25/01/2024": datetime(2024, 1, 25),
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(resolve_date(raw), expected)

    def test_layouts_are_tried_in_fixed_order(self):
        self.assertEqual(DATE_FORMATS[0], "%d/%m/%Y - %H:%M:%S")
        self.assertEqual(DATE_FORMATS[-1], "%d/%m/%Y")
        self.assertEqual(len(DATE_FORMATS), 7)

    def test_ambiguous_date_takes_earliest_layout(self):
        # month-first layouts precede day-first ones without the dash separator
        self.assertEqual(resolve_date("03/04/2024"), datetime(2024, 3, 4))
        self.assertEqual(resolve_format("03/04/2024"), "%m/%d/%Y")
        self.assertEqual(resolve_date("03/04/2024 08:00:00"), datetime(2024, 3, 4, 8))
        # the dash layout is day-first and comes first
        self.assertEqual(resolve_date("03/04/2024 - 08:00:00"), datetime(2024, 4, 3, 8))

    def test_day_first_used_when_month_first_is_impossible(self):
        self.assertEqual(resolve_date("13/04/2024"), datetime(2024, 4, 13))
        self.assertEqual(resolve_format("13/04/2024"), "%d/%m/%Y")

    def test_impossible_calendar_dates_fail(self):
        for raw in ("30/02/2024", "2023-02-29", "2024-02-30 10:00:00"):
            with self.subTest(raw=raw):
                with self.assertRaises(DateResolutionFailure):
                    resolve_date(raw)

    def test_unmatched_value_is_reported(self):
        with self.assertRaises(DateResolutionFailure) as ctx:
            resolve_date("32/13/2024 - 99:99:99")
        self.assertEqual(ctx.exception.value, "32/13/2024 - 99:99:99")
        self.assertIn("32/13/2024 - 99:99:99", str(ctx.exception))

    def test_blank_or_missing_values_fail(self):
        for raw in ("", "   ", None, float("nan")):
            with self.subTest(raw=raw):
                with self.assertRaises(DateResolutionFailure):
                    resolve_date(raw)

    def test_partial_match_is_not_accepted(self):
        with self.assertRaises(DateResolutionFailure):
            resolve_date("2024-01-05T10:11:12")
        with self.assertRaises(DateResolutionFailure):
            resolve_date("2024-01-05 10:11")


class TradeParserTests(DatasetMixin, SimpleTestCase):
    def test_sample_dataset_keeps_valid_rows_in_upload_order(self):
        result = self._load_dataset()

        self.assertEqual(len(result.trades), 9)
        self.assertEqual([r.row for r in result.rejected], [7, 10])
        self.assertIsInstance(result.rejected[0].error, DateResolutionFailure)
        self.assertIsInstance(result.rejected[1].error, NumericFieldInvalid)
        self.assertEqual(result.rejected[1].error.field, "closedPnl")
        self.assertEqual(result.trades[0].time, datetime(2024, 7, 1, 9, 15))
        self.assertEqual(result.trades[2].time, datetime(2024, 7, 3, 10))
        self.assertEqual(result.trades[-1].coin, "ETH")

    def test_rejected_row_is_logged_with_its_raw_time(self):
        with self.assertLogs("analytics.parser", level="WARNING") as logs:
            result = parse_trade_csv(_csv(
                "2024-01-01 10:00:00,BTC,Open Long,100,1,100,0.1,0",
                "32/13/2024 - 99:99:99,BTC,Close Long,110,1,110,0.1,10",
            ))
        self.assertEqual(len(result.trades), 1)
        self.assertEqual(len(logs.output), 1)
        self.assertIn("32/13/2024 - 99:99:99", logs.output[0])

    def test_only_bad_row_yields_empty_collection(self):
        with self.assertLogs("analytics.parser", level="WARNING"):
            result = parse_trade_csv(_csv("32/13/2024 - 99:99:99,BTC,Open Long,1,1,1,0,0"))
        self.assertTrue(result.empty)
        self.assertEqual(len(result.trades), 0)
        self.assertEqual(result.rejected[0].raw_time, "32/13/2024 - 99:99:99")
        self.assertEqual(NO_TRADES_MESSAGE, "No valid trades found in the CSV file.")

    def test_empty_or_non_finite_numbers_drop_the_row(self):
        with self.assertLogs("analytics.parser", level="WARNING"):
            result = parse_trade_csv(_csv(
                "2024-01-01 10:00:00,BTC,Open Long,100,1,100,,0",
                "2024-01-01 11:00:00,BTC,Open Long,100,1,inf,0.1,0",
                "2024-01-01 12:00:00,BTC,Open Long,1e2,1,100,0.1,-2.5",
            ))
        self.assertEqual(len(result.trades), 1)
        self.assertEqual(result.trades[0].px, 100.0)
        self.assertEqual(result.trades[0].closed_pnl, -2.5)
        fields = [r.error.field for r in result.rejected]
        self.assertEqual(fields, ["fee", "ntl"])

    def test_missing_coin_drops_the_row(self):
        with self.assertLogs("analytics.parser", level="WARNING"):
            result = parse_trade_csv(_csv("2024-01-01 10:00:00,  ,Open Long,100,1,100,0.1,0"))
        self.assertTrue(result.empty)
        self.assertIsInstance(result.rejected[0].error, RequiredFieldMissing)

    def test_short_row_is_rejected_not_fatal(self):
        with self.assertLogs("analytics.parser", level="WARNING"):
            result = parse_trade_csv(_csv(
                "2024-01-01 10:00:00,BTC,Open Long,100,1,100,0.1,0",
                "2024-01-01 11:00:00,BTC",
            ))
        self.assertEqual(len(result.trades), 1)
        self.assertEqual(len(result.rejected), 1)

    def test_row_with_extra_fields_is_malformed(self):
        with self.assertRaises(MalformedInput):
            parse_trade_csv(_csv(
                "2024-01-01 10:00:00,BTC,Open Long,100,1,100,0.1,0",
                "2024-01-01 11:00:00,BTC,Open Long,100,1,100,0.1,0,surplus",
            ))

    def test_trailing_delimiter_on_every_row_keeps_columns_aligned(self):
        result = parse_trade_csv(_csv(
            "2024-01-01 10:00:00,BTC,Open Long,100,1,100,0.1,5,",
            "2024-01-02 10:00:00,ETH,Close Short,200,2,400,0.2,-2,",
        ))
        self.assertEqual(result.rejected, ())
        self.assertEqual([t.coin for t in result.trades], ["BTC", "ETH"])
        self.assertEqual([t.closed_pnl for t in result.trades], [5.0, -2.0])
        self.assertEqual(result.trades[0].time, datetime(2024, 1, 1, 10))

    def test_surplus_value_on_every_row_is_malformed(self):
        with self.assertRaises(MalformedInput):
            parse_trade_csv(_csv(
                "2024-01-01 10:00:00,BTC,Open Long,100,1,100,0.1,5,0xabc",
                "2024-01-02 10:00:00,ETH,Close Short,200,2,400,0.2,-2,0xdef",
            ))

    def test_columns_are_order_independent_and_extras_ignored(self):
        text = (
            "closedPnl,fee,ntl,sz,px,dir,coin,time,hash\n"
            "5,0.2,250,2,125,Close Short,ETH,2024-03-01 08:00:00,0xabc\n"
        )
        result = parse_trade_csv(text)
        self.assertEqual(len(result.trades), 1)
        t = result.trades[0]
        self.assertEqual((t.coin, t.dir, t.px, t.closed_pnl), ("ETH", "Close Short", 125.0, 5.0))

    def test_missing_required_column_is_malformed(self):
        with self.assertRaises(MalformedInput):
            parse_trade_csv("time,coin,dir,px,sz,ntl,fee\n2024-01-01,BTC,Buy,1,1,1,0\n")

    def test_column_names_are_case_sensitive(self):
        with self.assertRaises(MalformedInput):
            parse_trade_csv("time,coin,dir,px,sz,ntl,fee,closedpnl\n2024-01-01,BTC,Buy,1,1,1,0,0\n")

    def test_binary_content_is_malformed_not_empty(self):
        with self.assertRaises(MalformedInput):
            parse_trade_csv(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")
        with self.assertRaises(MalformedInput):
            parse_trade_csv(HEADER + "\n\x00\x00\x00\n")

    def test_empty_document_is_malformed(self):
        with self.assertRaises(MalformedInput):
            parse_trade_csv("")
        with self.assertRaises(MalformedInput):
            parse_trade_csv(b"  \n")

    def test_header_only_is_empty_result(self):
        result = parse_trade_csv(HEADER + "\n")
        self.assertTrue(result.empty)
        self.assertEqual(result.rejected, ())

    def test_utf8_bom_is_tolerated(self):
        content = ("\ufeff" + _csv("2024-01-01 10:00:00,BTC,Open Long,100,1,100,0.1,0")).encode("utf-8")
        self.assertEqual(len(parse_trade_csv(content).trades), 1)

    def test_upload_with_other_extension_is_rejected(self):
        upload = SimpleUploadedFile("fills.xlsx", b"not a csv")
        with self.assertRaises(MalformedInput):
            parse_trade_file(upload)

    def test_upload_file_object_is_parsed(self):
        upload = SimpleUploadedFile("fills.csv", _csv("2024-01-01 10:00:00,BTC,Open Long,100,1,100,0.1,3").encode())
        result = parse_trade_file(upload)
        self.assertEqual(result.trades[0].closed_pnl, 3.0)

    def test_reparsing_serialized_trades_is_idempotent(self):
        first = self._load_dataset().trades
        second = parse_trade_csv(serialize_trades(first)).trades
        third = parse_trade_csv(serialize_trades(second)).trades

        self.assertEqual(first, second)
        self.assertEqual(second, third)


class TradeCollectionTests(SimpleTestCase):
    def setUp(self):
        self.trades = _trades(
            _trade("2024-01-03 10:00:00", "BTC", 5.0),
            _trade("2024-01-01 10:00:00", "ETH", -2.0),
            _trade("2024-01-02 10:00:00", "SOL", 5.0),
        )

    def test_sorting_is_stable_in_both_directions(self):
        desc = self.trades.sorted_by("closedPnl", descending=True)
        self.assertEqual([t.coin for t in desc], ["BTC", "SOL", "ETH"])
        asc = self.trades.sorted_by("closed_pnl")
        self.assertEqual([t.coin for t in asc], ["ETH", "BTC", "SOL"])
        by_time = self.trades.sorted_by("time", descending=True)
        self.assertEqual([t.coin for t in by_time], ["BTC", "SOL", "ETH"])

    def test_sorting_does_not_reorder_source(self):
        self.trades.sorted_by("coin", descending=True)
        self.assertEqual([t.coin for t in self.trades], ["BTC", "ETH", "SOL"])

    def test_unknown_sort_key(self):
        with self.assertRaises(ValueError):
            self.trades.sorted_by("price")

    def test_between_is_inclusive(self):
        window = self.trades.between(datetime(2024, 1, 2, 10), datetime(2024, 1, 3, 10))
        self.assertEqual([t.coin for t in window], ["BTC", "SOL"])
        self.assertIs(self.trades.between(), self.trades)

    def test_collection_and_trades_are_immutable(self):
        with self.assertRaises(FrozenInstanceError):
            self.trades.trades = ()
        with self.assertRaises(FrozenInstanceError):
            self.trades[0].closed_pnl = 1.0

    def test_frame_has_typed_columns_even_when_empty(self):
        df = TradeCollection().to_frame()
        self.assertEqual(list(df.columns), ["time", "coin", "dir", "px", "sz", "ntl", "fee", "closed_pnl"])
        self.assertTrue(pd.api.types.is_datetime64_any_dtype(df["time"]))
        self.assertTrue(pd.api.types.is_float_dtype(df["closed_pnl"]))


class PeriodTests(SimpleTestCase):
    def test_week_runs_monday_through_sunday(self):
        times = pd.Series(pd.to_datetime([
            "2024-01-07 23:59:59",  # Sunday
            "2024-01-08 00:00:00",  # Monday
            "2024-01-14 23:59:59",  # Sunday
        ]))
        keys = week_key(times).dt.date.tolist()
        self.assertEqual(keys, [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 8)])

    def test_weekly_gap_is_filled_with_zero(self):
        trades = _trades(
            _trade("2024-01-03 10:00:00", pnl=10.0),
            _trade("2024-01-17 10:00:00", pnl=-4.0),
        )
        series = weekly_series(trades)
        self.assertEqual([p.pnl for p in series], [10.0, 0.0, -4.0])
        self.assertEqual([p.start for p in series], [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)])
        self.assertEqual([p.trades for p in series], [1, 0, 1])

    def test_daily_series_is_contiguous_and_ascending(self):
        trades = _trades(
            _trade("2024-01-05 10:00:00", pnl=1.0),
            _trade("2024-01-02 10:00:00", pnl=2.0),
            _trade("2024-01-02 18:00:00", pnl=3.0),
        )
        series = daily_series(trades)
        self.assertEqual([p.start.day for p in series], [2, 3, 4, 5])
        self.assertEqual([p.pnl for p in series], [5.0, 0.0, 0.0, 1.0])

    def test_empty_buckets_stay_empty(self):
        empty = TradeCollection().to_frame()
        self.assertTrue(fill_gaps(bucket(empty, WEEK), WEEK).empty)
        self.assertEqual(daily_series(TradeCollection()), [])

    def test_localize_moves_time_only(self):
        df = _trades(_trade("2024-07-22 03:00:00", pnl=7.0)).to_frame()
        local = localize(df, "America/Los_Angeles")
        self.assertEqual(local["time"].iloc[0], pd.Timestamp("2024-07-21 20:00:00"))
        self.assertEqual(local["closed_pnl"].iloc[0], 7.0)
        self.assertEqual(df["time"].iloc[0], pd.Timestamp("2024-07-22 03:00:00"))

    def test_unknown_period(self):
        with self.assertRaises(ValueError):
            bucket(TradeCollection().to_frame(), "quarter")
        with self.assertRaises(ValueError):
            fill_gaps(bucket(_trades(_trade()).to_frame(), DAY), "month")


class InsightsTests(DatasetMixin, SimpleTestCase):
    def test_win_lose_ratio_and_totals(self):
        trades = _trades(_trade(pnl=10.0), _trade(pnl=-5.0), _trade(pnl=3.0))
        self.assertEqual(win_lose_ratio(trades), 2.0)
        self.assertEqual(total_gain(trades), 13.0)
        self.assertEqual(total_loss(trades), -5.0)
        self.assertEqual(cumulative_pnl(trades), 8.0)
        self.assertAlmostEqual(total_fees(trades), 0.3)

    def test_win_lose_ratio_without_losses_equals_win_count(self):
        self.assertEqual(win_lose_ratio(_trades(_trade(pnl=1.0), _trade(pnl=2.0), _trade(pnl=0.0))), 2.0)
        self.assertEqual(win_lose_ratio(TradeCollection()), 0.0)

    def test_best_week_when_every_week_lost(self):
        trades = _trades(
            _trade("2024-01-02 10:00:00", pnl=-10.0),
            _trade("2024-01-09 10:00:00", pnl=-3.0),
            _trade("2024-01-16 10:00:00", pnl=-7.0),
        )
        week = best_week(trades)
        self.assertEqual(week.start, date(2024, 1, 8))
        self.assertEqual(week.end, date(2024, 1, 14))
        self.assertEqual(week.pnl, -3.0)

    def test_allocation_uses_absolute_notional(self):
        trades = _trades(
            _trade(coin="A", ntl=-60.0, pnl=-100.0),
            _trade(coin="B", ntl=30.0, pnl=50.0),
            _trade(coin="B", ntl=-10.0, pnl=5.0),
        )
        slices = portfolio_allocation(trades)
        self.assertEqual([s.coin for s in slices], ["A", "B"])
        self.assertAlmostEqual(slices[0].share, 60.0)
        self.assertAlmostEqual(slices[1].share, 40.0)
        self.assertAlmostEqual(sum(s.share for s in slices), 100.0)
        self.assertEqual(slices[1].pnl, 55.0)

    def test_allocation_with_zero_notional_is_zero_not_nan(self):
        slices = portfolio_allocation(_trades(_trade(coin="A", ntl=0.0), _trade(coin="B", ntl=0.0)))
        self.assertEqual([s.share for s in slices], [0.0, 0.0])
        self.assertEqual(portfolio_allocation(TradeCollection()), [])

    def test_best_and_worst_trade_ties_follow_upload_order(self):
        trades = _trades(
            _trade(coin="A", pnl=5.0),
            _trade(coin="B", pnl=5.0),
            _trade(coin="C", pnl=-1.0),
            _trade(coin="D", pnl=-1.0),
        )
        self.assertEqual(best_trade(trades).coin, "A")
        self.assertEqual(worst_trade(trades).coin, "D")

    def test_pairs_are_ranked_by_summed_pnl(self):
        trades = _trades(
            _trade(coin="BTC", pnl=5.0),
            _trade(coin="ETH", pnl=-8.0),
            _trade(coin="BTC", pnl=-1.0),
            _trade(coin="SOL", pnl=4.0),
        )
        self.assertEqual(best_pair(trades).coin, "BTC")
        self.assertEqual(best_pair(trades).pnl, 4.0)
        self.assertEqual(worst_pair(trades).coin, "ETH")
        self.assertEqual([p.coin for p in coin_pnl_breakdown(trades)], ["BTC", "SOL", "ETH"])

    def test_pnl_volatility_ratio(self):
        trades = _trades(_trade(pnl=10.0), _trade(pnl=-5.0), _trade(pnl=3.0), _trade(pnl=0.0))
        # avg 2.0, gross 18, sqrt(4) = 2
        self.assertAlmostEqual(pnl_volatility_ratio(trades), 2.0 / 18.0 * 2.0)

    def test_pnl_volatility_ratio_undefined_when_flat(self):
        with self.assertRaises(UndefinedStatistic):
            pnl_volatility_ratio(_trades(_trade(pnl=0.0)))

    def test_statistics_needing_trades_signal_undefined(self):
        empty = TradeCollection()
        for fn in (average_pnl, best_trade, worst_trade, best_pair, worst_pair,
                   best_week, best_month, busiest_week, quietest_week, pnl_volatility_ratio):
            with self.subTest(fn=fn.__name__):
                with self.assertRaises(UndefinedStatistic) as ctx:
                    fn(empty)
                self.assertEqual(ctx.exception.statistic, fn.__name__)

    def test_empty_bundle_keeps_totals_and_flags_undefined(self):
        bundle = build_insights(InsightsState())
        self.assertEqual(bundle.cumulative_pnl, 0.0)
        self.assertEqual(bundle.total_fees, 0.0)
        self.assertEqual(bundle.win_lose_ratio, 0.0)
        self.assertIsNone(bundle.best_trade)
        self.assertIsNone(bundle.best_week)
        self.assertIn("best_trade", bundle.undefined)
        self.assertIn("best_week", bundle.undefined)
        self.assertIn("average_pnl", bundle.undefined)
        self.assertFalse(bundle.is_defined("best_month"))
        self.assertEqual(bundle.weekly_series, ())

    def test_sample_dataset_bundle(self):
        trades = self._load_dataset().trades
        bundle = build_insights(build_state(trades))

        self.assertEqual(bundle.undefined, ())
        self.assertAlmostEqual(bundle.cumulative_pnl, 50.0)
        self.assertAlmostEqual(bundle.average_pnl, 50.0 / 9)
        self.assertAlmostEqual(bundle.total_fees, 24.10)
        self.assertEqual((bundle.win_count, bundle.loss_count), (4, 1))
        self.assertEqual(bundle.win_lose_ratio, 4.0)
        self.assertAlmostEqual(bundle.pnl_volatility_ratio, (50.0 / 9) / 1050.0 * 3.0)
        self.assertEqual(bundle.best_trade.coin, "ETH")
        self.assertEqual(bundle.worst_trade.coin, "SOL")
        self.assertEqual(bundle.best_pair.coin, "BTC")
        self.assertEqual(bundle.worst_pair.coin, "SOL")
        self.assertEqual(bundle.best_week.key, "2024-07-01")
        self.assertEqual(bundle.best_week.pnl, 300.0)
        self.assertEqual(bundle.best_month.key, "2024-08")
        self.assertEqual(bundle.best_month.end, date(2024, 8, 31))
        self.assertEqual(bundle.busiest_week.trades, 4)
        self.assertEqual(bundle.quietest_week.key, "2024-07-29")
        self.assertEqual(bundle.average_trades_per_week, 2.25)
        self.assertEqual([p.pnl for p in bundle.weekly_series], [300.0, -500.0, 0.0, 200.0, 50.0])
        self.assertEqual(len(bundle.daily_series), 32)
        self.assertEqual([s.coin for s in bundle.portfolio_allocation], ["BTC", "ETH", "SOL"])
        self.assertAlmostEqual(bundle.portfolio_allocation[0].share, 38700 / 68850 * 100)

    def test_timezone_moves_buckets_but_not_totals(self):
        trades = self._load_dataset().trades
        utc = build_insights(build_state(trades))
        pacific = build_insights(build_state(trades, timezone="America/Los_Angeles"))

        for attr in ("cumulative_pnl", "total_fees", "total_gain", "total_loss", "win_lose_ratio"):
            with self.subTest(attr=attr):
                self.assertEqual(getattr(utc, attr), getattr(pacific, attr))
        self.assertAlmostEqual(sum(p.pnl for p in pacific.daily_series), utc.cumulative_pnl)

        # the Monday 03:00 UTC fill is still Sunday in Los Angeles
        self.assertEqual([p.trades for p in utc.weekly_series], [4, 2, 0, 2, 1])
        self.assertEqual([p.trades for p in pacific.weekly_series], [4, 2, 1, 1, 1])
        self.assertEqual(pacific.quietest_week.key, "2024-07-15")
        self.assertEqual(pacific.average_trades_per_week, 1.8)

    def test_months_ignore_timezone(self):
        trades = _trades(
            _trade("2024-07-31 20:00:00", pnl=10.0),
            _trade("2024-08-15 10:00:00", pnl=5.0),
        )
        bundle = build_insights(build_state(trades, timezone="Asia/Tokyo"))
        self.assertEqual(bundle.daily_series[0].start, date(2024, 8, 1))
        self.assertEqual(bundle.best_month.key, "2024-07")
        self.assertEqual(best_month(trades).pnl, 10.0)

    def test_date_window_filters_windowed_statistics_only(self):
        trades = self._load_dataset().trades
        bundle = build_insights(build_state(trades, start="2024-07-22", end="2024-08-01T10:00:00"))

        self.assertEqual(bundle.window_count, 3)
        self.assertEqual(bundle.cumulative_pnl, 250.0)
        self.assertAlmostEqual(bundle.average_pnl, 250.0 / 3)
        self.assertEqual(bundle.best_pair.coin, "BTC")
        self.assertEqual(bundle.worst_pair.coin, "ETH")
        # ranked against every trade
        self.assertEqual(bundle.worst_trade.coin, "SOL")
        self.assertAlmostEqual(bundle.total_fees, 24.10)

    def test_empty_window_leaves_rankings_undefined(self):
        trades = self._load_dataset().trades
        bundle = build_insights(build_state(trades, start="2030-01-01"))
        self.assertEqual(bundle.window_count, 0)
        self.assertIn("best_pair", bundle.undefined)
        self.assertIn("best_week", bundle.undefined)
        self.assertEqual(bundle.best_trade.coin, "ETH")
        self.assertEqual(bundle.best_month.key, "2024-08")

    def test_best_month_ignores_the_date_window(self):
        trades = self._load_dataset().trades
        bundle = build_insights(build_state(trades, end="2024-07-31T23:59:59"))

        self.assertEqual(bundle.window_count, 8)
        self.assertEqual(bundle.best_month.key, "2024-08")
        self.assertEqual(bundle.best_month.pnl, 50.0)
        self.assertEqual(bundle.best_month.trades, 1)

    def test_payload_is_json_serializable(self):
        bundle = build_insights(build_state(self._load_dataset().trades, timezone="Asia/Tokyo"))
        payload = json.loads(json.dumps(bundle.as_dict()))
        self.assertEqual(payload["meta"]["timezone"], "Asia/Tokyo")
        self.assertEqual(payload["best_trade"]["closedPnl"], 200.0)
        self.assertEqual(payload["best_week"]["start"], "2024-07-01")
        self.assertEqual(len(payload["weekly_series"]), 5)


class InsightsStateTests(SimpleTestCase):
    def test_each_change_is_a_new_revision(self):
        state = InsightsState()
        tokyo = state.with_timezone("Asia/Tokyo")
        self.assertEqual(state.timezone, "UTC")
        self.assertEqual(tokyo.timezone, "Asia/Tokyo")
        self.assertEqual(tokyo.revision, state.revision + 1)

    def test_invalid_timezone_keeps_previous_state(self):
        state = InsightsState().with_timezone("Asia/Tokyo")
        with self.assertRaises(InvalidFilterInput):
            state.with_timezone("Mars/Olympus_Mons")
        self.assertEqual(state.timezone, "Asia/Tokyo")

    def test_invalid_date_keeps_previous_bound(self):
        state = InsightsState().with_start("2024-01-01")
        with self.assertRaises(InvalidFilterInput):
            state.with_start("31/01/2024")
        self.assertEqual(state.start, datetime(2024, 1, 1))

    def test_blank_bound_clears_it(self):
        state = InsightsState().with_end("2024-02-01").with_end("")
        self.assertIsNone(state.end)

    def test_aware_bound_is_compared_in_utc(self):
        state = InsightsState().with_start("2024-01-01T09:00:00+09:00")
        self.assertEqual(state.start, datetime(2024, 1, 1, 0, 0))

    def test_new_upload_replaces_trades(self):
        first = InsightsState().with_trades(_trades(_trade(coin="A")))
        second = first.with_trades(_trades(_trade(coin="B"), _trade(coin="C")))
        self.assertEqual([t.coin for t in second.trades], ["B", "C"])
        self.assertEqual([t.coin for t in first.trades], ["A"])


class CoachTests(DatasetMixin, SimpleTestCase):
    def setUp(self):
        self.request = SummaryRequest(trade_count=9, worst_pair="SOL", best_pair="BTC", highest_profit=200.0)

    def test_snapshot_from_bundle(self):
        bundle = build_insights(build_state(self._load_dataset().trades))
        self.assertEqual(summary_request(bundle), self.request)

    def test_snapshot_needs_trades(self):
        with self.assertRaises(UndefinedStatistic):
            summary_request(build_insights(InsightsState()))

    def test_prompt_mentions_every_field(self):
        prompt = build_prompt(self.request)
        for text in ("Total trades: 9", "Worst trading pair: SOL", "Best trading pair: BTC", "$200.00"):
            self.assertIn(text, prompt)

    def test_rules_coach_is_deterministic(self):
        msg = coaching_message(self.request)
        self.assertIn("positive", msg)
        self.assertIn("SOL", msg)
        self.assertEqual(msg, coaching_message(self.request))

    def test_failure_is_returned_not_raised(self):
        def broken(_req):
            raise SummaryUnavailable("offline")

        result = generate_summary(self.request, broken)
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "offline")
        self.assertIsNone(result.text)

    def test_chat_completion_summarizer(self):
        response = mock.Mock()
        response.json.return_value = {"choices": [{"message": {"content": " Solid week. "}}]}
        response.raise_for_status.return_value = None
        with mock.patch("analytics.coach.requests.post", return_value=response) as post:
            text = ChatCompletionSummarizer("sk-test", model="gpt-4")(self.request)

        self.assertEqual(text, "Solid week.")
        kwargs = post.call_args.kwargs
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test")
        self.assertEqual(kwargs["json"]["model"], "gpt-4")

    def test_chat_completion_network_error_becomes_unavailable(self):
        summarizer = ChatCompletionSummarizer("sk-test")
        with mock.patch("analytics.coach.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
            with self.assertLogs("analytics.coach", level="ERROR"):
                result = generate_summary(self.request, summarizer)
        self.assertFalse(result.ok)


class TradeInsightsCommandTests(DatasetMixin, SimpleTestCase):
    def test_prints_bundle_as_json(self):
        out, err = io.StringIO(), io.StringIO()
        with self.assertLogs("analytics.parser", level="WARNING"):
            call_command("trade_insights", str(self.datasets_dir / "sample_fills.csv"), stdout=out, stderr=err)
        payload = json.loads(out.getvalue())
        self.assertEqual(payload["meta"]["n_trades"], 9)
        self.assertIn("row 7", err.getvalue())

    def test_rejects_invalid_timezone(self):
        with self.assertLogs("analytics.parser", level="WARNING"):
            with self.assertRaises(CommandError):
                call_command(
                    "trade_insights", str(self.datasets_dir / "sample_fills.csv"),
                    timezone="Nowhere/Else", stdout=io.StringIO(), stderr=io.StringIO(),
                )
