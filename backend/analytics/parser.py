import io
import logging
import warnings
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import pandas as pd

from .dates import resolve_date
from .errors import MalformedInput, NumericFieldInvalid, RequiredFieldMissing, RowError
from .trades import Trade, TradeCollection

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = [
    "time",
    "coin",
    "dir",
    "px",
    "sz",
    "ntl",
    "fee",
    "closedPnl",
]
NUMERIC_COLUMNS = ["px", "sz", "ntl", "fee", "closedPnl"]

NO_TRADES_MESSAGE = "No valid trades found in the CSV file."
SERIALIZE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class RowRejection:
    """A data row that was dropped, with the reason."""
    row: int
    raw_time: object
    error: RowError

    @property
    def reason(self) -> str:
        return str(self.error)


@dataclass(frozen=True)
class ParseResult:
    trades: TradeCollection
    rejected: Tuple[RowRejection, ...] = ()

    @property
    def empty(self) -> bool:
        """True when no row survived: the 'no trades found' condition."""
        return len(self.trades) == 0


def _decode(content) -> str:
    if isinstance(content, (bytes, bytearray)):
        try:
            text = bytes(content).decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedInput("File is not UTF-8 text. Please upload a CSV export.") from e
    elif isinstance(content, str):
        text = content.lstrip("\ufeff")
    else:
        raise MalformedInput(f"Unsupported content type: {type(content).__name__}")

    if "\x00" in text:
        raise MalformedInput("File contains binary data. Please upload a CSV export.")
    if not text.strip():
        raise MalformedInput("File is empty.")
    return text


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Strip stray whitespace around header names.

    Names stay case-sensitive: ``closedPnl`` and ``closedpnl`` are different.
    """
    return df.rename(columns={c: str(c).strip() for c in df.columns})


def read_trade_table(content) -> pd.DataFrame:
    """Tokenize the upload into a string-only DataFrame with the required columns."""
    text = _decode(content)
    try:
        # trailing delimiters are dropped; any other surplus field warns
        with warnings.catch_warnings():
            warnings.simplefilter("error", pd.errors.ParserWarning)
            df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, index_col=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise MalformedInput(f"Could not read CSV rows: {e}") from e
    except pd.errors.ParserWarning as e:
        raise MalformedInput(f"Rows have more fields than the header: {e}") from e

    df = normalize_columns(df)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise MalformedInput(f"Missing required columns: {missing}. Expected: {REQUIRED_COLUMNS}")
    return df


def _build_trade(row: pd.Series, numbers: pd.Series) -> Trade:
    raw_time = row["time"]
    time = resolve_date(raw_time)

    coin = row["coin"]
    coin = coin.strip() if isinstance(coin, str) else ""
    if not coin:
        raise RequiredFieldMissing("coin", raw_time=raw_time)

    values = {}
    for c in NUMERIC_COLUMNS:
        v = numbers[c]
        if not np.isfinite(v):
            raise NumericFieldInvalid(c, row[c], raw_time=raw_time)
        values[c] = float(v)

    direction = row["dir"]
    return Trade(
        time=time,
        coin=coin,
        dir=direction if isinstance(direction, str) else "",
        px=values["px"],
        sz=values["sz"],
        ntl=values["ntl"],
        fee=values["fee"],
        closed_pnl=values["closedPnl"],
    )


def parse_trade_csv(content) -> ParseResult:
    """Parse exported fills into a TradeCollection.

    Bad rows are dropped and reported in ``ParseResult.rejected``; only input
    that cannot be read as CSV at all raises (MalformedInput). Zero valid rows
    is not an error: check ``ParseResult.empty``.
    """
    df = read_trade_table(content)

    # short rows come back as NaN even with keep_default_na=False
    numbers = pd.DataFrame(
        {c: pd.to_numeric(df[c].str.strip(), errors="coerce") for c in NUMERIC_COLUMNS},
        index=df.index,
    ).astype(float)

    trades: List[Trade] = []
    rejected: List[RowRejection] = []
    for pos, (idx, row) in enumerate(df.iterrows(), start=1):
        try:
            trades.append(_build_trade(row, numbers.loc[idx]))
        except RowError as e:
            logger.warning("Skipping row %d (time=%r): %s", pos, row["time"], e)
            rejected.append(RowRejection(row=pos, raw_time=row["time"], error=e))

    if not trades:
        logger.info("No valid trades in upload (%d rows rejected)", len(rejected))
    else:
        logger.debug("Parsed %d trades, rejected %d rows", len(trades), len(rejected))
    return ParseResult(trades=TradeCollection.of(trades), rejected=tuple(rejected))


def parse_trade_file(uploaded_file) -> ParseResult:
    """Parse an uploaded file object (anything with ``read()``).

    Only CSV is supported; a ``name`` with another extension is rejected.
    """
    name = getattr(uploaded_file, "name", "") or ""
    if name and not name.lower().endswith(".csv"):
        raise MalformedInput("Unsupported file type. Please upload a CSV export.")
    return parse_trade_csv(uploaded_file.read())


def serialize_trades(trades: TradeCollection) -> str:
    """Write trades back in the upload column layout.

    Parsing the output yields the same collection.
    """
    frame = pd.DataFrame([t.as_row() for t in trades], columns=REQUIRED_COLUMNS)
    frame["time"] = pd.to_datetime(frame["time"]).dt.strftime(SERIALIZE_TIME_FORMAT)
    return frame.to_csv(index=False)
