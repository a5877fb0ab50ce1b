"""Time-indexed price history.

``PriceHistoryIndex`` is an immutable, timestamp-ordered quote table for one
instrument that answers floor queries ("most recent quote at or before T") in
O(log n). ``PriceHistoryStore`` loads indexes from a ``PriceSource`` and
answers coverage questions (first/last instant, common date range across a set
of instruments) used to bound randomized trial windows.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from itertools import islice
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from stocksim.core.calendar import TradingCalendar
from stocksim.core.exceptions import DataValidationError, MissingQuoteError
from stocksim.core.timeutils import Period
from stocksim.dal.sources import QUOTE_COLUMNS, PriceSource

Interval = Tuple[pd.Timestamp, pd.Timestamp]


@dataclass(frozen=True, slots=True)
class QuoteRecord:
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float


class PriceHistoryIndex:
    """Read-only quote table for one instrument, ordered by timestamp."""

    __slots__ = ("_ts", "_open", "_high", "_low", "_close")

    def __init__(
        self,
        timestamps: np.ndarray,
        open_: np.ndarray,
        high: np.ndarray,
        low: np.ndarray,
        close: np.ndarray,
    ) -> None:
        self._ts = timestamps
        self._open = open_
        self._high = high
        self._low = low
        self._close = close
        for arr in (self._ts, self._open, self._high, self._low, self._close):
            arr.setflags(write=False)

    @classmethod
    def empty(cls) -> "PriceHistoryIndex":
        none = np.empty(0, dtype=float)
        return cls(np.empty(0, dtype="int64"), none, none.copy(), none.copy(), none.copy())

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "PriceHistoryIndex":
        """Build from a frame with a ``timestamp`` column or a DatetimeIndex.

        Later rows win when a timestamp repeats.
        """
        if frame is None or frame.empty:
            return cls.empty()
        df = frame.reset_index() if "timestamp" not in frame.columns else frame
        if "timestamp" not in df.columns:
            df = df.rename(columns={df.columns[0]: "timestamp"})
        missing = [c for c in ["timestamp", *QUOTE_COLUMNS] if c not in df.columns]
        if missing:
            raise DataValidationError(f"quote frame missing columns: {missing}")
        ts = pd.to_datetime(df["timestamp"])
        if getattr(ts.dt, "tz", None) is not None:
            ts = ts.dt.tz_localize(None)
        df = df.assign(timestamp=ts)
        df = df.drop_duplicates(subset="timestamp", keep="last").sort_values("timestamp")
        return cls(
            df["timestamp"].to_numpy(dtype="datetime64[ns]").astype("int64"),
            df["open"].to_numpy(dtype=float),
            df["high"].to_numpy(dtype=float),
            df["low"].to_numpy(dtype=float),
            df["close"].to_numpy(dtype=float),
        )

    def __len__(self) -> int:
        return len(self._ts)

    def __bool__(self) -> bool:
        return len(self._ts) > 0

    def __iter__(self) -> Iterator[QuoteRecord]:
        for i in range(len(self._ts)):
            yield self._record(i)

    def __repr__(self) -> str:
        if not self:
            return "PriceHistoryIndex(empty)"
        first, last = self.coverage()  # type: ignore[misc]
        return f"PriceHistoryIndex(n={len(self)}, first={first}, last={last})"

    def _record(self, i: int) -> QuoteRecord:
        return QuoteRecord(
            timestamp=pd.Timestamp(int(self._ts[i])),
            open=float(self._open[i]),
            high=float(self._high[i]),
            low=float(self._low[i]),
            close=float(self._close[i]),
        )

    def _floor_position(self, time: pd.Timestamp) -> int:
        return int(np.searchsorted(self._ts, time.value, side="right")) - 1

    def most_recent(self, time: pd.Timestamp) -> Optional[QuoteRecord]:
        """Quote with the greatest timestamp <= *time*, or None."""
        i = self._floor_position(time)
        if i < 0:
            return None
        return self._record(i)

    def close_at(self, time: pd.Timestamp) -> Optional[float]:
        """Close of ``most_recent(time)`` without building a record."""
        i = self._floor_position(time)
        if i < 0:
            return None
        return float(self._close[i])

    def coverage(self) -> Optional[Interval]:
        if not self:
            return None
        return pd.Timestamp(int(self._ts[0])), pd.Timestamp(int(self._ts[-1]))

    def window(
        self, earliest: Optional[pd.Timestamp], latest: Optional[pd.Timestamp]
    ) -> "PriceHistoryIndex":
        """Sub-index restricted to ``[earliest, latest]`` (either bound optional)."""
        lo = 0 if earliest is None else int(np.searchsorted(self._ts, earliest.value, side="left"))
        hi = len(self._ts) if latest is None else int(np.searchsorted(self._ts, latest.value, side="right"))
        if lo == 0 and hi == len(self._ts):
            return self
        sl = slice(lo, max(lo, hi))
        return PriceHistoryIndex(
            self._ts[sl].copy(),
            self._open[sl].copy(),
            self._high[sl].copy(),
            self._low[sl].copy(),
            self._close[sl].copy(),
        )


PriceHistories = Mapping[str, PriceHistoryIndex]


class PriceHistoryStore:
    """Loads and caches per-instrument indexes from a ``PriceSource``.

    Full indexes are cached per instrument so coverage queries and repeated
    trial-set loads do not re-read the source. The cache is guarded by a lock;
    indexes themselves are immutable and safe to share across threads.
    """

    def __init__(self, source: PriceSource) -> None:
        self.source = source
        self._cache: Dict[str, PriceHistoryIndex] = {}
        self._lock = threading.Lock()

    def _full_index(self, instrument: str) -> PriceHistoryIndex:
        with self._lock:
            cached = self._cache.get(instrument)
        if cached is not None:
            return cached
        try:
            index = PriceHistoryIndex.from_frame(self.source.read(instrument))
        except (OSError, KeyError, ValueError, DataValidationError) as exc:
            logger.warning(
                "[prices] unable to load {}; treating as empty ({}: {})",
                instrument,
                type(exc).__name__,
                exc,
            )
            index = PriceHistoryIndex.empty()
        with self._lock:
            return self._cache.setdefault(instrument, index)

    # ------------------------------------------------------------------
    # loading
    # ------------------------------------------------------------------

    def load(
        self,
        instruments: Iterable[str],
        earliest: Optional[pd.Timestamp] = None,
        latest: Optional[pd.Timestamp] = None,
    ) -> Dict[str, PriceHistoryIndex]:
        """Map each instrument to its index, optionally cut to ``[earliest, latest]``.

        Unreadable instruments map to an empty index; the load continues.
        """
        histories = {}
        for instrument in instruments:
            full = self._full_index(instrument)
            bounded = earliest is not None or latest is not None
            histories[instrument] = full.window(earliest, latest) if bounded else full
        logger.debug(
            "[prices] loaded {} histories window=[{}, {}]",
            len(histories),
            earliest,
            latest,
        )
        return histories

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def most_recent_quote(
        self, instrument: str, time: pd.Timestamp
    ) -> Optional[QuoteRecord]:
        return self._full_index(instrument).most_recent(time)

    def coverage_interval(self, instrument: str) -> Optional[Interval]:
        return self._full_index(instrument).coverage()

    def common_date_range(self, instruments: Sequence[str]) -> Optional[Interval]:
        """Intersection of coverage intervals: (latest start, earliest end).

        None when the set is empty, any instrument has no data, or the
        intervals do not overlap.
        """
        intervals = [self.coverage_interval(i) for i in instruments]
        if not intervals or any(iv is None for iv in intervals):
            return None
        start = max(iv[0] for iv in intervals)  # type: ignore[index]
        end = min(iv[1] for iv in intervals)  # type: ignore[index]
        if start > end:
            return None
        return start, end

    def has_enough_history(self, instrument: str, duration: Period) -> bool:
        coverage = self.coverage_interval(instrument)
        if coverage is None:
            return False
        start, end = coverage
        return start <= end - duration

    def instruments_with_enough_history(
        self, instruments: Iterable[str], duration: Period
    ) -> List[str]:
        return [i for i in instruments if self.has_enough_history(i, duration)]

    def trading_period_start_dates(
        self, instrument: str, trading_period_length: Period
    ) -> Optional[Interval]:
        """Earliest and latest starts for a trading period of the given length."""
        coverage = self.coverage_interval(instrument)
        if coverage is None:
            return None
        return _shrink_end(coverage, trading_period_length)

    def common_trading_period_start_dates(
        self, instruments: Sequence[str], trading_period_length: Period
    ) -> Optional[Interval]:
        cdr = self.common_date_range(instruments)
        if cdr is None:
            return None
        return _shrink_end(cdr, trading_period_length)


def _shrink_end(interval: Interval, period: Period) -> Optional[Interval]:
    start, end = interval
    adjusted = end - period
    if adjusted < start:
        return None
    return start, adjusted


# ----------------------------------------------------------------------
# lookups used by the ledger and strategies
# ----------------------------------------------------------------------


def price_quote(
    histories: PriceHistories, instrument: str, time: pd.Timestamp
) -> QuoteRecord:
    """Most recent quote for *instrument* at or before *time*; raises if absent."""
    index = histories.get(instrument)
    quote = index.most_recent(time) if index is not None else None
    if quote is None:
        raise MissingQuoteError(instrument, time)
    return quote


def price_close(histories: PriceHistories, instrument: str, time: pd.Timestamp) -> float:
    index = histories.get(instrument)
    close = index.close_at(time) if index is not None else None
    if close is None:
        raise MissingQuoteError(instrument, time)
    return close


def price_close_seq(
    histories: PriceHistories,
    instrument: str,
    start: pd.Timestamp,
    period: Period,
    calendar: TradingCalendar,
) -> Iterator[float]:
    """Closes sampled along the reverse session series, most recent first."""
    for instant in calendar.reverse_session_series(start, period):
        yield price_close(histories, instrument, instant)


def forward_price_close_seq(
    histories: PriceHistories,
    instrument: str,
    start: pd.Timestamp,
    period: Period,
    lookback: int,
    calendar: TradingCalendar,
) -> Iterator[float]:
    """Closes sampled along the mixed series: *lookback* past periods, then forward."""
    for instant in calendar.mixed_series(start, period, lookback):
        yield price_close(histories, instrument, instant)


def recent_closes(
    histories: PriceHistories,
    instrument: str,
    n: int,
    start: pd.Timestamp,
    period: Period,
    calendar: TradingCalendar,
) -> Tuple[float, ...]:
    """The last *n* sampled closes in chronological order (oldest first)."""
    closes = list(islice(price_close_seq(histories, instrument, start, period, calendar), n))
    closes.reverse()
    return tuple(closes)


def price_average(
    histories: PriceHistories,
    instrument: str,
    n: int,
    start: pd.Timestamp,
    period: Period,
    calendar: TradingCalendar,
) -> float:
    """Mean of the last *n* sampled closes ending at *start*."""
    if n <= 0:
        raise ValueError("n must be positive")
    closes = recent_closes(histories, instrument, n, start, period, calendar)
    return sum(closes) / len(closes)


__all__ = [
    "QuoteRecord",
    "PriceHistoryIndex",
    "PriceHistoryStore",
    "PriceHistories",
    "price_quote",
    "price_close",
    "price_close_seq",
    "forward_price_close_seq",
    "recent_closes",
    "price_average",
]
