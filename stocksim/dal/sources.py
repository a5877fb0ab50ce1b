from __future__ import annotations

from pathlib import Path
from typing import Mapping, Protocol

import pandas as pd
from loguru import logger

from stocksim.core.exceptions import DataValidationError

QUOTE_COLUMNS = ["open", "high", "low", "close"]
RAW_COLUMNS = ["date", "time", *QUOTE_COLUMNS]


class PriceSource(Protocol):
    """Anything that can produce a quote frame for an instrument.

    The returned frame must carry a ``timestamp`` column (or a DatetimeIndex)
    plus ``open``, ``high``, ``low`` and ``close``. Missing instruments raise
    ``OSError``/``KeyError``; malformed content raises ``ValueError``.
    """

    def read(self, instrument: str) -> pd.DataFrame: ...


def _combine_date_time(date: pd.Series, time: pd.Series) -> pd.Series:
    date = date.astype(str).str.strip()
    time = time.astype(str).str.strip()
    # HHMM rows carry no seconds; HMMSS rows lost their leading zero
    time = time.where(time.str.len() > 4, time.str.zfill(4) + "00").str.zfill(6)
    return pd.to_datetime(date + time, format="%Y%m%d%H%M%S")


class CsvPriceSource:
    """Header-less ``date,time,open,high,low,close`` files under one directory.

    ``date`` is ``yyyymmdd`` and ``time`` is ``HHMM`` or ``HHMMSS``. An
    instrument key may be a bare ticker (``AAPL``) or a file name
    (``AAPL.csv``).
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, instrument: str) -> Path:
        name = instrument if instrument.endswith(".csv") else f"{instrument}.csv"
        return self.root / name

    def instruments(self) -> list[str]:
        """Tickers of every CSV file under the root, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob("*.csv"))

    def read(self, instrument: str) -> pd.DataFrame:
        path = self.path_for(instrument)
        raw = pd.read_csv(
            path,
            header=None,
            names=RAW_COLUMNS,
            usecols=range(len(RAW_COLUMNS)),
            dtype={"date": str, "time": str},
            skipinitialspace=True,
        )
        if raw[QUOTE_COLUMNS].isna().any().any():
            raise DataValidationError(f"{path}: rows with missing prices")
        frame = raw[QUOTE_COLUMNS].astype(float)
        frame.insert(0, "timestamp", _combine_date_time(raw["date"], raw["time"]))
        logger.debug("[prices] read {} rows from {}", len(frame), path)
        return frame

    def __repr__(self) -> str:
        return f"CsvPriceSource(root={str(self.root)!r})"


class FramePriceSource:
    """Serves pre-built frames, keyed by instrument."""

    def __init__(self, frames: Mapping[str, pd.DataFrame]) -> None:
        self._frames = dict(frames)

    def read(self, instrument: str) -> pd.DataFrame:
        if instrument not in self._frames:
            raise KeyError(instrument)
        return self._frames[instrument]

    def instruments(self) -> list[str]:
        return sorted(self._frames)


__all__ = ["PriceSource", "CsvPriceSource", "FramePriceSource", "QUOTE_COLUMNS"]
