"""
Cash/position ledger for simulated trading.

A ``Portfolio`` is an immutable value: every accepted order returns a new
portfolio with cash, position and transaction log updated together, and a
rejected order returns the very same object. Prices are the close of the
most recent quote at or before the trade time.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal, Mapping, Tuple

import pandas as pd
from loguru import logger

from stocksim.core.exceptions import MissingQuoteError
from stocksim.dal.price_history import PriceHistories, price_close

DEFAULT_COMMISSION = 7.00
DEFAULT_PRINCIPAL = 10_000.0


@dataclass(frozen=True)
class Transaction:
    kind: Literal["buy", "sell"]
    quantity: int
    instrument: str
    time: pd.Timestamp
    price: float


@dataclass(frozen=True)
class Portfolio:
    cash: float
    positions: Mapping[str, int] = field(default_factory=dict)
    transactions: Tuple[Transaction, ...] = ()

    def __post_init__(self) -> None:
        # read-only view so a shared portfolio cannot be changed behind a trial's back
        if not isinstance(self.positions, MappingProxyType):
            object.__setattr__(self, "positions", MappingProxyType(dict(self.positions)))

    def with_trade(
        self, cash: float, instrument: str, quantity: int, txn: Transaction
    ) -> "Portfolio":
        positions = dict(self.positions)
        positions[instrument] = quantity
        return Portfolio(cash=cash, positions=positions, transactions=self.transactions + (txn,))

    def to_dict(self) -> dict:
        return {
            "cash": self.cash,
            "positions": dict(self.positions),
            "transactions": [
                {
                    "kind": t.kind,
                    "quantity": t.quantity,
                    "instrument": t.instrument,
                    "time": t.time.isoformat(),
                    "price": t.price,
                }
                for t in self.transactions
            ],
        }


def new_portfolio(principal: float = DEFAULT_PRINCIPAL) -> Portfolio:
    return Portfolio(cash=float(principal))


def shares_on_hand(portfolio: Portfolio, instrument: str) -> int:
    return int(portfolio.positions.get(instrument, 0))


def holds_shares(portfolio: Portfolio, instrument: str) -> bool:
    return shares_on_hand(portfolio, instrument) > 0


def owes_shares(portfolio: Portfolio, instrument: str) -> bool:
    return shares_on_hand(portfolio, instrument) < 0


def buy_max_affordable(
    portfolio: Portfolio,
    commission: float,
    instrument: str,
    time: pd.Timestamp,
    histories: PriceHistories,
) -> Portfolio:
    """Buy ``floor((cash - commission) / price)`` shares, or nothing."""
    price = price_close(histories, instrument, time)
    if price <= 0:
        logger.debug("[ledger] non-positive price {} for {} at {}", price, instrument, time)
        return portfolio
    qty = math.floor((portfolio.cash - commission) / price)
    cost = price * qty
    if qty <= 0 or portfolio.cash < cost + commission:
        return portfolio
    held = shares_on_hand(portfolio, instrument)
    return portfolio.with_trade(
        portfolio.cash - (cost + commission),
        instrument,
        held + qty,
        Transaction("buy", qty, instrument, time, price),
    )


def buy_shares(
    portfolio: Portfolio,
    commission: float,
    instrument: str,
    quantity: int,
    time: pd.Timestamp,
    histories: PriceHistories,
    allow_margin: bool = False,
) -> Portfolio:
    """Buy *quantity* shares; rejected when cash would go negative without margin."""
    price = price_close(histories, instrument, time)
    cost = price * quantity
    remaining = portfolio.cash - (cost + commission)
    if cost < 0 or (remaining < 0 and not allow_margin):
        return portfolio
    held = shares_on_hand(portfolio, instrument)
    return portfolio.with_trade(
        remaining,
        instrument,
        held + quantity,
        Transaction("buy", quantity, instrument, time, price),
    )


def sell_shares(
    portfolio: Portfolio,
    commission: float,
    instrument: str,
    quantity: int,
    time: pd.Timestamp,
    histories: PriceHistories,
    allow_short: bool = False,
) -> Portfolio:
    """
    Sell *quantity* shares.

    Without short selling, rejected when exceeding holdings or when the
    proceeds do not cover the commission.
    """
    held = shares_on_hand(portfolio, instrument)
    if quantity <= 0 or (quantity > held and not allow_short):
        return portfolio
    price = price_close(histories, instrument, time)
    remaining = portfolio.cash + price * quantity - commission
    if remaining < 0 and not allow_short:
        return portfolio
    return portfolio.with_trade(
        remaining,
        instrument,
        held - quantity,
        Transaction("sell", quantity, instrument, time, price),
    )


def sell_all(
    portfolio: Portfolio,
    commission: float,
    instrument: str,
    time: pd.Timestamp,
    histories: PriceHistories,
) -> Portfolio:
    return sell_shares(
        portfolio,
        commission,
        instrument,
        shares_on_hand(portfolio, instrument),
        time,
        histories,
        allow_short=False,
    )


def position_value(
    instrument: str, quantity: int, time: pd.Timestamp, histories: PriceHistories
) -> float:
    """Signed market value of a position (negative for owed shares)."""
    return quantity * price_close(histories, instrument, time)


def portfolio_value(
    portfolio: Portfolio, time: pd.Timestamp, histories: PriceHistories
) -> float:
    """
    Cash plus the market value of every non-zero position at *time*.

    Raises ``MissingQuoteError`` when a held instrument has no quote at or
    before *time*; the valuation is undefined in that case.
    """
    total = portfolio.cash
    for instrument, qty in portfolio.positions.items():
        if qty == 0:
            continue
        try:
            total += position_value(instrument, qty, time, histories)
        except MissingQuoteError:
            logger.error(
                "[ledger] cannot value {} shares of {} at {}: no quote", qty, instrument, time
            )
            raise
    return total


__all__ = [
    "DEFAULT_COMMISSION",
    "DEFAULT_PRINCIPAL",
    "Transaction",
    "Portfolio",
    "new_portfolio",
    "shares_on_hand",
    "holds_shares",
    "owes_shares",
    "buy_max_affordable",
    "buy_shares",
    "sell_shares",
    "sell_all",
    "position_value",
    "portfolio_value",
]
