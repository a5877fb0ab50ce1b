from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from stocksim.backtest.ledger import (
    Portfolio,
    buy_max_affordable,
    buy_shares,
    holds_shares,
    new_portfolio,
    owes_shares,
    portfolio_value,
    sell_all,
    sell_shares,
    shares_on_hand,
)
from stocksim.core.exceptions import MissingQuoteError
from stocksim.dal.price_history import PriceHistoryIndex

T = pd.Timestamp("2000-01-05 12:00")


@pytest.fixture
def histories(daily_frame):
    return {
        "ACME": PriceHistoryIndex.from_frame(daily_frame("2000-01-03", "2000-01-31", price=100.0)),
        "LATE": PriceHistoryIndex.from_frame(daily_frame("2000-02-01", "2000-02-28", price=50.0)),
        "PENNY": PriceHistoryIndex.from_frame(daily_frame("2000-01-03", "2000-01-31", price=2.0)),
    }


def test_buy_max_affordable_scenario(histories):
    p = buy_max_affordable(new_portfolio(1000.0), 7.0, "ACME", T, histories)
    assert shares_on_hand(p, "ACME") == 9
    assert p.cash == pytest.approx(93.0)
    txn = p.transactions[-1]
    assert (txn.kind, txn.quantity, txn.instrument, txn.price) == ("buy", 9, "ACME", 100.0)


def test_buy_max_affordable_rejects_when_nothing_affordable(histories):
    start = new_portfolio(100.0)
    assert buy_max_affordable(start, 7.0, "ACME", T, histories) is start


def test_buy_shares_respects_margin_flag(histories):
    start = new_portfolio(500.0)
    assert buy_shares(start, 7.0, "ACME", 5, T, histories) is start
    on_margin = buy_shares(start, 7.0, "ACME", 5, T, histories, allow_margin=True)
    assert on_margin.cash == pytest.approx(-7.0)
    assert shares_on_hand(on_margin, "ACME") == 5
    assert buy_shares(start, 7.0, "ACME", -1, T, histories, allow_margin=True) is start


def test_sell_shares_respects_short_flag(histories):
    held = buy_shares(new_portfolio(1000.0), 0.0, "ACME", 3, T, histories)
    assert sell_shares(held, 7.0, "ACME", 4, T, histories) is held
    assert sell_shares(held, 7.0, "ACME", 0, T, histories) is held
    short = sell_shares(held, 7.0, "ACME", 4, T, histories, allow_short=True)
    assert shares_on_hand(short, "ACME") == -1
    assert owes_shares(short, "ACME") and not holds_shares(short, "ACME")
    assert short.cash == pytest.approx(700.0 + 400.0 - 7.0)


def test_sell_all_liquidates_and_is_noop_when_flat(histories):
    held = buy_max_affordable(new_portfolio(1000.0), 7.0, "ACME", T, histories)
    flat = sell_all(held, 7.0, "ACME", T, histories)
    assert shares_on_hand(flat, "ACME") == 0
    assert flat.cash == pytest.approx(93.0 + 900.0 - 7.0)
    assert [t.kind for t in flat.transactions] == ["buy", "sell"]
    assert sell_all(flat, 7.0, "ACME", T, histories) is flat


def test_sale_rejected_when_proceeds_do_not_cover_commission(histories):
    held = buy_max_affordable(new_portfolio(10.0), 7.0, "PENNY", T, histories)
    assert shares_on_hand(held, "PENNY") == 1
    assert held.cash == pytest.approx(1.0)
    assert sell_all(held, 7.0, "PENNY", T, histories) is held
    assert sell_shares(held, 7.0, "PENNY", 1, T, histories) is held
    forced = sell_shares(held, 7.0, "PENNY", 1, T, histories, allow_short=True)
    assert forced.cash == pytest.approx(-4.0)
    assert shares_on_hand(forced, "PENNY") == 0


def test_rejected_orders_leave_portfolio_identical(histories):
    rng = np.random.default_rng(21)
    p = new_portfolio(2_000.0)
    for _ in range(200):
        before = p
        action = rng.integers(0, 4)
        qty = int(rng.integers(-2, 30))
        if action == 0:
            p = buy_shares(p, 7.0, "ACME", qty, T, histories)
        elif action == 1:
            p = sell_shares(p, 7.0, "ACME", qty, T, histories)
        elif action == 2:
            p = buy_max_affordable(p, 7.0, "ACME", T, histories)
        else:
            p = sell_all(p, 7.0, "ACME", T, histories)
        assert p.cash >= 0
        assert shares_on_hand(p, "ACME") >= 0
        if len(p.transactions) == len(before.transactions):
            assert p is before


def test_portfolio_value_marks_positions_to_close(histories):
    p = Portfolio(cash=10.0, positions={"ACME": 2, "LATE": 0})
    assert portfolio_value(p, T, histories) == pytest.approx(210.0)
    short = Portfolio(cash=500.0, positions={"ACME": -3})
    assert portfolio_value(short, T, histories) == pytest.approx(200.0)


def test_portfolio_value_raises_for_unquoted_position(histories):
    p = Portfolio(cash=10.0, positions={"LATE": 1})
    with pytest.raises(MissingQuoteError):
        portfolio_value(p, T, histories)


def test_portfolio_positions_are_read_only():
    p = Portfolio(cash=1.0, positions={"A": 1})
    with pytest.raises(TypeError):
        p.positions["A"] = 2  # type: ignore[index]
