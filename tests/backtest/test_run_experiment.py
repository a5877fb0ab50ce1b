from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import yaml

from stocksim.backtest import run_experiment as runner
from stocksim.backtest.allocation import evenly_distribute_trial_count
from stocksim.core.exceptions import ConfigError
from stocksim.dal.price_history import PriceHistoryStore
from stocksim.dal.sources import CsvPriceSource


def _write_csv(path: Path, start: str, end: str, closes=None) -> None:
    days = pd.bdate_range(start, end)
    if closes is None:
        closes = np.full(len(days), 100.0)
    lines = [
        f"{d:%Y%m%d},1200,{c:.4f},{c * 1.01:.4f},{c * 0.99:.4f},{c:.4f}"
        for d, c in zip(days, closes)
    ]
    path.write_text("\n".join(lines) + "\n")


@pytest.fixture
def data_dir(tmp_path) -> Path:
    root = tmp_path / "data"
    root.mkdir()
    _write_csv(root / "FLAT.csv", "2000-01-03", "2003-12-31")
    days = len(pd.bdate_range("2000-01-03", "2003-12-31"))
    walk = 100.0 * np.cumprod(1 + np.random.default_rng(11).normal(0.0, 0.01, days))
    _write_csv(root / "WALK.csv", "2000-01-03", "2003-12-31", walk)
    _write_csv(root / "TINY.csv", "2000-01-03", "2000-02-28")
    return root


def _config(tmp_path: Path, data_dir: Path, **experiment) -> Path:
    exp = {"start": "2000-01-01", "end": "2003-12-31", "trial_count": 6, "seed": 5, "max_workers": 2}
    exp.update(experiment)
    cfg = {
        "data_dir": str(data_dir),
        "strategy": {"name": "buy_and_hold", "trading_period_length": "1y", "commission": 7},
        "experiment": exp,
    }
    path = tmp_path / "experiment.yml"
    path.write_text(yaml.safe_dump(cfg))
    return path


def test_build_strategy_params_reads_schedule_and_options():
    sparams = runner.build_strategy_params(
        {
            "name": "bollinger_bands",
            "time_increment": "1d",
            "principal": 5000,
            "schedule": {"mon": ["09:30", "16:00"], "wed": ["09:30", "16:00"]},
            "params": {"n_periods": 10, "k_multiplier": 1.5},
        }
    )
    assert sparams.name == "bollinger_bands"
    assert sparams.principal == 5000.0
    assert sparams.extra.n_periods == 10
    assert sparams.calendar.sessions[1] is None
    assert sparams.calendar.in_session(pd.Timestamp("2024-01-01 10:00"))


@pytest.mark.parametrize(
    "cfg",
    [
        {},
        {"name": "nope"},
        {"name": "macd", "colour": "red"},
        {"name": "macd", "params": {"bogus": 1}},
        {"name": "buy_and_hold", "time_increment": "soon"},
    ],
)
def test_build_strategy_params_rejects_bad_sections(cfg):
    with pytest.raises(ConfigError):
        runner.build_strategy_params(cfg)


def test_build_experiment_params_discovers_instruments(data_dir):
    store = PriceHistoryStore(CsvPriceSource(data_dir))
    eparams = runner.build_experiment_params(
        {"start": "2000-01-01", "end": "2003-12-31", "trial_count": 4, "distribute": "evenly"}, store
    )
    assert eparams.instruments == ("FLAT", "TINY", "WALK")
    assert eparams.distribute_trial_count is evenly_distribute_trial_count

    trimmed = runner.build_experiment_params(
        {"start": "2000-01-01", "end": "2003-12-31", "trial_count": 4, "min_history": "1y"}, store
    )
    assert trimmed.instruments == ("FLAT", "WALK")


def test_build_experiment_params_requires_dates(data_dir):
    store = PriceHistoryStore(CsvPriceSource(data_dir))
    with pytest.raises(ConfigError, match="experiment.end"):
        runner.build_experiment_params({"start": "2000-01-01", "trial_count": 1}, store)
    with pytest.raises(ConfigError):
        runner.build_experiment_params(
            {"start": "2000-01-01", "end": "2001-01-01", "trial_count": 1, "distribute": "lumpy"}, store
        )


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        runner.load_config(path)


def test_run_from_config_summarises_usable_sets(tmp_path, data_dir):
    summary = runner.run_from_config(_config(tmp_path, data_dir, distribute="evenly"))
    assert summary["strategy"]["strategy"] == "buy_and_hold"
    sets = {tuple(s["instruments"]): s["stats"] for s in summary["trial_sets"]}
    assert set(sets) == {("FLAT",), ("WALK",)}
    assert sets[("FLAT",)]["mean"] == pytest.approx(9993.0)
    assert sets[("FLAT",)]["count"] == 2
    assert summary["experiment"]["count"] == 4


def test_main_prints_json_and_reports_failures(tmp_path, data_dir, capsys):
    assert runner.main(["--config", str(_config(tmp_path, data_dir)), "--run-id", "t1"]) == 0
    out = capsys.readouterr().out
    out = json.loads(out[out.index("{\n") :])
    assert out["experiment"]["count"] > 0

    broken = tmp_path / "broken.yml"
    broken.write_text(yaml.safe_dump({"data_dir": str(data_dir), "strategy": {"name": "buy_and_hold"}}))
    assert runner.main(["--config", str(broken)]) == 1
