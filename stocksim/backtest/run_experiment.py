from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml
from loguru import logger

from stocksim.backtest.allocation import resolve_instrument_set_gen, resolve_trial_distributor
from stocksim.backtest.experiment import experiment_stats, run_experiment
from stocksim.backtest.params import ExperimentParams, StrategyParams
from stocksim.core.calendar import TradingCalendar
from stocksim.core.exceptions import ConfigError, StockSimError
from stocksim.core.timeutils import parse_instant, parse_period
from stocksim.dal.price_history import PriceHistoryStore
from stocksim.dal.sources import CsvPriceSource
from stocksim.logging_utils import logging_context, setup_logging
from stocksim.settings import get_simulation_settings
from stocksim.strats import get_strategy


def load_config(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Experiment config must be a mapping")
    return data


def build_store(cfg: Dict[str, Any]) -> PriceHistoryStore:
    data_dir = cfg.get("data_dir") or get_simulation_settings().data_dir
    return PriceHistoryStore(CsvPriceSource(data_dir))


def build_strategy_params(strategy_cfg: Dict[str, Any]) -> StrategyParams:
    """
    Strategy section -> StrategyParams.

    Keys: ``name`` (registry key), ``trading_period_length``, ``time_increment``,
    ``commission``, ``principal``, optional ``schedule`` mapping and a
    ``params`` mapping of strategy-specific options.
    """
    cfg = dict(strategy_cfg or {})
    name = cfg.pop("name", None)
    if not name:
        raise ConfigError("strategy.name is required")
    try:
        entry = get_strategy(name)
    except KeyError as exc:
        raise ConfigError(str(exc)) from exc

    kwargs: Dict[str, Any] = {}
    for key in ("trading_period_length", "time_increment"):
        if key in cfg:
            kwargs[key] = cfg.pop(key)
    for key in ("commission", "principal"):
        if key in cfg:
            kwargs[key] = float(cfg.pop(key))
    schedule = cfg.pop("schedule", None)
    if schedule:
        kwargs["calendar"] = TradingCalendar.from_mapping(schedule)
    options = cfg.pop("params", None) or {}
    if cfg:
        raise ConfigError(f"unknown strategy keys: {sorted(cfg)}")
    try:
        return entry.strategy_params(**kwargs, **options)
    except TypeError as exc:
        raise ConfigError(f"invalid parameters for strategy {name!r}: {exc}") from exc


def build_experiment_params(
    exp_cfg: Dict[str, Any], store: PriceHistoryStore
) -> ExperimentParams:
    """
    Experiment section -> ExperimentParams.

    ``instruments`` defaults to every CSV in the data directory. With
    ``min_history`` set, instruments with less coverage are dropped up front.
    """
    cfg = dict(exp_cfg or {})
    for key in ("start", "end", "trial_count"):
        if key not in cfg:
            raise ConfigError(f"experiment.{key} is required")

    instruments = cfg.get("instruments")
    if not instruments:
        lister = getattr(store.source, "instruments", None)
        instruments = lister() if lister else []
    if isinstance(instruments, str):
        instruments = [instruments]
    min_history = cfg.get("min_history")
    if min_history:
        instruments = store.instruments_with_enough_history(
            instruments, parse_period(min_history)
        )

    try:
        return ExperimentParams(
            instruments=tuple(instruments),
            trial_count=int(cfg["trial_count"]),
            start=parse_instant(cfg["start"]),
            end=parse_instant(cfg["end"]),
            instrument_set_gen=resolve_instrument_set_gen(cfg.get("instrument_sets")),
            distribute_trial_count=resolve_trial_distributor(cfg.get("distribute")),
            max_workers=cfg.get("max_workers"),
            seed=cfg.get("seed"),
            fail_fast=bool(cfg.get("fail_fast", False)),
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def params_from_config(
    cfg: Dict[str, Any], store: PriceHistoryStore
) -> Tuple[ExperimentParams, StrategyParams]:
    sparams = build_strategy_params(cfg.get("strategy") or {})
    eparams = build_experiment_params(cfg.get("experiment") or {}, store)
    return eparams, sparams


def run_from_config(config_path: Path) -> Dict[str, Any]:
    cfg = load_config(config_path)
    store = build_store(cfg)
    eparams, sparams = params_from_config(cfg, store)
    pairs = run_experiment(eparams, sparams, store=store)
    trial_sets = [
        {"instruments": list(instruments), "stats": stats.to_dict() if hasattr(stats, "to_dict") else stats}
        for instruments, stats in pairs
    ]
    summary: Dict[str, Any] = {
        "strategy": sparams.describe(),
        "trial_sets": trial_sets,
        "experiment": experiment_stats(pairs).to_dict() if pairs else None,
    }
    return summary


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Run a randomized backtest experiment")
    ap.add_argument("--config", required=True, help="Path to YAML experiment definition")
    ap.add_argument("--run-id", dest="run_id", default=None, help="Label attached to log lines")
    ap.add_argument("--log-level", dest="log_level", default=None)
    args = ap.parse_args(argv)

    setup_logging(level=args.log_level)
    with logging_context(run_id=args.run_id or Path(args.config).stem):
        try:
            summary = run_from_config(Path(args.config))
        except StockSimError as exc:
            logger.error("Experiment failed: {}", exc)
            return 1
    print(json.dumps(summary, default=str, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
