from __future__ import annotations

import argparse
import itertools
import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, Iterable, List

from loguru import logger

from stocksim.backtest.experiment import fitness
from stocksim.backtest.params import ExperimentParams
from stocksim.backtest.run_experiment import (
    build_experiment_params,
    build_store,
    build_strategy_params,
    load_config,
)
from stocksim.core.exceptions import ConfigError
from stocksim.dal.price_history import PriceHistoryStore
from stocksim.logging_utils import logging_context, setup_logging
from stocksim.settings import get_simulation_settings


def _expand_param_grid(grid: Dict[str, Iterable[Any]]) -> List[Dict[str, Any]]:
    if not grid:
        return [{}]
    keys = list(grid.keys())
    combos = []
    for values in itertools.product(*(_as_list(grid[k]) for k in keys)):
        combos.append(dict(zip(keys, values, strict=True)))
    return combos


def _as_list(values: Any) -> List[Any]:
    if isinstance(values, (list, tuple)):
        return list(values)
    return [values]


def _strategy_cfg_for(base: Dict[str, Any], params: Dict[str, Any]) -> Dict[str, Any]:
    cfg = dict(base)
    merged = dict(cfg.get("params") or {})
    merged.update(params)
    cfg["params"] = merged
    return cfg


def _execute_job(
    job_idx: int,
    strategy_cfg: Dict[str, Any],
    params: Dict[str, Any],
    eparams: ExperimentParams,
    store: PriceHistoryStore,
) -> Dict[str, Any]:
    sparams = build_strategy_params(_strategy_cfg_for(strategy_cfg, params))
    started = perf_counter()
    score = fitness(eparams, sparams, store=store)
    payload = {
        "job_id": job_idx,
        "strategy": sparams.name,
        "params": params,
        "fitness": score,
        "elapsed_s": round(perf_counter() - started, 3),
    }
    logger.info(
        "[sweep] job={} strategy={} params={} fitness={:.2f}",
        job_idx,
        sparams.name,
        params,
        score,
    )
    return payload


def run_sweep(
    config_path: Path,
    *,
    job_id: str | None = None,
    write_summary: bool = True,
) -> Dict[str, Any]:
    """
    Evaluate ``fitness`` for every combination in the config's ``params`` grid.

    Failed combinations are logged and left out. Results are sorted by
    fitness, best first, and written to ``summary.jsonl`` under a timestamped
    directory of ``output_dir``.
    """
    cfg = load_config(config_path)
    strategy_cfg = cfg.get("strategy") or {}
    if not strategy_cfg.get("name"):
        raise ConfigError("strategy.name is required")
    store = build_store(cfg)
    eparams = build_experiment_params(cfg.get("experiment") or {}, store)
    combos = _expand_param_grid(cfg.get("params", {}) or {})

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    base_output = Path(cfg.get("output_dir") or f"artifacts/sweeps/{strategy_cfg['name']}")
    sweep_dir = base_output / timestamp
    job_ref = job_id or timestamp
    logger.info("[sweep] starting job={} dir={} jobs={}", job_ref, sweep_dir, len(combos))

    started = perf_counter()
    results: List[Dict[str, Any]] = []
    max_workers = int(cfg.get("max_workers") or get_simulation_settings().sweep_workers)
    max_workers = max(1, min(max_workers, len(combos)))
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sweep") as executor:
        future_map = {
            executor.submit(_execute_job, idx, strategy_cfg, params, eparams, store): (idx, params)
            for idx, params in enumerate(combos, start=1)
        }
        for future in as_completed(future_map):
            job_idx, params = future_map[future]
            try:
                payload = future.result()
            except Exception as exc:
                logger.exception("[sweep] job={} params={} failed: {}", job_idx, params, exc)
                continue
            results.append(payload)

    results.sort(key=lambda r: (-r["fitness"], r["job_id"]))
    summary_path = None
    if write_summary:
        sweep_dir.mkdir(parents=True, exist_ok=True)
        summary_path = sweep_dir / "summary.jsonl"
        with summary_path.open("w") as handle:
            for record in results:
                handle.write(json.dumps(record, default=str) + "\n")

    logger.info(
        "[sweep] completed job={} succeeded={} failed={} elapsed={:.1f}s",
        job_ref,
        len(results),
        len(combos) - len(results),
        perf_counter() - started,
    )
    return {
        "job_id": job_ref,
        "sweep_dir": str(sweep_dir),
        "summary_path": str(summary_path) if summary_path else None,
        "results": results,
        "best": results[0] if results else None,
    }


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run a parameter sweep over experiment fitness")
    parser.add_argument("--config", required=True, help="Path to YAML sweep definition")
    parser.add_argument("--no-save", dest="no_save", action="store_true", default=False)
    args = parser.parse_args(argv)
    setup_logging()
    with logging_context(run_id=Path(args.config).stem):
        outcome = run_sweep(Path(args.config), write_summary=not args.no_save)
    print(json.dumps(outcome, default=str, indent=2))


if __name__ == "__main__":
    main()
