from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import numpy as np
import pandas as pd

from psisflow.config import WorkflowConfig, dump_config, load_config
from psisflow.draws import DrawSet
from psisflow.importance.psis import psis
from psisflow.importance.resample import resample
from psisflow.io.logging import setup_logging
from psisflow.io.plots import plot_log_weights
from psisflow.rng import RNGManager


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="psisflow", description="Importance-sampling validation of solver precision"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    diag = sub.add_parser("psis", help="Pareto-smooth log weights and report k-hat")
    diag.add_argument("--weights", required=True, help="CSV with a log weight column")
    diag.add_argument("--column", default="log_weight")
    diag.add_argument("--plot", action="store_true", help="Save a log weight histogram")
    diag.add_argument("--out", required=True, help="Output directory")

    res = sub.add_parser("resample", help="Resample draws by their importance weights")
    res.add_argument("--draws", required=True, help="CSV of draws, one column per parameter")
    res.add_argument("--weights", required=True, help="CSV with a log weight column, one row per draw")
    res.add_argument("--column", default="log_weight")
    res.add_argument("--config", default=None, help="Workflow config YAML (resample section)")
    res.add_argument("--size", type=int, default=None)
    res.add_argument("--seed", type=int, default=None)
    res.add_argument("--raw", action="store_true", help="Skip Pareto smoothing")
    res.add_argument("--without-replacement", action="store_true")
    res.add_argument("--force", action="store_true", help="Resample even when k_hat fails the gate")
    res.add_argument("--out", required=True, help="Output directory")

    init = sub.add_parser("init-config", help="Write the default workflow config")
    init.add_argument("--out", required=True, help="Path of the YAML file to write")

    return parser.parse_args(argv)


def read_log_weights(path: str | Path, column: str) -> np.ndarray:
    frame = pd.read_csv(path, float_precision="round_trip")
    if column not in frame.columns:
        raise SystemExit(f"{path}: no column {column!r} (have {list(frame.columns)})")
    return frame[column].to_numpy(dtype=float)


def run_psis(args: argparse.Namespace) -> None:
    log_weights = read_log_weights(args.weights, args.column)
    result = psis(log_weights)
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    pd.DataFrame(
        {"log_weight": log_weights, "smoothed_log_weight": result.smoothed_log_weights}
    ).to_csv(out_dir / "smoothed_log_weights.csv", index=False)
    summary = {
        "k_hat": result.k_hat,
        "category": result.category,
        "reliable": result.is_reliable(),
        "ess": result.ess,
        "tail_length": result.tail_length,
        "n_draws": int(len(log_weights)),
    }
    with (out_dir / "psis_summary.json").open("w") as f:
        json.dump(summary, f, indent=2)
    if args.plot:
        plot_log_weights(log_weights, result, out_dir)
    logging.info("k_hat=%.3f (%s), ESS=%.1f", result.k_hat, result.category, result.ess)


def run_resample(args: argparse.Namespace) -> None:
    cfg = load_config(args.config) if args.config else WorkflowConfig()
    draws = DrawSet.from_frame(pd.read_csv(args.draws, float_precision="round_trip"))
    log_weights = read_log_weights(args.weights, args.column)
    if len(log_weights) != len(draws):
        raise SystemExit(f"{len(log_weights)} weights for {len(draws)} draws")

    if not args.raw:
        smoothed = psis(log_weights)
        logging.info("k_hat=%.3f (%s)", smoothed.k_hat, smoothed.category)
        if not smoothed.is_reliable(cfg.workflow.k_threshold):
            if not args.force:
                raise SystemExit(
                    f"k_hat={smoothed.k_hat:.3f} is not below {cfg.workflow.k_threshold:.2f}; "
                    "refusing to resample (use --force to override)"
                )
            logging.warning(
                "k_hat=%.3f is above %.2f; resampled draws are not reliable",
                smoothed.k_hat,
                cfg.workflow.k_threshold,
            )
        log_weights = smoothed.smoothed_log_weights

    seed = cfg.resample.seed if args.seed is None else args.seed
    size = cfg.resample.target_size if args.size is None else args.size
    replace = cfg.resample.replace and not args.without_replacement
    result = resample(draws, log_weights, target_size=size, rng=RNGManager(seed).numpy, replace=replace)

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    result.draws.to_frame().to_csv(out_dir / "resampled_draws.csv", index=False)
    with (out_dir / "resample_summary.json").open("w") as f:
        json.dump(
            {"ess": result.ess, "n_draws": len(draws), "n_resampled": len(result.draws), "seed": seed},
            f,
            indent=2,
        )
    logging.info("Resampled %d draws (ESS %.1f of %d)", len(result.draws), result.ess, len(draws))


def run_init_config(args: argparse.Namespace) -> None:
    path = Path(args.out)
    path.parent.mkdir(parents=True, exist_ok=True)
    dump_config(WorkflowConfig(), path)
    logging.info("Wrote default config to %s", path)


def main(argv: list[str] | None = None) -> None:
    setup_logging()
    args = parse_args(argv)
    if args.command == "psis":
        run_psis(args)
    elif args.command == "resample":
        run_resample(args)
    elif args.command == "init-config":
        run_init_config(args)


if __name__ == "__main__":
    main()
