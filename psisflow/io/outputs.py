from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pandas as pd

from psisflow.config import WorkflowConfig
from psisflow.io.metadata import build_run_metadata
from psisflow.io.plots import plot_k_hat_history, plot_log_weights, plot_tuning_errors
from psisflow.workflow import WorkflowResult


def build_summary(result: WorkflowResult) -> Dict[str, Any]:
    return {
        "k_hat": result.k_hat,
        "k_category": result.psis_result.category,
        "psis_ess": result.psis_result.ess,
        "resample_ess": result.resampled.ess,
        "n_draws": len(result.low_draws),
        "n_resampled": len(result.draws),
        "n_failures": len(result.log_weights.failures),
        "n_escalations": result.n_escalations,
        "low_config": result.low_config.as_dict(),
        "high_config": result.high_config.as_dict(),
        "tuning_max_error": result.tuning.max_error,
    }


def save_workflow_outputs(result: WorkflowResult, out_dir: str | Path, cfg: WorkflowConfig) -> Dict[str, Any]:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    diagnostics = result.diagnostics_frame()
    diagnostics.to_csv(out_dir / "iterations.csv", index=False)

    if cfg.output.save_draws:
        result.draws.to_frame().to_csv(out_dir / "resampled_draws.csv", index=False)
        weights = pd.DataFrame(
            {
                "draw": result.log_weights.draw_indices,
                "log_weight": result.log_weights.values,
                "smoothed_log_weight": result.psis_result.smoothed_log_weights,
            }
        )
        weights.to_csv(out_dir / "log_weights.csv", index=False)

    if cfg.output.save_plots:
        plots_dir = out_dir / "plots"
        plots_dir.mkdir(exist_ok=True)
        plot_log_weights(result.log_weights.values, result.psis_result, plots_dir)
        plot_tuning_errors(result.tuning.final, cfg.tuner.error_bound, plots_dir)
        plot_k_hat_history(diagnostics, plots_dir)

    summary = build_summary(result)
    summary["metadata"] = build_run_metadata(cfg)
    with (out_dir / "summary.json").open("w") as f:
        json.dump(summary, f, indent=2)
    return summary
