from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from psisflow.importance.psis import K_RELIABLE, K_UNRELIABLE, PSISResult
from psisflow.tuning import ProbeRound


def plot_log_weights(log_weights: np.ndarray, result: PSISResult, out_dir: str | Path) -> None:
    out_dir = Path(out_dir)
    finite = np.asarray(log_weights, dtype=float)
    finite = finite[np.isfinite(finite)]
    fig, ax = plt.subplots(figsize=(8, 4))
    ax.hist(finite - finite.max(), bins=40, alpha=0.7)
    if result.tail_length > 0:
        cutoff = np.sort(finite - finite.max())[-result.tail_length]
        ax.axvline(cutoff, color="red", linestyle="--", label=f"tail ({result.tail_length} draws)")
        ax.legend(loc="upper left", fontsize=8)
    ax.set_title(f"Log Importance Weights (k_hat = {result.k_hat:.2f})")
    ax.set_xlabel("log weight - max")
    ax.set_ylabel("Count")
    fig.tight_layout()
    fig.savefig(out_dir / "log_weights.png", dpi=150)
    plt.close(fig)


def plot_tuning_errors(probe: ProbeRound, error_bound: float, out_dir: str | Path) -> None:
    out_dir = Path(out_dir)
    errors = np.where(np.isfinite(probe.errors), probe.errors, np.nan)
    fig, ax = plt.subplots(figsize=(8, 4))
    ax.scatter(probe.indices, errors, s=6)
    ax.axhline(error_bound, color="red", linestyle="--", label="error bound")
    ax.set_yscale("log")
    ax.set_title(f"Reference Solver Error per Draw ({probe.config})")
    ax.set_xlabel("Draw")
    ax.set_ylabel("Max abs error")
    ax.legend(loc="upper right", fontsize=8)
    fig.tight_layout()
    fig.savefig(out_dir / "tuning_errors.png", dpi=150)
    plt.close(fig)


def plot_k_hat_history(diagnostics: pd.DataFrame, out_dir: str | Path) -> None:
    out_dir = Path(out_dir)
    fig, ax = plt.subplots(figsize=(8, 4))
    k_hat = diagnostics["k_hat"].replace(np.inf, np.nan)
    ax.plot(diagnostics["iteration"], k_hat, marker="o")
    ax.axhline(K_RELIABLE, color="green", linestyle="--", label="reliable")
    ax.axhline(K_UNRELIABLE, color="red", linestyle="--", label="unreliable")
    ax.set_title("Pareto k-hat per Iteration")
    ax.set_xlabel("Iteration")
    ax.set_ylabel("k_hat")
    ax.legend(loc="upper right", fontsize=8)
    fig.tight_layout()
    fig.savefig(out_dir / "k_hat_history.png", dpi=150)
    plt.close(fig)
