from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError


class LoopConfig(BaseModel):
    k_threshold: float = 0.5
    max_escalations: int = Field(default=5, ge=0)
    escalation_factors: Dict[str, float] = {"rtol": 0.1, "atol": 0.1}
    timeout_seconds: float | None = None


class TunerConfig(BaseModel):
    error_bound: float = Field(default=1e-3, gt=0)
    max_refinements: int = Field(default=8, ge=0)
    refine_factors: Dict[str, float] = {"rtol": 0.1, "atol": 0.1}
    max_probe_draws: int | None = Field(default=None, ge=1)


class WeightsConfig(BaseModel):
    failure_policy: Literal["neg_inf", "drop"] = "neg_inf"
    max_failure_fraction: float = Field(default=0.1, ge=0.0, le=1.0)


class ParallelConfig(BaseModel):
    n_workers: int = Field(default=1, ge=1)
    backend: Literal["thread", "process"] = "thread"


class ResampleConfig(BaseModel):
    target_size: int | None = None
    replace: bool = True
    seed: int = 42


class OutputConfig(BaseModel):
    save_plots: bool = True
    save_draws: bool = True


class WorkflowConfig(BaseModel):
    workflow: LoopConfig = LoopConfig()
    tuner: TunerConfig = TunerConfig()
    weights: WeightsConfig = WeightsConfig()
    parallel: ParallelConfig = ParallelConfig()
    resample: ResampleConfig = ResampleConfig()
    output: OutputConfig = OutputConfig()


class ConfigError(Exception):
    pass


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path) -> WorkflowConfig:
    path = Path(path)
    data = yaml.safe_load(path.read_text()) or {}
    base_path = data.get("base")
    if base_path:
        base_data = yaml.safe_load((path.parent / base_path).read_text()) or {}
        data = deep_merge(base_data, data)
        data.pop("base", None)
    try:
        return WorkflowConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def dump_config(cfg: WorkflowConfig, path: str | Path) -> None:
    path = Path(path)
    path.write_text(yaml.safe_dump(cfg.model_dump(), sort_keys=False))
