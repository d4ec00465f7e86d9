from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Mapping, Tuple

import numpy as np

Number = float | int


@dataclass(frozen=True)
class PrecisionConfig:
    """
    Named solver controls, e.g. ``rtol``/``atol``/``max_num_steps`` or
    ``step_size``/``n_grid``.

    Two configs are only comparable by solving with both; nothing here assumes
    an ordering.
    """

    controls: Tuple[Tuple[str, Number], ...]

    @classmethod
    def of(cls, **controls: Number) -> "PrecisionConfig":
        return cls.from_mapping(controls)

    @classmethod
    def from_mapping(cls, controls: Mapping[str, Number]) -> "PrecisionConfig":
        if not controls:
            raise ValueError("PrecisionConfig needs at least one control")
        items = []
        for name, value in sorted(controls.items()):
            if isinstance(value, (bool, np.bool_)) or not isinstance(value, numbers.Real):
                raise TypeError(f"Control {name!r} must be numeric, got {value!r}")
            value = int(value) if isinstance(value, numbers.Integral) else float(value)
            items.append((str(name), value))
        return cls(controls=tuple(items))

    def __getitem__(self, name: str) -> Number:
        for key, value in self.controls:
            if key == name:
                return value
        raise KeyError(name)

    def __contains__(self, name: object) -> bool:
        return any(key == name for key, _ in self.controls)

    def __iter__(self) -> Iterator[str]:
        return (key for key, _ in self.controls)

    def get(self, name: str, default: Number | None = None) -> Number | None:
        return self[name] if name in self else default

    def as_dict(self) -> Dict[str, Number]:
        return dict(self.controls)

    def replace(self, **controls: Number) -> "PrecisionConfig":
        merged = self.as_dict()
        merged.update(controls)
        return PrecisionConfig.from_mapping(merged)

    def scaled(self, factors: Mapping[str, float]) -> "PrecisionConfig":
        """
        Multiply the named controls by their factors.

        Integer controls stay integers (rounded away from the original value
        so a refinement never collapses back onto it). Controls missing from
        this config are ignored; at least one must match.
        """
        matched = [name for name in factors if name in self]
        if not matched:
            raise ValueError(
                f"None of {sorted(factors)} are controls of {self.as_dict()}"
            )
        updated: Dict[str, Number] = {}
        for name in matched:
            factor = float(factors[name])
            if factor <= 0 or factor == 1.0:
                raise ValueError(f"Scale factor for {name!r} must be positive and != 1")
            value = self[name]
            if isinstance(value, int):
                scaled = value * factor
                updated[name] = int(math.ceil(scaled) if factor > 1 else math.floor(scaled))
                if updated[name] == value:
                    updated[name] = value + 1 if factor > 1 else max(value - 1, 1)
            else:
                updated[name] = value * factor
        return self.replace(**updated)

    def __str__(self) -> str:
        return ", ".join(f"{k}={v:g}" for k, v in self.controls)


RefineFn = Callable[[PrecisionConfig], PrecisionConfig]


def make_refiner(factors: Mapping[str, float]) -> RefineFn:
    """Build a refinement policy that rescales controls by fixed factors."""
    factors = dict(factors)

    def refine(config: PrecisionConfig) -> PrecisionConfig:
        refined = config.scaled(factors)
        if refined == config:
            raise ValueError(f"Refinement left {config} unchanged")
        return refined

    return refine
