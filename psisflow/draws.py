"""
Posterior Draws
================
Immutable containers for sampler output.

A draw is a named parameter vector. Its parameters are split into the
structural ones (handed to the solver) and the auxiliary ones (handed to the
observation model, e.g. a dispersion or noise scale).
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class Draw:
    """A single sampler iteration."""

    values: Mapping[str, float]
    structural_names: Tuple[str, ...]

    @property
    def structural(self) -> Dict[str, float]:
        return {name: self.values[name] for name in self.structural_names}

    @property
    def aux(self) -> Dict[str, float]:
        return {
            name: value
            for name, value in self.values.items()
            if name not in self.structural_names
        }

    def __getitem__(self, name: str) -> float:
        return self.values[name]


class DrawSet:
    """Ordered, non-empty collection of draws sharing one parameter schema."""

    def __init__(
        self,
        values: np.ndarray,
        names: Sequence[str],
        structural: Optional[Sequence[str]] = None,
    ) -> None:
        array = np.array(values, dtype=float, copy=True)
        if array.ndim == 1:
            array = array[:, None]
        names = tuple(names)
        if array.ndim != 2 or array.shape[0] == 0:
            raise ValueError("DrawSet needs a non-empty (n_draws, n_params) array")
        if array.shape[1] != len(names):
            raise ValueError(
                f"{array.shape[1]} columns but {len(names)} parameter names"
            )
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate parameter names: {names}")

        structural = tuple(names if structural is None else structural)
        unknown = [name for name in structural if name not in names]
        if unknown:
            raise ValueError(f"Unknown structural parameters: {unknown}")

        array.setflags(write=False)
        self._values = array
        self._names = names
        self._structural = structural

    @classmethod
    def from_records(
        cls,
        records: Sequence[Mapping[str, float]],
        structural: Optional[Sequence[str]] = None,
    ) -> "DrawSet":
        if len(records) == 0:
            raise ValueError("DrawSet needs at least one draw")
        names = tuple(records[0].keys())
        for i, record in enumerate(records):
            if set(record.keys()) != set(names):
                raise ValueError(f"Draw {i} does not match schema {names}")
        values = np.array([[record[name] for name in names] for record in records], dtype=float)
        return cls(values, names, structural)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, structural: Optional[Sequence[str]] = None) -> "DrawSet":
        return cls(frame.to_numpy(dtype=float), [str(c) for c in frame.columns], structural)

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    @property
    def structural_names(self) -> Tuple[str, ...]:
        return self._structural

    @property
    def aux_names(self) -> Tuple[str, ...]:
        return tuple(name for name in self._names if name not in self._structural)

    def __len__(self) -> int:
        return self._values.shape[0]

    def __getitem__(self, index: int) -> Draw:
        row = self._values[index]
        values = MappingProxyType({name: float(v) for name, v in zip(self._names, row)})
        return Draw(values=values, structural_names=self._structural)

    def __iter__(self) -> Iterator[Draw]:
        for i in range(len(self)):
            yield self[i]

    def column(self, name: str) -> np.ndarray:
        return self._values[:, self._names.index(name)]

    def take(self, indices: Sequence[int]) -> "DrawSet":
        """Fresh DrawSet holding the draws at ``indices`` (repeats allowed)."""
        indices = np.asarray(indices, dtype=int)
        return DrawSet(self._values[indices], self._names, self._structural)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._values, columns=list(self._names))

    def __repr__(self) -> str:
        return f"DrawSet(n_draws={len(self)}, names={self._names}, structural={self._structural})"
