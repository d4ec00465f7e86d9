from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class RNGManager:
    seed: int

    def __post_init__(self) -> None:
        self.numpy = np.random.default_rng(self.seed)
