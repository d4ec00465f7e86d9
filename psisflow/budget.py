from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from psisflow.errors import WorkflowCancelled


@dataclass
class Budget:
    """Wall-clock limit plus an optional external cancellation flag."""

    timeout_seconds: Optional[float] = None
    cancel_event: Optional[threading.Event] = None
    started: float = field(default_factory=time.monotonic)

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def check(self, stage: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise WorkflowCancelled(f"Cancelled during {stage}")
        if self.timeout_seconds is not None and self.elapsed() > self.timeout_seconds:
            raise WorkflowCancelled(
                f"Timed out during {stage} after {self.elapsed():.1f}s "
                f"(limit {self.timeout_seconds:.1f}s)"
            )
