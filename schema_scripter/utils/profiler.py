"""Step timing for export runs."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Iterator, List, Optional

from schema_scripter.utils.logger import setup_logging

logger = setup_logging(__name__)


@dataclass(frozen=True)
class StepTiming:
    name: str
    depth: int
    elapsed_ms: float


class Profiler:
    """Collects nested step timings and renders them as a plain-text report."""

    def __init__(self, name: str) -> None:
        self.name = name
        # Slots are reserved when a step starts so the report keeps start order.
        self._slots: List[Optional[StepTiming]] = []
        self._depth = 0
        self._started = perf_counter()
        self._stopped: float | None = None

    @contextmanager
    def step(self, name: str) -> Iterator[None]:
        index = len(self._slots)
        self._slots.append(None)
        depth = self._depth
        self._depth += 1
        started = perf_counter()
        try:
            yield
        finally:
            elapsed = (perf_counter() - started) * 1000
            self._depth -= 1
            self._slots[index] = StepTiming(name=name, depth=depth, elapsed_ms=elapsed)
            logger.debug("Step %s finished in %.1f ms", name, elapsed)

    @property
    def timings(self) -> List[StepTiming]:
        return [timing for timing in self._slots if timing is not None]

    def stop(self) -> float:
        if self._stopped is None:
            self._stopped = perf_counter()
        return self.total_ms

    @property
    def total_ms(self) -> float:
        end = self._stopped if self._stopped is not None else perf_counter()
        return (end - self._started) * 1000

    def render_plain_text(self) -> str:
        lines = [f"{self.name} {self.total_ms:.1f} ms"]
        for timing in self.timings:
            indent = "  " * (timing.depth + 1)
            lines.append(f"{indent}{timing.name} {timing.elapsed_ms:.1f} ms")
        return "\n".join(lines)


__all__ = ["Profiler", "StepTiming"]
