from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraceStep:
    step: str
    description: str
    formula: str
    inputs: Mapping[str, Any] = field(default_factory=dict)
    calculation: str = ""
    result: Any = None
    dependencies: Tuple[str, ...] = ()


class TraceSink:
    """
    Observer for derivation steps. The base sink discards everything.
    """

    def start(self, bond_name: str, bond_input: Any) -> None:
        pass

    def add_step(self, step: TraceStep) -> None:
        pass

    def finish(self, summary: Mapping[str, Any]) -> None:
        pass


NULL_TRACE = TraceSink()


class CalculationTrace(TraceSink):
    """
    Append-only audit log for one engine invocation.

    Steps are kept in the order they were recorded and mirrored to the
    module logger at DEBUG level.
    """

    def __init__(self) -> None:
        self.bond_name: Optional[str] = None
        self.bond_input: Any = None
        self.summary: Dict[str, Any] = {}
        self._steps: List[TraceStep] = []

    def start(self, bond_name: str, bond_input: Any) -> None:
        self.bond_name = bond_name
        self.bond_input = bond_input
        logger.debug("trace started for %s", bond_name)

    def add_step(self, step: TraceStep) -> None:
        self._steps.append(step)
        logger.debug("[%s] %s -> %s", self.bond_name, step.step, step.result)

    def finish(self, summary: Mapping[str, Any]) -> None:
        self.summary = dict(summary, total_steps=len(self._steps))
        logger.debug("trace finished for %s with %d steps", self.bond_name, len(self._steps))

    @property
    def steps(self) -> Tuple[TraceStep, ...]:
        return tuple(self._steps)

    def find(self, step_name: str) -> Optional[TraceStep]:
        for s in self._steps:
            if s.step == step_name:
                return s
        return None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "step": s.step,
                    "description": s.description,
                    "formula": s.formula,
                    "calculation": s.calculation,
                    "result": s.result,
                    "dependencies": ", ".join(s.dependencies),
                }
                for s in self._steps
            ],
            columns=["step", "description", "formula", "calculation", "result", "dependencies"],
        )
