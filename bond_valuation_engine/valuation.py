from __future__ import annotations

import dataclasses
import logging
from typing import Optional

import numpy as np
import pandas as pd

from .bonds import BondCalculationResult, BondInput, GraceMarker, validate_bond_input
from .metrics import annualize, calculate_metrics, irr
from .schedule import build_schedule, calculate_constants, schedule_frame
from .trace import NULL_TRACE, TraceSink

logger = logging.getLogger(__name__)


def calculate_bond(
    bond: BondInput,
    trace: Optional[TraceSink] = None,
    bond_name: str = "Bond",
) -> BondCalculationResult:
    """
    Full valuation of one bond: constants, schedule rows 0..N and metrics.

    Pure function of `bond`; the optional `trace` only observes the
    derivation. The input is assumed valid (see `validate_bond_input`).
    """
    sink = trace if trace is not None else NULL_TRACE
    sink.start(bond_name, bond)

    constants = calculate_constants(bond, sink)
    schedule = build_schedule(bond, sink)
    metrics = calculate_metrics(bond, schedule, sink)

    constants = dataclasses.replace(constants, current_price=metrics.current_price, profit=metrics.profit)

    sink.finish(
        {
            "bond_name": bond_name,
            "total_periods": constants.total_periods,
            "current_price": metrics.current_price,
            "duration": metrics.duration,
        }
    )
    logger.debug(
        "%s: N=%d price=%.6f duration=%.6f convexity=%.6f",
        bond_name,
        constants.total_periods,
        metrics.current_price,
        metrics.duration,
        metrics.convexity,
    )
    return BondCalculationResult(input=bond, constants=constants, schedule=schedule, metrics=metrics)


def flow_irr(result: BondCalculationResult, side: str = "issuer", trace: TraceSink = NULL_TRACE) -> float:
    """
    Annualized IRR of the issuer or holder flows of a calculated schedule.

    Reported alongside, not in place of, the additive TCEA / TREA metrics.
    """
    if side == "issuer":
        flows = [r.issuer_flow for r in result.schedule]
    elif side == "holder":
        flows = [r.holder_flow for r in result.schedule]
    else:
        raise ValueError(f"side must be 'issuer' or 'holder', got {side!r}")

    return annualize(irr(flows, trace=trace), result.input.frequency)


def schedule_qc_report(result: BondCalculationResult, tol: float = 1e-8) -> pd.DataFrame:
    """
    Per-row consistency flags for a calculated schedule:
    - closing balance non-negative
    - closing identity for the row's grace marker
    - payment / amortization consistent with the grace marker
    """
    df = schedule_frame(result.schedule)

    open_, close = df["opening_balance"], df["closing_balance"]
    interest, amort, payment = df["interest"].abs(), df["amortization"], df["payment"]
    marker = df["grace_marker"]

    expected_close = np.select(
        [marker == GraceMarker.STANDARD.value, marker == GraceMarker.TOTAL.value],
        [open_ - amort, open_ + interest],
        default=open_,
    )
    expected_payment = np.select(
        [marker == GraceMarker.TOTAL.value, marker == GraceMarker.PARTIAL.value, marker == GraceMarker.STANDARD.value],
        [0.0, interest, amort + interest],
        default=0.0,
    )

    return pd.DataFrame(
        {
            "period": df["period"],
            "grace_marker": marker,
            "balance_non_negative": close > -tol,
            "closing_identity": np.abs(close - expected_close) <= tol * np.maximum(1.0, np.abs(open_)),
            "payment_consistent": np.abs(payment - expected_payment) <= tol * np.maximum(1.0, np.abs(open_)),
        }
    )


class BondCalculator:
    """Validates caller input, then runs the engine."""

    def validate(self, bond: BondInput) -> None:
        validate_bond_input(bond)

    def calculate(
        self,
        bond: BondInput,
        bond_name: str = "Bond",
        trace: Optional[TraceSink] = None,
    ) -> BondCalculationResult:
        self.validate(bond)
        return calculate_bond(bond, trace=trace, bond_name=bond_name)
