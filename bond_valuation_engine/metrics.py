from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from scipy.optimize import brentq

from .bonds import BondInput, BondMetrics, FlowRow
from .config import IRR_DERIVATIVE_FLOOR, IRR_GUESS, IRR_MAX_ITER, IRR_TOL
from .rates import cok_per_period, cok_semiannual, convexity_period_days, pct
from .trace import NULL_TRACE, TraceSink, TraceStep

logger = logging.getLogger(__name__)


# ---- IRR ----

def npv(rate: float, cash_flows: Sequence[float]) -> float:
    """NPV of flows at t = 0, 1, 2, ... discounted at `rate` per period."""
    cfs = np.asarray(cash_flows, dtype=float)
    t = np.arange(len(cfs), dtype=float)
    return float(np.sum(cfs / (1.0 + rate) ** t))


def _npv_derivative(rate: float, cfs: np.ndarray) -> float:
    t = np.arange(len(cfs), dtype=float)
    return float(-np.sum(t[1:] * cfs[1:] / (1.0 + rate) ** (t[1:] + 1.0)))


def irr(
    cash_flows: Sequence[float],
    guess: float = IRR_GUESS,
    max_iter: int = IRR_MAX_ITER,
    tol: float = IRR_TOL,
    trace: TraceSink = NULL_TRACE,
) -> float:
    """
    Newton-Raphson internal rate of return per period.

    Stops when |NPV| < tol, when the step is smaller than tol, when the
    derivative vanishes, or after `max_iter` iterations. Never raises: the
    last estimate is returned in every case.
    """
    cfs = np.asarray(cash_flows, dtype=float)
    rate = float(guess)

    trace.add_step(
        TraceStep(
            step="IRR start",
            description="Internal rate of return by Newton-Raphson",
            formula="NPV = sum(CF_t / (1+r)^t) = 0",
            inputs={"cash_flows": cfs.tolist(), "guess": guess, "max_iter": max_iter, "tol": tol},
            calculation=f"Newton-Raphson over {len(cfs)} flows",
            result="started",
        )
    )

    converged = False
    iterations = 0
    for iterations in range(1, max_iter + 1):
        value = npv(rate, cfs)
        if abs(value) < tol:
            converged = True
            break

        slope = _npv_derivative(rate, cfs)
        if abs(slope) < IRR_DERIVATIVE_FLOOR:
            logger.warning("IRR derivative vanished at rate=%.10f after %d iterations", rate, iterations)
            break

        new_rate = rate - value / slope
        if abs(new_rate - rate) < tol:
            rate = new_rate
            converged = True
            break
        rate = new_rate
    else:
        logger.warning("IRR did not converge in %d iterations, last rate=%.10f", max_iter, rate)

    trace.add_step(
        TraceStep(
            step="IRR result",
            description="Rate that sets NPV to zero",
            formula="r such that NPV(r) = 0",
            inputs={"rate": rate, "iterations": iterations, "converged": converged},
            calculation=f"{iterations} iterations",
            result=f"{rate * 100:.6f}% per period",
            dependencies=("IRR start",),
        )
    )
    return rate


def irr_bracketed(cash_flows: Sequence[float], low: float = -0.99, high: float = 10.0) -> float:
    """IRR by Brent's method; raises ValueError when NPV does not change sign on [low, high]."""
    cfs = np.asarray(cash_flows, dtype=float)
    f_low, f_high = npv(low, cfs), npv(high, cfs)
    if f_low * f_high > 0:
        raise ValueError("IRR root not bracketed: NPV has the same sign at both ends.")
    return float(brentq(lambda r: npv(r, cfs), low, high, maxiter=300, xtol=1e-14))


def annualize(period_rate: float, frequency: int) -> float:
    return (1.0 + period_rate) ** frequency - 1.0


# ---- metrics ----

def calculate_metrics(bond: BondInput, schedule: Sequence[FlowRow], trace: TraceSink = NULL_TRACE) -> BondMetrics:
    """
    Price, profit, Macaulay duration, convexity and modified duration from the
    discounted holder flows of periods 1..N, plus the additive TCEA / TREA.
    """
    coupon_rows = schedule[1:]
    pvs = np.array([r.present_value for r in coupon_rows], dtype=float)
    pv_t = np.array([r.pv_time_weighted for r in coupon_rows], dtype=float)
    conv_factors = np.array([r.convexity_factor for r in coupon_rows], dtype=float)

    price = float(np.sum(pvs))
    trace.add_step(
        TraceStep(
            step="Price",
            description="Sum of discounted holder flows, periods 1..N",
            formula="P = sum(PV_n), n = 1..N",
            inputs={"present_values": pvs.tolist()},
            calculation=f"sum of {len(pvs)} discounted flows",
            result=price,
            dependencies=("Schedule completed",),
        )
    )

    pv0 = schedule[0].present_value
    profit = price + pv0
    trace.add_step(
        TraceStep(
            step="Profit",
            description="Price plus the discounted issuance flow",
            formula="profit = P + PV_0",
            inputs={"price": price, "present_value_0": pv0},
            calculation=f"{price} + ({pv0}) = {profit}",
            result=profit,
            dependencies=("Price",),
        )
    )

    sum_pv_t = float(np.sum(pv_t))
    duration = sum_pv_t / price if price > 0 else 0.0
    trace.add_step(
        TraceStep(
            step="Duration",
            description="Macaulay duration in years",
            formula="D = sum(PV_n x t_n) / P",
            inputs={"sum_pv_time_weighted": sum_pv_t, "price": price},
            calculation=f"{sum_pv_t} / {price} = {duration}",
            result=f"{duration:.4f} years",
            dependencies=("Price",),
        )
    )

    sum_conv = float(np.sum(conv_factors))
    cok_sem = cok_semiannual(bond.opportunity_rate)
    period_days = convexity_period_days(bond.frequency)
    if price > 0:
        denominator = (1.0 + cok_sem) ** 2 * price * (bond.day_base / period_days) ** 2
        convexity = sum_conv / denominator
    else:
        convexity = 0.0
    trace.add_step(
        TraceStep(
            step="Convexity",
            description="Sum of convexity factors over the rescaled price",
            formula="C = sum(F_n) / [(1 + COK_sem)^2 x P x (day_base / period_days)^2]",
            inputs={
                "sum_convexity_factors": sum_conv,
                "price": price,
                "cok_semiannual": cok_sem,
                "day_base": bond.day_base,
                "period_days": period_days,
            },
            calculation=f"{sum_conv} / ((1 + {cok_sem})^2 x {price} x ({bond.day_base}/{period_days})^2) = {convexity}",
            result=convexity,
            dependencies=("Price",),
        )
    )

    cok = cok_per_period(bond.opportunity_rate, bond.day_base, bond.frequency)
    modified_duration = duration / (1.0 + cok) if cok > 0 else duration
    trace.add_step(
        TraceStep(
            step="Modified duration",
            description="Duration scaled by one period of the opportunity rate",
            formula="D_mod = D / (1 + COK_period)",
            inputs={"duration": duration, "cok_period": cok},
            calculation=f"{duration} / (1 + {cok}) = {modified_duration}" if cok > 0 else f"{duration} (rate = 0)",
            result=modified_duration,
            dependencies=("Duration",),
        )
    )

    tcea = pct(bond.coupon_rate) + pct(bond.structuring_pct) + pct(bond.placement_pct) + pct(bond.depository_pct)
    trace.add_step(
        TraceStep(
            step="TCEA",
            description="Issuer cost rate: coupon plus structuring, placement and depository costs",
            formula="TCEA = coupon + structuring + placement + depository (decimal)",
            inputs={
                "coupon_rate": bond.coupon_rate,
                "structuring_pct": bond.structuring_pct,
                "placement_pct": bond.placement_pct,
                "depository_pct": bond.depository_pct,
            },
            calculation=f"= {tcea}",
            result=f"{tcea * 100:.6f}%",
        )
    )

    trea = pct(bond.coupon_rate) - pct(bond.depository_pct)
    trace.add_step(
        TraceStep(
            step="TREA",
            description="Holder return rate: coupon net of depository cost",
            formula="TREA = coupon - depository (decimal)",
            inputs={"coupon_rate": bond.coupon_rate, "depository_pct": bond.depository_pct},
            calculation=f"= {trea}",
            result=f"{trea * 100:.6f}%",
        )
    )

    metrics = BondMetrics(
        current_price=price,
        profit=profit,
        duration=duration,
        convexity=convexity,
        total=duration + convexity,
        modified_duration=modified_duration,
        tcea=tcea,
        trea=trea,
    )
    trace.add_step(
        TraceStep(
            step="Final metrics",
            description="Summary of all metrics",
            formula="",
            inputs={},
            calculation="all metrics computed",
            result=metrics,
            dependencies=("Price", "Profit", "Duration", "Convexity", "Modified duration"),
        )
    )
    return metrics
