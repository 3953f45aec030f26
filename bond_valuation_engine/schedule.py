from __future__ import annotations

import logging
from dataclasses import asdict
from typing import List, Sequence, Tuple

import pandas as pd

from .bonds import BondConstants, BondInput, FlowRow, GraceMarker, GraceType
from .config import COMMERCIAL_YEAR_DAYS
from .rates import (
    capitalization_days,
    convert_rate,
    cok_per_period,
    coupon_period_days,
    pct,
    period_rate_from_tea,
    period_rate_label,
    periodic_rate,
)
from .trace import NULL_TRACE, TraceSink, TraceStep

logger = logging.getLogger(__name__)

SCHEDULE_COLUMNS = [
    "period",
    "grace_marker",
    "opening_balance",
    "interest",
    "payment",
    "amortization",
    "issuer_flow",
    "holder_flow",
    "closing_balance",
    "present_value",
    "pv_time_weighted",
    "convexity_factor",
]


def initial_costs(bond: BondInput) -> Tuple[float, float]:
    """Returns (issuer_costs, holder_costs) paid at issuance."""
    issuer = bond.nominal * (pct(bond.structuring_pct) + pct(bond.placement_pct) + pct(bond.depository_pct))
    holder = bond.nominal * pct(bond.depository_pct)
    return issuer, holder


def annuity_payment(balance: float, i: float, remaining: int) -> float:
    """
    Level payment that amortizes `balance` over `remaining` periods at rate i:
      PMT = B * i(1+i)^R / ((1+i)^R - 1)
    Straight-line B/R when i == 0.
    """
    if remaining <= 0:
        return 0.0
    if i == 0.0:
        return balance / remaining
    growth = (1.0 + i) ** remaining
    return balance * (i * growth) / (growth - 1.0)


def grace_marker_for(n: int, grace_periods: int, grace_type: GraceType) -> GraceMarker:
    if n == 0:
        return GraceMarker.INITIAL
    if n <= grace_periods:
        if grace_type == GraceType.PARTIAL:
            return GraceMarker.PARTIAL
        if grace_type == GraceType.TOTAL:
            return GraceMarker.TOTAL
    return GraceMarker.STANDARD


def _discounted(holder_flow: float, n: int, cok: float, period_days: int) -> Tuple[float, float, float]:
    pv = holder_flow / (1.0 + cok) ** n
    t = period_days / COMMERCIAL_YEAR_DAYS
    return pv, pv * n * t, pv * n * (n + 1) * t * 2


def _initial_row(bond: BondInput, issuer_costs: float, holder_costs: float, cok: float, period_days: int) -> FlowRow:
    holder_flow = -(bond.nominal + holder_costs)
    pv, pv_t, conv = _discounted(holder_flow, 0, cok, period_days)
    return FlowRow(
        period=0,
        grace_marker=GraceMarker.INITIAL,
        opening_balance=bond.nominal,
        interest=0.0,
        payment=0.0,
        amortization=0.0,
        issuer_flow=bond.nominal - issuer_costs,
        holder_flow=holder_flow,
        closing_balance=bond.nominal,
        present_value=pv,
        pv_time_weighted=pv_t,
        convexity_factor=conv,
    )


def _next_row(
    prev: FlowRow,
    n: int,
    total_periods: int,
    grace_periods: int,
    grace_type: GraceType,
    i: float,
    cok: float,
    period_days: int,
) -> FlowRow:
    marker = grace_marker_for(n, grace_periods, grace_type)

    if n > 1 and prev.grace_marker == GraceMarker.TOTAL:
        opening = prev.closing_balance + abs(prev.interest)
    else:
        opening = prev.closing_balance

    interest = -opening * i

    if marker == GraceMarker.TOTAL:
        payment = 0.0
        amortization = 0.0
        closing = opening + abs(interest)
    elif marker == GraceMarker.PARTIAL:
        payment = abs(interest)
        amortization = 0.0
        closing = opening
    else:
        payment = annuity_payment(opening, i, total_periods - n + 1)
        amortization = payment - abs(interest)
        closing = opening - amortization

    pv, pv_t, conv = _discounted(payment, n, cok, period_days)
    return FlowRow(
        period=n,
        grace_marker=marker,
        opening_balance=opening,
        interest=interest,
        payment=payment,
        amortization=amortization,
        issuer_flow=-payment,
        holder_flow=payment,
        closing_balance=closing,
        present_value=pv,
        pv_time_weighted=pv_t,
        convexity_factor=conv,
    )


def _row_step(row: FlowRow, remaining: int) -> TraceStep:
    if row.period == 0:
        return TraceStep(
            step="Period 0 (issuance)",
            description="Issuance flows net of initial costs",
            formula="issuer = nominal - issuer costs; holder = -(nominal + holder costs)",
            inputs={"nominal": row.closing_balance},
            calculation=f"issuer = {row.issuer_flow}, holder = {row.holder_flow}",
            result={
                "issuer_flow": row.issuer_flow,
                "holder_flow": row.holder_flow,
                "closing_balance": row.closing_balance,
            },
        )
    return TraceStep(
        step=f"Period {row.period}",
        description=f"Schedule row {row.period}",
        formula="payment = 0 if T; |interest| if P; PMT(i, N - n + 1, opening) otherwise",
        inputs={
            "period": row.period,
            "grace_marker": row.grace_marker.value,
            "opening_balance": row.opening_balance,
            "remaining_periods": remaining,
        },
        calculation=(
            f"marker={row.grace_marker.value}, opening={row.opening_balance}, interest={row.interest}, "
            f"payment={row.payment}, amortization={row.amortization}, closing={row.closing_balance}"
        ),
        result={
            "interest": row.interest,
            "payment": row.payment,
            "amortization": row.amortization,
            "closing_balance": row.closing_balance,
            "present_value": row.present_value,
        },
    )


def build_schedule(bond: BondInput, trace: TraceSink = NULL_TRACE) -> Tuple[FlowRow, ...]:
    """
    Period-by-period flow table, rows 0..N.

    Each row is derived from the previous one only (balance carried forward,
    total-grace interest capitalized into the next opening balance). The level
    payment is recomputed on the remaining periods N - n + 1 every row.
    """
    m = bond.frequency
    N = bond.total_periods
    Ng = bond.effective_grace_periods

    i = periodic_rate(bond, trace)
    period_days = coupon_period_days(m)
    trace.add_step(
        TraceStep(
            step="Period days",
            description="Days per coupon period from the coupon frequency",
            formula="12->30, 6->60, 4->90, 3->120, 2->180, otherwise 360",
            inputs={"frequency": m},
            calculation=f"frequency {m} -> {period_days} days",
            result=period_days,
        )
    )

    trace.add_step(
        TraceStep(
            step="Basic constants",
            description="Total and grace periods of the schedule",
            formula="N = years x m, Ng = grace_years x m",
            inputs={
                "years": bond.years,
                "frequency": m,
                "grace_years": bond.grace_years,
                "nominal": bond.nominal,
                "period_rate": i,
                "period_days": period_days,
                "day_base": bond.day_base,
            },
            calculation=f"N = {bond.years} x {m} = {N}, Ng = {bond.grace_years} x {m} = {Ng}",
            result={"total_periods": N, "grace_periods": Ng, "period_days": period_days},
            dependencies=("Periodic rate", "Period days"),
        )
    )

    issuer_costs, holder_costs = initial_costs(bond)
    trace.add_step(
        TraceStep(
            step="Initial costs",
            description="Structuring, placement and depository costs",
            formula="cost = nominal x pct / 100",
            inputs={
                "nominal": bond.nominal,
                "structuring_pct": f"{bond.structuring_pct}%",
                "placement_pct": f"{bond.placement_pct}%",
                "depository_pct": f"{bond.depository_pct}%",
            },
            calculation=f"issuer = {issuer_costs}, holder = {holder_costs}",
            result={"issuer_initial_costs": issuer_costs, "holder_initial_costs": holder_costs},
        )
    )

    reference_payment = annuity_payment(bond.nominal, i, N)
    trace.add_step(
        TraceStep(
            step="Reference payment",
            description="Level payment over the full term, before grace adjustments",
            formula="PMT = nominal x i(1+i)^N / ((1+i)^N - 1)",
            inputs={"nominal": bond.nominal, "period_rate": i, "total_periods": N},
            calculation=f"PMT({i}, {N}, {bond.nominal}) = {reference_payment}",
            result=reference_payment,
        )
    )

    cok = cok_per_period(bond.opportunity_rate, bond.day_base, m)

    rows: List[FlowRow] = [_initial_row(bond, issuer_costs, holder_costs, cok, period_days)]
    trace.add_step(_row_step(rows[0], N + 1))

    for n in range(1, N + 1):
        row = _next_row(rows[-1], n, N, Ng, bond.grace_type, i, cok, period_days)
        rows.append(row)
        if n <= 2 or n == N:
            trace.add_step(_row_step(row, N - n + 1))

    trace.add_step(
        TraceStep(
            step="Schedule completed",
            description="All schedule rows generated",
            formula="rows 0..N",
            inputs={
                "rows": len(rows),
                "holder_flow_sum": sum(r.holder_flow for r in rows),
                "present_value_sum": sum(r.present_value for r in rows),
            },
            calculation=f"{len(rows)} rows generated (0 to {N})",
            result=len(rows),
        )
    )
    logger.debug("built schedule: N=%d Ng=%d i=%.10f cok=%.10f", N, Ng, i, cok)
    return tuple(rows)


def calculate_constants(bond: BondInput, trace: TraceSink = NULL_TRACE) -> BondConstants:
    m = bond.frequency
    tea, period_rate = convert_rate(bond.rate_type, bond.coupon_rate, bond.capitalization, m)
    label = period_rate_label(m)
    tem = period_rate_from_tea(tea, 12)
    issuer_costs, holder_costs = initial_costs(bond)

    cok_pct = cok_per_period(bond.opportunity_rate, bond.day_base, m) * 100 if bond.opportunity_rate else None
    cap_days = capitalization_days(bond.rate_type, bond.capitalization)

    constants = BondConstants(
        frequency=m,
        periods_per_year=m,
        total_periods=bond.total_periods,
        grace_periods=bond.effective_grace_periods,
        effective_annual_rate=tea,
        effective_monthly_rate=tem,
        period_rate=period_rate,
        period_rate_name=label,
        issuer_initial_costs=issuer_costs,
        holder_initial_costs=holder_costs,
        cok_period=cok_pct,
        capitalization_days=cap_days,
    )

    trace.add_step(
        TraceStep(
            step="Derived constants",
            description="Effective rates, initial costs, COK per period and capitalization days",
            formula=f"TEA, {label}, TEM, costs, COK, capitalization days",
            inputs={
                "rate_type": bond.rate_type.value,
                "coupon_rate": bond.coupon_rate,
                "frequency": m,
                "capitalization": bond.capitalization.value if bond.capitalization else None,
                "opportunity_rate": bond.opportunity_rate,
                "discount_rate": bond.discount_rate,
            },
            calculation=f"TEA = {tea}, {label} = (1 + {tea})^(1/{m}) - 1 = {period_rate}",
            result={
                "TEA": tea,
                label: period_rate,
                "TEM": tem,
                "issuer_initial_costs": issuer_costs,
                "holder_initial_costs": holder_costs,
                "cok_period": cok_pct,
                "capitalization_days": cap_days,
            },
        )
    )
    return constants


def schedule_frame(schedule: Sequence[FlowRow]) -> pd.DataFrame:
    records = []
    for row in schedule:
        rec = asdict(row)
        rec["grace_marker"] = row.grace_marker.value
        records.append(rec)
    return pd.DataFrame(records, columns=SCHEDULE_COLUMNS)
