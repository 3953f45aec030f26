from __future__ import annotations

import logging
from typing import Optional, Tuple

from .bonds import BondInput, Capitalization, RateType
from .config import (
    COMMERCIAL_YEAR_DAYS,
    DEFAULT_CONVEXITY_PERIOD_DAYS,
    DEFAULT_COUPON_PERIOD_DAYS,
    DEFAULT_PERIOD_RATE_LABEL,
)
from .trace import NULL_TRACE, TraceSink, TraceStep

logger = logging.getLogger(__name__)


COMPOUNDING_PER_YEAR = {
    Capitalization.DAILY: 360,
    Capitalization.BIWEEKLY: 24,
    Capitalization.MONTHLY: 12,
    Capitalization.BIMONTHLY: 6,
    Capitalization.QUARTERLY: 4,
    Capitalization.FOUR_MONTH: 3,
    Capitalization.SEMIANNUAL: 2,
    Capitalization.ANNUAL: 1,
}

CAPITALIZATION_DAYS = {
    Capitalization.DAILY: 1,
    Capitalization.BIWEEKLY: 15,
    Capitalization.MONTHLY: 30,
    Capitalization.BIMONTHLY: 60,
    Capitalization.QUARTERLY: 90,
    Capitalization.FOUR_MONTH: 120,
    Capitalization.SEMIANNUAL: 180,
    Capitalization.ANNUAL: 360,
}

# coupon frequency -> days in one coupon period (commercial year)
COUPON_PERIOD_DAYS = {12: 30, 6: 60, 4: 90, 3: 120, 2: 180, 1: 360}

PERIOD_RATE_LABELS = {12: "TEM", 6: "TEB", 4: "TET", 3: "TEC", 2: "TES", 1: "TEA"}


def pct(p: float) -> float:
    return p / 100.0


def compounding_count(capitalization: Optional[Capitalization], frequency: int) -> int:
    """Compounding periods per year; an unmapped convention compounds at the coupon frequency."""
    m_cap = COMPOUNDING_PER_YEAR.get(capitalization) if capitalization is not None else None
    if m_cap is None:
        logger.warning("No compounding count for capitalization %r, using frequency %d", capitalization, frequency)
        return int(frequency)
    return m_cap


def effective_annual_rate(
    rate_type: RateType,
    rate: float,
    capitalization: Optional[Capitalization],
    frequency: int,
) -> float:
    """
    TEA from a quoted annual rate in percent.

    - Effective: TEA = rate / 100
    - Nominal:   TEA = (1 + TNA/mCap)^mCap - 1
    """
    r = pct(rate)
    if rate_type == RateType.EFFECTIVE:
        return r

    m_cap = compounding_count(capitalization, frequency)
    return (1.0 + r / m_cap) ** m_cap - 1.0


def period_rate_from_tea(tea: float, frequency: int) -> float:
    return (1.0 + tea) ** (1.0 / frequency) - 1.0


def tea_from_period_rate(i: float, frequency: int) -> float:
    return (1.0 + i) ** frequency - 1.0


def convert_rate(
    rate_type: RateType,
    rate: float,
    capitalization: Optional[Capitalization],
    frequency: int,
) -> Tuple[float, float]:
    """Returns (TEA, effective rate per coupon period)."""
    tea = effective_annual_rate(rate_type, rate, capitalization, frequency)
    return tea, period_rate_from_tea(tea, frequency)


def periodic_rate(bond: BondInput, trace: TraceSink = NULL_TRACE) -> float:
    """Per-coupon-period rate for a bond, recording the conversion on `trace`."""
    tea, i = convert_rate(bond.rate_type, bond.coupon_rate, bond.capitalization, bond.frequency)

    if bond.rate_type == RateType.NOMINAL:
        m_cap = compounding_count(bond.capitalization, bond.frequency)
        formula = "TEA = (1 + TNA/mCap)^mCap - 1; i = (1 + TEA)^(1/m) - 1"
        calculation = (
            f"TEA = (1 + {pct(bond.coupon_rate)}/{m_cap})^{m_cap} - 1 = {tea * 100:.6f}%; "
            f"i = (1 + TEA)^(1/{bond.frequency}) - 1 = {i * 100:.6f}%"
        )
    else:
        formula = "i = (1 + TEA)^(1/m) - 1"
        calculation = f"(1 + {tea})^(1/{bond.frequency}) - 1 = {i * 100:.6f}%"

    trace.add_step(
        TraceStep(
            step="Periodic rate",
            description="Convert the annual rate to a rate per coupon period",
            formula=formula,
            inputs={
                "rate_type": bond.rate_type.value,
                "coupon_rate": f"{bond.coupon_rate}%",
                "frequency": bond.frequency,
                "capitalization": bond.capitalization.value if bond.capitalization else None,
            },
            calculation=calculation,
            result=f"{i * 100:.6f}% per period",
        )
    )
    return i


def period_rate_label(frequency: int) -> str:
    label = PERIOD_RATE_LABELS.get(frequency)
    if label is None:
        logger.warning("No period rate label for frequency %d, using %s", frequency, DEFAULT_PERIOD_RATE_LABEL)
        return DEFAULT_PERIOD_RATE_LABEL
    return label


def coupon_period_days(frequency: int) -> int:
    days = COUPON_PERIOD_DAYS.get(frequency)
    if days is None:
        logger.warning("No period length for frequency %d, using %d days", frequency, DEFAULT_COUPON_PERIOD_DAYS)
        return DEFAULT_COUPON_PERIOD_DAYS
    return days


def convexity_period_days(frequency: int) -> int:
    """Period length used to rescale convexity to years; defaults to a semiannual period."""
    days = COUPON_PERIOD_DAYS.get(frequency)
    if days is None:
        logger.warning("No period length for frequency %d, using %d days", frequency, DEFAULT_CONVEXITY_PERIOD_DAYS)
        return DEFAULT_CONVEXITY_PERIOD_DAYS
    return days


def capitalization_days(rate_type: RateType, capitalization: Optional[Capitalization]) -> Optional[int]:
    if rate_type != RateType.NOMINAL or capitalization is None:
        return None
    return CAPITALIZATION_DAYS.get(capitalization)


def cok_per_period(opportunity_rate: Optional[float], day_base: int, frequency: int) -> float:
    """
    Opportunity rate per coupon period (decimal):
      (1 + COK)^((day_base / m) / 360) - 1
    Zero when no opportunity rate is supplied.
    """
    if not opportunity_rate:
        return 0.0
    return (1.0 + pct(opportunity_rate)) ** ((day_base / frequency) / COMMERCIAL_YEAR_DAYS) - 1.0


def cok_semiannual(opportunity_rate: Optional[float]) -> float:
    if not opportunity_rate:
        return 0.0
    return (1.0 + pct(opportunity_rate)) ** 0.5 - 1.0
