from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import MAX_GRACE_PERIODS, SUPPORTED_DAY_BASES, SUPPORTED_FREQUENCIES


class RateType(Enum):
    NOMINAL = "Nominal"
    EFFECTIVE = "Effective"


class Capitalization(Enum):
    DAILY = "Daily"
    BIWEEKLY = "Biweekly"
    MONTHLY = "Monthly"
    BIMONTHLY = "Bimonthly"
    QUARTERLY = "Quarterly"
    FOUR_MONTH = "FourMonth"
    SEMIANNUAL = "Semiannual"
    ANNUAL = "Annual"


class GraceType(Enum):
    NONE = "None"
    PARTIAL = "Partial"
    TOTAL = "Total"


class GraceMarker(Enum):
    INITIAL = ""      # period 0, issuance
    STANDARD = "S"    # amortizing ("sin gracia")
    PARTIAL = "P"     # interest only
    TOTAL = "T"       # nothing paid, interest capitalizes


@dataclass(frozen=True)
class BondInput:
    """
    Structuring parameters of a single fixed-rate bond.

    Rates and cost percentages are quoted in percent (10.0 = 10%).
    The engine assumes the input already passed `validate_bond_input`.
    """
    nominal: float
    years: int
    frequency: int
    coupon_rate: float
    rate_type: RateType = RateType.EFFECTIVE
    capitalization: Optional[Capitalization] = None
    day_base: int = 360
    grace_type: GraceType = GraceType.NONE
    grace_periods: int = 0
    structuring_pct: float = 0.0
    placement_pct: float = 0.0
    depository_pct: float = 0.0
    discount_rate: Optional[float] = None       # issuer cost of capital (kd), percent
    opportunity_rate: Optional[float] = None    # holder COK, percent

    @property
    def total_periods(self) -> int:
        return int(self.years * self.frequency)

    @property
    def effective_grace_periods(self) -> int:
        if self.grace_type == GraceType.NONE:
            return 0
        return int(self.grace_periods)

    @property
    def grace_years(self) -> float:
        return self.effective_grace_periods / self.frequency

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BondInput":
        """Build from a plain mapping (e.g. a persisted JSON record), coercing enum fields."""
        values: Dict[str, Any] = dict(data)
        values["rate_type"] = RateType(values.get("rate_type", RateType.EFFECTIVE.value))
        cap = values.get("capitalization")
        values["capitalization"] = Capitalization(cap) if cap not in (None, "") else None
        values["grace_type"] = GraceType(values.get("grace_type", GraceType.NONE.value))
        return cls(**values)


@dataclass(frozen=True)
class FlowRow:
    period: int
    grace_marker: GraceMarker
    opening_balance: float
    interest: float             # signed negative (cost)
    payment: float
    amortization: float
    issuer_flow: float
    holder_flow: float
    closing_balance: float
    present_value: float        # holder flow discounted at COK
    pv_time_weighted: float     # PV x t (years)
    convexity_factor: float     # PV x n(n+1) x t x 2


@dataclass(frozen=True)
class BondConstants:
    frequency: int
    periods_per_year: int
    total_periods: int
    grace_periods: int
    effective_annual_rate: float
    effective_monthly_rate: float
    period_rate: float
    period_rate_name: str
    issuer_initial_costs: float
    holder_initial_costs: float
    cok_period: Optional[float] = None          # percent
    capitalization_days: Optional[int] = None
    current_price: Optional[float] = None
    profit: Optional[float] = None


@dataclass(frozen=True)
class BondMetrics:
    current_price: float
    profit: float
    duration: float
    convexity: float
    total: float
    modified_duration: float
    tcea: float     # issuer cost rate, decimal
    trea: float     # holder return rate, decimal


@dataclass(frozen=True)
class BondCalculationResult:
    input: BondInput
    constants: BondConstants
    schedule: Tuple[FlowRow, ...]
    metrics: BondMetrics


# ---- caller-side checks ----

def _input_issues(bond: BondInput) -> List[Tuple[str, str]]:
    issues: List[Tuple[str, str]] = []

    if not bond.nominal > 0:
        issues.append(("BAD_NOMINAL", f"nominal must be positive, got {bond.nominal}"))

    if int(bond.years) != bond.years or bond.years < 1:
        issues.append(("BAD_TERM", f"years must be a positive integer, got {bond.years}"))

    if bond.frequency not in SUPPORTED_FREQUENCIES:
        issues.append(("BAD_FREQ", f"frequency must be one of {SUPPORTED_FREQUENCIES}, got {bond.frequency}"))

    if bond.day_base not in SUPPORTED_DAY_BASES:
        issues.append(("BAD_DAY_BASE", f"day_base must be one of {SUPPORTED_DAY_BASES}, got {bond.day_base}"))

    if bond.rate_type == RateType.NOMINAL and bond.capitalization is None:
        issues.append(("MISSING_CAPITALIZATION", "capitalization is required for a nominal rate"))
    if bond.rate_type == RateType.EFFECTIVE and bond.capitalization is not None:
        issues.append(("UNEXPECTED_CAPITALIZATION", "capitalization only applies to a nominal rate"))

    if bond.coupon_rate < 0:
        issues.append(("BAD_COUPON", f"coupon_rate must be non-negative, got {bond.coupon_rate}"))

    if bond.grace_type != GraceType.NONE:
        if not (1 <= bond.grace_periods <= MAX_GRACE_PERIODS):
            issues.append(("BAD_GRACE", f"grace_periods must be 1..{MAX_GRACE_PERIODS}, got {bond.grace_periods}"))
        elif bond.grace_periods > bond.total_periods:
            issues.append(("GRACE_EXCEEDS_TERM", f"{bond.grace_periods} grace periods exceed {bond.total_periods} total periods"))

    for name in ("structuring_pct", "placement_pct", "depository_pct"):
        if getattr(bond, name) < 0:
            issues.append(("BAD_COST", f"{name} must be non-negative"))

    for name in ("discount_rate", "opportunity_rate"):
        value = getattr(bond, name)
        if value is not None and value < 0:
            issues.append(("BAD_RATE", f"{name} must be non-negative"))

    return issues


def input_qc_flags(bond: BondInput) -> List[str]:
    return [flag for flag, _ in _input_issues(bond)]


def validate_bond_input(bond: BondInput) -> None:
    issues = _input_issues(bond)
    if issues:
        raise ValueError("; ".join(msg for _, msg in issues))
