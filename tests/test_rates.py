import math

import pytest

from bond_valuation_engine.bonds import BondInput, Capitalization, RateType
from bond_valuation_engine.rates import (
    capitalization_days,
    compounding_count,
    convert_rate,
    cok_per_period,
    cok_semiannual,
    convexity_period_days,
    coupon_period_days,
    period_rate_label,
    periodic_rate,
    tea_from_period_rate,
)
from bond_valuation_engine.trace import CalculationTrace


def test_effective_rate_is_taken_as_tea():
    tea, i = convert_rate(RateType.EFFECTIVE, 10.0, None, 2)
    assert tea == pytest.approx(0.10)
    assert i == pytest.approx(math.sqrt(1.10) - 1.0)


def test_nominal_monthly_rate_compounds_to_tea():
    tea, i = convert_rate(RateType.NOMINAL, 12.0, Capitalization.MONTHLY, 12)
    assert tea == pytest.approx(1.01 ** 12 - 1.0)
    assert i == pytest.approx(0.01), "monthly coupon on a monthly-compounded nominal rate is TNA/12"


@pytest.mark.parametrize("cap", list(Capitalization))
@pytest.mark.parametrize("freq", [1, 2, 3, 4, 6, 12])
def test_period_rate_reproduces_tea(cap, freq):
    tea, i = convert_rate(RateType.NOMINAL, 7.5, cap, freq)
    assert abs(tea_from_period_rate(i, freq) - tea) < 1e-12


def test_unmapped_capitalization_falls_back_to_frequency():
    assert compounding_count(None, 4) == 4
    tea, _ = convert_rate(RateType.NOMINAL, 8.0, None, 4)
    assert tea == pytest.approx(1.02 ** 4 - 1.0)


def test_period_rate_labels():
    assert [period_rate_label(f) for f in (12, 6, 4, 3, 2, 1)] == ["TEM", "TEB", "TET", "TEC", "TES", "TEA"]
    assert period_rate_label(5) == "TEP"


def test_period_day_tables_and_fallbacks():
    assert [coupon_period_days(f) for f in (12, 6, 4, 3, 2, 1)] == [30, 60, 90, 120, 180, 360]
    assert coupon_period_days(5) == 360
    assert convexity_period_days(5) == 180
    assert convexity_period_days(2) == 180


def test_capitalization_days_only_for_nominal_rates():
    assert capitalization_days(RateType.NOMINAL, Capitalization.BIWEEKLY) == 15
    assert capitalization_days(RateType.NOMINAL, Capitalization.ANNUAL) == 360
    assert capitalization_days(RateType.EFFECTIVE, None) is None


def test_cok_per_period():
    assert cok_per_period(10.0, 360, 1) == pytest.approx(0.10)
    assert cok_per_period(10.0, 365, 2) == pytest.approx(1.10 ** (182.5 / 360) - 1.0)
    assert cok_per_period(None, 360, 2) == 0.0
    assert cok_per_period(0.0, 360, 2) == 0.0


def test_cok_semiannual():
    assert cok_semiannual(10.0) == pytest.approx(math.sqrt(1.10) - 1.0)
    assert cok_semiannual(None) == 0.0


def test_periodic_rate_records_trace_step():
    bond = BondInput(
        nominal=1000.0,
        years=2,
        frequency=4,
        coupon_rate=8.0,
        rate_type=RateType.NOMINAL,
        capitalization=Capitalization.QUARTERLY,
    )
    trace = CalculationTrace()
    i = periodic_rate(bond, trace)

    assert i == pytest.approx(0.02)
    step = trace.find("Periodic rate")
    assert step is not None
    assert step.inputs["capitalization"] == "Quarterly"
