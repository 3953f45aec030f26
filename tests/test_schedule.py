import pytest

from bond_valuation_engine.bonds import BondInput, Capitalization, GraceMarker, GraceType, RateType
from bond_valuation_engine.schedule import (
    SCHEDULE_COLUMNS,
    annuity_payment,
    build_schedule,
    calculate_constants,
    initial_costs,
    schedule_frame,
)
from bond_valuation_engine.trace import CalculationTrace


@pytest.fixture(scope="module")
def annual_bond():
    return BondInput(
        nominal=1000.0,
        years=1,
        frequency=1,
        coupon_rate=10.0,
        rate_type=RateType.EFFECTIVE,
        opportunity_rate=10.0,
    )


@pytest.fixture(scope="module")
def semiannual_bond():
    return BondInput(
        nominal=10000.0,
        years=5,
        frequency=2,
        coupon_rate=7.5,
        rate_type=RateType.NOMINAL,
        capitalization=Capitalization.MONTHLY,
        day_base=360,
        structuring_pct=1.0,
        placement_pct=0.25,
        depository_pct=0.45,
        opportunity_rate=8.0,
    )


def _with(bond, **changes):
    return BondInput(**{**bond.__dict__, **changes})


def test_single_period_schedule(annual_bond):
    rows = build_schedule(annual_bond)
    assert len(rows) == 2

    r0, r1 = rows
    assert r0.grace_marker == GraceMarker.INITIAL
    assert r0.issuer_flow == pytest.approx(1000.0)
    assert r0.holder_flow == pytest.approx(-1000.0)
    assert r0.closing_balance == pytest.approx(1000.0)
    assert r0.present_value == pytest.approx(-1000.0)

    assert r1.grace_marker == GraceMarker.STANDARD
    assert r1.opening_balance == pytest.approx(1000.0)
    assert r1.interest == pytest.approx(-100.0)
    assert r1.payment == pytest.approx(1100.0)
    assert r1.amortization == pytest.approx(1000.0)
    assert r1.issuer_flow == pytest.approx(-1100.0)
    assert r1.holder_flow == pytest.approx(1100.0)
    assert abs(r1.closing_balance) < 1e-9
    assert r1.present_value == pytest.approx(1000.0)


@pytest.mark.parametrize("freq", [1, 2, 3, 4, 6, 12])
def test_full_amortization_without_grace(semiannual_bond, freq):
    bond = _with(semiannual_bond, frequency=freq)
    rows = build_schedule(bond)

    assert len(rows) == bond.years * freq + 1
    assert [r.period for r in rows] == list(range(bond.years * freq + 1))
    assert abs(rows[-1].closing_balance) < 1e-6, "balance must be fully amortized at maturity"
    assert all(r.grace_marker == GraceMarker.STANDARD for r in rows[1:])


def test_standard_rows_reduce_balance_by_amortization(semiannual_bond):
    for r in build_schedule(semiannual_bond)[1:]:
        assert abs(r.closing_balance - (r.opening_balance - r.amortization)) < 1e-9
        assert abs(r.amortization - (r.payment - abs(r.interest))) < 1e-9


def test_standard_rows_pay_a_level_annuity(semiannual_bond):
    payments = [r.payment for r in build_schedule(semiannual_bond)[1:]]
    assert max(payments) - min(payments) < 1e-8, "without grace the recomputed annuity stays level"


def test_total_grace_capitalizes_interest():
    bond = BondInput(
        nominal=1000.0,
        years=3,
        frequency=1,
        coupon_rate=10.0,
        grace_type=GraceType.TOTAL,
        grace_periods=2,
    )
    rows = build_schedule(bond)
    assert [r.grace_marker for r in rows] == [
        GraceMarker.INITIAL,
        GraceMarker.TOTAL,
        GraceMarker.TOTAL,
        GraceMarker.STANDARD,
    ]

    for r in rows[1:3]:
        assert r.payment == 0.0
        assert r.amortization == 0.0
        assert r.closing_balance == pytest.approx(r.opening_balance + abs(r.interest))

    assert rows[1].closing_balance == pytest.approx(1100.0)
    # next opening carries the prior row's capitalized interest
    assert rows[2].opening_balance == pytest.approx(rows[1].closing_balance + abs(rows[1].interest))
    assert rows[3].opening_balance == pytest.approx(rows[2].closing_balance + abs(rows[2].interest))
    assert rows[3].payment == pytest.approx(rows[3].opening_balance * 1.10)
    assert abs(rows[3].closing_balance) < 1e-9


def test_partial_grace_pays_interest_only(semiannual_bond):
    bond = _with(semiannual_bond, grace_type=GraceType.PARTIAL, grace_periods=3)
    rows = build_schedule(bond)

    for r in rows[1:4]:
        assert r.grace_marker == GraceMarker.PARTIAL
        assert r.payment == pytest.approx(abs(r.interest))
        assert r.amortization == 0.0
        assert r.closing_balance == r.opening_balance

    assert rows[4].grace_marker == GraceMarker.STANDARD
    assert rows[4].opening_balance == pytest.approx(bond.nominal)
    assert abs(rows[-1].closing_balance) < 1e-6


def test_grace_periods_ignored_when_grace_type_none(semiannual_bond):
    bond = _with(semiannual_bond, grace_type=GraceType.NONE, grace_periods=2)
    assert all(r.grace_marker == GraceMarker.STANDARD for r in build_schedule(bond)[1:])


def test_zero_rate_amortizes_straight_line():
    bond = BondInput(nominal=1200.0, years=1, frequency=12, coupon_rate=0.0)
    rows = build_schedule(bond)

    for r in rows[1:]:
        assert r.interest == 0.0
        assert r.payment == pytest.approx(100.0)
    assert abs(rows[-1].closing_balance) < 1e-9


def test_annuity_payment_edge_cases():
    assert annuity_payment(1000.0, 0.0, 4) == pytest.approx(250.0)
    assert annuity_payment(1000.0, 0.1, 1) == pytest.approx(1100.0)
    assert annuity_payment(1000.0, 0.1, 0) == 0.0


def test_initial_costs(semiannual_bond):
    issuer, holder = initial_costs(semiannual_bond)
    assert issuer == pytest.approx(10000.0 * (0.01 + 0.0025 + 0.0045))
    assert holder == pytest.approx(10000.0 * 0.0045)

    r0 = build_schedule(semiannual_bond)[0]
    assert r0.issuer_flow == pytest.approx(10000.0 - issuer)
    assert r0.holder_flow == pytest.approx(-(10000.0 + holder))


def test_discounting_weights(semiannual_bond):
    rows = build_schedule(semiannual_bond)
    cok = 1.08 ** (180 / 360) - 1.0
    for r in rows[1:]:
        n = r.period
        assert r.present_value == pytest.approx(r.holder_flow / (1 + cok) ** n)
        assert r.pv_time_weighted == pytest.approx(r.present_value * n * 0.5)
        assert r.convexity_factor == pytest.approx(r.present_value * n * (n + 1) * 0.5 * 2)


def test_no_opportunity_rate_means_no_discounting(annual_bond):
    rows = build_schedule(_with(annual_bond, opportunity_rate=None))
    assert rows[1].present_value == rows[1].holder_flow


def test_constants(semiannual_bond):
    c = calculate_constants(semiannual_bond)
    tea = (1 + 0.075 / 12) ** 12 - 1

    assert c.total_periods == 10
    assert c.grace_periods == 0
    assert c.effective_annual_rate == pytest.approx(tea)
    assert c.period_rate == pytest.approx((1 + tea) ** 0.5 - 1)
    assert c.period_rate_name == "TES"
    assert c.effective_monthly_rate == pytest.approx(0.075 / 12)
    assert c.capitalization_days == 30
    assert c.cok_period == pytest.approx((1.08 ** 0.5 - 1) * 100)
    assert c.current_price is None and c.profit is None


def test_trace_records_first_and_last_rows(semiannual_bond):
    trace = CalculationTrace()
    build_schedule(semiannual_bond, trace)

    names = [s.step for s in trace.steps]
    for expected in ("Periodic rate", "Period days", "Basic constants", "Initial costs",
                     "Reference payment", "Period 0 (issuance)", "Period 1", "Period 2",
                     "Period 10", "Schedule completed"):
        assert expected in names
    assert "Period 5" not in names


def test_schedule_frame(semiannual_bond):
    rows = build_schedule(semiannual_bond)
    df = schedule_frame(rows)

    assert list(df.columns) == SCHEDULE_COLUMNS
    assert len(df) == len(rows)
    assert df.loc[0, "grace_marker"] == ""
    assert (df["grace_marker"].iloc[1:] == "S").all()
