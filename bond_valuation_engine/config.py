# config.py
# Purpose: Numeric defaults shared by the bond valuation engine

from __future__ import annotations

# Newton-Raphson IRR
IRR_GUESS = 0.1
IRR_MAX_ITER = 100
IRR_TOL = 1e-10
IRR_DERIVATIVE_FLOOR = 1e-15

# Commercial year used for every day-based ratio in the schedule
COMMERCIAL_YEAR_DAYS = 360

# Fallbacks for frequencies outside the supported set
DEFAULT_COUPON_PERIOD_DAYS = 360
DEFAULT_CONVEXITY_PERIOD_DAYS = 180
DEFAULT_PERIOD_RATE_LABEL = "TEP"

SUPPORTED_FREQUENCIES = (1, 2, 3, 4, 6, 12)
SUPPORTED_DAY_BASES = (360, 365)
MAX_GRACE_PERIODS = 3
