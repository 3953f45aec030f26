"""
Bond Valuation Engine

Modules:
- bonds: input / schedule / result data model + caller-side input checks
- rates: nominal/effective rate conversion + period-day tables
- schedule: amortization schedule with grace periods + derived constants
- metrics: price, duration, convexity, TCEA/TREA + IRR utilities
- valuation: calculate_bond entry point + schedule QC report
- trace: injectable audit trail of derivation steps
- config: numeric defaults

Callers (persistence, HTTP, UI) should import from this package.
"""
