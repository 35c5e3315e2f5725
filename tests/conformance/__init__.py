"""
Conformance Test Suite

Property-based checks of the lending arithmetic that every release must
keep: collateral conservation in liquidation, truncation direction in fiat
conversion, health-factor monotonicity, repayment snapping, the max-borrow
LTV bound and the staleness boundary.

These tests use hypothesis for property-based testing.
"""
