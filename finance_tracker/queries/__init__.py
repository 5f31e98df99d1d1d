"""Aggregation (read side) package."""

from finance_tracker.queries.aggregator import (
    Aggregator,
    build_currency_rollup,
    build_evolution_series,
    compute_investment_performance,
    compute_payment_status,
)

__all__ = [
    "Aggregator",
    "build_currency_rollup",
    "build_evolution_series",
    "compute_investment_performance",
    "compute_payment_status",
]
