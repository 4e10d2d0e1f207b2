"""Domain models and the cost-basis engine.

This package holds the in-memory (Pydantic) ledger model, the per-account
average-cost pools and the resolver that traces disposal costs back to the
base currency. Nothing in here performs I/O.
"""

__all__ = [
    "cost_basis",
    "cost_resolver",
    "currency_pool",
    "gains_engine",
    "ledger",
]
