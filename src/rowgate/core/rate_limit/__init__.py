"""Rate limiting for calls to the row store.

Fixed-window budget with FIFO admission; see budget.py.
"""

from rowgate.core.rate_limit.budget import NoOpBudget, RateBudget

__all__ = ["NoOpBudget", "RateBudget"]
