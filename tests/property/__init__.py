# tests/property/__init__.py
"""Property-based tests for rowgate.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of.

Test categories:
- core: rate budget admission per window, row cache TTL and invalidation
- engine: backoff bounds and attempt counts, order of batched row deletions
"""
