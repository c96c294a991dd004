"""
Tariff cost calculation and hierarchical meter reconciliation service.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""
