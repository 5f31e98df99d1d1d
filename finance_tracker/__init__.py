"""
Finance Tracker - Source Package

A personal finance tracker: accounts, debts, recurring services,
currencies and investments, with balances kept consistent with an
append-only transaction log.

DESIGN PRINCIPLES:
1. The transaction log is authoritative; balances are caches of it
2. Log and cache change together or not at all
3. Aggregates are derived on read, never stored
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
