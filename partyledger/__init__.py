"""
partyledger - Ledger Transaction Pipeline

A small-business bookkeeping core: shorthand day-book lines in,
balanced party ledgers out.

DESIGN PRINCIPLES:
1. Parse per line, commit per batch
2. Fail early, fail visibly
3. No silent corrections
4. Every write must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "partyledger Team"
