"""
Pocket Ledger - Source Package

A personal budgeting ledger: a monthly -> weekly -> daily budget hierarchy,
expense/gain transactions recorded against it, and a daily "pocket money"
rollup.

DESIGN PRINCIPLES:
1. No budget ever goes negative
2. A cascade lands completely or not at all
3. Every balance change leaves a journal entry
4. Fail early, fail visibly (no weaker consistency in production)
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pocket Ledger Team"
