"""
Finance Tracker - Source Package

A personal finance tracker: users record income, expense and transfer
events against named accounts, watch derived balances and set category
spending limits.

DESIGN PRINCIPLES:
1. Account balances are written only by the ledger engine
2. Every balance change commits atomically with its transaction
3. Fail early, fail visibly
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Tracker Team"
