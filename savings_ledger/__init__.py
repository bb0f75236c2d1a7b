"""
Savings Ledger

Deposit and withdrawal processing for savings accounts with per-account
locking, compound interest applied on withdrawal, and an append-only
transaction log. All financial calculations use Decimal.
"""

__version__ = "1.0.0"
