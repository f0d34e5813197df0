"""
Transfer Ledger

Accounts with Decimal balances, immutable ledger entries, and atomic
double-entry transfers between accounts.
"""

__version__ = "1.0.0"
