"""
parkledger - parking slot ledger with time-based fees and stored balances.
"""

__version__ = "0.1.0"
