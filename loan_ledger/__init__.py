"""
Loan Ledger

Loan plan derivation, repayment scheduling and an append-only payment ledger
for a small finance shop. All money is held in integer minor units.
"""

__version__ = "1.0.0"
