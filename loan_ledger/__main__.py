"""
Loan Ledger entry point: python -m loan_ledger
"""

from .api import run_server


if __name__ == "__main__":
    run_server()
