"""
Ledger error taxonomy.

The engine raises these instead of clamping or correcting input. Callers
decide the user-facing message; `recoverable` marks errors the caller can
resolve by choosing different input (a partial amount, another date, a
re-read of the ledger).
"""

from datetime import date
from typing import Any, Dict, Optional

from .money import Money


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code = "LEDGER_ERROR"
    recoverable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: _plain(v) for k, v in self.details.items()},
            "recoverable": self.recoverable,
        }


class InvalidPrincipal(LedgerError):
    code = "INVALID_PRINCIPAL"

    def __init__(self, principal: Money):
        super().__init__("Principal must be positive", {"principal": principal})


class InvalidTerm(LedgerError):
    code = "INVALID_TERM"


class InvalidPayment(LedgerError):
    code = "INVALID_PAYMENT"


class InconsistentOverride(LedgerError):
    code = "INCONSISTENT_OVERRIDE"


class OverpaymentError(LedgerError):
    code = "OVERPAYMENT"
    recoverable = True

    def __init__(self, excess: Money, balance: Money):
        super().__init__(
            f"Payment exceeds outstanding balance by {excess.to_string()}",
            {"excess": excess, "balance": balance}
        )
        self.excess = excess
        self.balance = balance


class NothingToUndo(LedgerError):
    code = "NOTHING_TO_UNDO"

    def __init__(self, loan_id: Optional[str] = None):
        super().__init__("Ledger has no payments to undo", {"loan_id": loan_id} if loan_id else None)


class LoanAlreadySettled(LedgerError):
    code = "LOAN_ALREADY_SETTLED"

    def __init__(self, loan_id: Optional[str] = None, status: Optional[str] = None):
        details = {}
        if loan_id:
            details["loan_id"] = loan_id
        if status:
            details["status"] = status
        super().__init__("Loan is already closed", details)


class ScheduleAnchorMismatch(LedgerError):
    code = "SCHEDULE_ANCHOR_MISMATCH"
    recoverable = True

    def __init__(self, anchor_date: date, required_weekday: str):
        super().__init__(
            f"Payment start date {anchor_date.isoformat()} must be a {required_weekday}",
            {"anchor_date": anchor_date, "required_weekday": required_weekday}
        )
        self.anchor_date = anchor_date
        self.required_weekday = required_weekday


class LoanNotFound(LedgerError):
    code = "LOAN_NOT_FOUND"

    def __init__(self, loan_id: str):
        super().__init__(f"Loan '{loan_id}' not found", {"loan_id": loan_id})


class ConcurrentModification(LedgerError):
    code = "CONCURRENT_MODIFICATION"
    recoverable = True

    def __init__(self, loan_id: str, expected_count: int, actual_count: int):
        super().__init__(
            "Ledger changed since it was read",
            {"loan_id": loan_id, "expected_count": expected_count, "actual_count": actual_count}
        )


def _plain(value: Any) -> Any:
    if isinstance(value, Money):
        return value.minor
    if isinstance(value, date):
        return value.isoformat()
    return value
