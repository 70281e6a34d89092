"""
Pydantic schemas for API requests and responses

Amounts travel as integer minor units (paise); dates as ISO strings.
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..money import Money
from ..plans import TermParams
from ..ledger import LoanSummary, PaymentPreview


class CreateLoanRequest(BaseModel):
    loan_id: Optional[str] = None
    principal: int = Field(..., description="Principal in minor units")
    kind: str = Field(..., description="Loan kind (weekly_installment, monthly_installment, "
                                        "daily_installment, interest_only, amortized_term)")
    given_date: str  # ISO date string
    anchor_date: str  # ISO date string, first due date
    override_amount: Optional[int] = None
    override_period_count: Optional[int] = None
    rate_percent: Optional[Decimal] = None
    months: Optional[int] = None

    def to_term_params(self) -> TermParams:
        return TermParams(
            given_date=date.fromisoformat(self.given_date),
            anchor_date=date.fromisoformat(self.anchor_date),
            override_amount=Money(self.override_amount) if self.override_amount is not None else None,
            override_period_count=self.override_period_count,
            rate_percent=self.rate_percent,
            months=self.months,
        )


class PaymentRequest(BaseModel):
    amount: int = Field(..., description="Amount in minor units")
    paid_date: Optional[str] = None  # ISO date string, defaults to today
    mode: str = Field("cash", description="Payment mode (cash, upi, bank_transfer, cheque)")
    note: str = ""


class PreviewRequest(BaseModel):
    amount: int = Field(..., description="Amount in minor units")


class SettleRequest(BaseModel):
    amount: Optional[int] = Field(None, description="Settlement amount; outstanding principal when omitted")
    paid_date: Optional[str] = None
    mode: str = "cash"
    note: str = ""


class ForeclosureQuoteRequest(BaseModel):
    penalty_percent: Optional[Decimal] = Field(None, description="Penalty percent; configured default when omitted")


class ForeclosureRequest(ForeclosureQuoteRequest):
    paid_date: Optional[str] = None
    mode: str = "cash"
    note: str = ""


class DefaultRequest(BaseModel):
    defaulted: bool = True


def parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def summary_to_dict(summary: LoanSummary) -> Dict[str, Any]:
    return {
        "balance": summary.balance.minor,
        "total_paid": summary.total_paid.minor,
        "progress_percent": str(summary.progress_percent) if summary.progress_percent is not None else None,
        "total_periods": summary.total_periods,
        "periods_remaining": summary.periods_remaining,
        "last_payment_date": summary.last_payment_date.isoformat() if summary.last_payment_date else None,
        "status": summary.status.value,
    }


def preview_to_dict(preview: PaymentPreview) -> Dict[str, Any]:
    return {
        "amount": preview.amount.minor,
        "periods_covered": str(preview.periods_covered),
        "balance_after": preview.balance_after.minor,
        "periods_remaining": preview.periods_remaining,
        "excess": preview.excess.minor,
        "would_overpay": preview.would_overpay,
    }
