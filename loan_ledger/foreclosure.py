"""
Foreclosure Calculator Module

Quotes the cost of paying a fixed-term loan off early. Flat-rate plans do not
split payments into principal and interest, so the remaining principal is a
pro-rata estimate from the outstanding balance and the quote says so.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .money import Money, percent_of, prorate
from .ledger import Ledger
from .config import get_config
from .errors import InvalidTerm, LoanAlreadySettled

ESTIMATE_BASIS = "pro-rata of outstanding balance"


@dataclass(frozen=True)
class ForeclosureQuote:
    """Early payoff quote; read-only until committed through Ledger.foreclose"""
    loan_id: str
    balance: Money                          # outstanding balance the quote was computed on
    remaining_principal_estimate: Money
    penalty_percent: Decimal
    penalty: Money
    foreclosure_amount: Money
    savings: Money                          # negative when the penalty outweighs the discount
    is_estimate: bool = True
    basis: str = ESTIMATE_BASIS

    @property
    def has_negative_savings(self) -> bool:
        return self.savings.is_negative()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'balance': self.balance.minor,
            'remaining_principal_estimate': self.remaining_principal_estimate.minor,
            'penalty_percent': str(self.penalty_percent),
            'penalty': self.penalty.minor,
            'foreclosure_amount': self.foreclosure_amount.minor,
            'savings': self.savings.minor,
            'is_estimate': self.is_estimate,
            'basis': self.basis,
        }


def foreclose_quote(ledger: Ledger, penalty_percent: Optional[Union[Decimal, int]] = None) -> ForeclosureQuote:
    """
    Quote an early payoff

    Args:
        ledger: Ledger of an active fixed-term loan
        penalty_percent: Penalty on the remaining principal; configured default when None

    Returns:
        ForeclosureQuote

    Raises:
        InvalidTerm: interest-only loan or negative penalty
        LoanAlreadySettled: loan is already closed
    """
    if penalty_percent is None:
        penalty_percent = get_config().default_foreclosure_penalty_percent
    penalty_percent = Decimal(penalty_percent)

    plan = ledger.plan
    if not plan.kind.has_fixed_term:
        raise InvalidTerm("Interest-only loans close through settlement", {"kind": plan.kind.value})
    if penalty_percent < 0:
        raise InvalidTerm("Penalty percent cannot be negative", {"penalty_percent": str(penalty_percent)})
    if ledger.is_closed:
        raise LoanAlreadySettled(ledger.loan_id, ledger.status.value)

    balance = ledger.balance
    remaining = prorate(plan.principal, balance, plan.total_payable)
    penalty = percent_of(remaining, penalty_percent)
    foreclosure_amount = remaining + penalty

    return ForeclosureQuote(
        loan_id=ledger.loan_id,
        balance=balance,
        remaining_principal_estimate=remaining,
        penalty_percent=penalty_percent,
        penalty=penalty,
        foreclosure_amount=foreclosure_amount,
        savings=balance - foreclosure_amount,
    )
