"""
Plan Calculator Module

Derives the periodic amount and period count of a loan from its principal and
term parameters. This is the only place periodic amounts are computed; every
caller goes through derive_plan so rounding never diverges between products.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum

from .money import (
    Money, MINOR_UNITS_PER_MAJOR, ceil_div, percent_of, floor_percent_of, round_half_up
)
from .periods import weekday_name
from .config import LedgerConfig, get_config
from .errors import (
    InvalidPrincipal, InvalidTerm, InconsistentOverride, ScheduleAnchorMismatch
)

# Caller-supplied amount/count pairs may disagree by this much
OVERRIDE_TOLERANCE = Money(MINOR_UNITS_PER_MAJOR)


class LoanKind(Enum):
    """Loan products"""
    WEEKLY_INSTALLMENT = "weekly_installment"    # Sunday collection "friend loan"
    MONTHLY_INSTALLMENT = "monthly_installment"
    DAILY_INSTALLMENT = "daily_installment"
    INTEREST_ONLY = "interest_only"              # vaddi: monthly interest, principal on settlement
    AMORTIZED_TERM = "amortized_term"            # vehicle finance, flat-rate EMI

    @property
    def has_fixed_term(self) -> bool:
        return self is not LoanKind.INTEREST_ONLY

    @classmethod
    def parse(cls, value: str) -> 'LoanKind':
        """Resolve a loan kind from its value or a legacy product label"""
        if isinstance(value, LoanKind):
            return value
        key = str(value).strip().lower().replace(" ", "_")
        for kind in cls:
            if kind.value == key:
                return kind
        if key in _LEGACY_KIND_NAMES:
            return _LEGACY_KIND_NAMES[key]
        raise ValueError(f"Unknown loan kind: {value!r}")


_LEGACY_KIND_NAMES = {
    "weekly": LoanKind.WEEKLY_INSTALLMENT,
    "sunday": LoanKind.WEEKLY_INSTALLMENT,
    "friend": LoanKind.WEEKLY_INSTALLMENT,
    "monthly": LoanKind.MONTHLY_INSTALLMENT,
    "daily": LoanKind.DAILY_INSTALLMENT,
    "vaddi": LoanKind.INTEREST_ONLY,
    "interest": LoanKind.INTEREST_ONLY,
    "interest_only": LoanKind.INTEREST_ONLY,
    "auto-finance": LoanKind.AMORTIZED_TERM,
    "auto_finance": LoanKind.AMORTIZED_TERM,
    "vehicle": LoanKind.AMORTIZED_TERM,
    "emi": LoanKind.AMORTIZED_TERM,
}


@dataclass(frozen=True)
class TermParams:
    """Term parameters supplied when a loan is disbursed"""
    given_date: date
    anchor_date: date                         # first due date
    override_amount: Optional[Money] = None
    override_period_count: Optional[int] = None
    rate_percent: Optional[Decimal] = None    # InterestOnly monthly %, AmortizedTerm annual %
    months: Optional[int] = None              # AmortizedTerm tenure


@dataclass(frozen=True)
class LoanPlan:
    """Immutable loan plan, created once at disbursal"""
    principal: Money
    kind: LoanKind
    periodic_amount: Money
    period_count: Optional[int]
    given_date: date
    anchor_date: date
    rate_percent: Optional[Decimal] = None
    interest_total: Money = field(default_factory=Money.zero)
    asked_amount: Optional[Money] = None      # daily loans: amount repaid
    given_amount: Optional[Money] = None      # daily loans: cash handed over

    def __post_init__(self):
        if self.principal.is_negative():
            raise InvalidPrincipal(self.principal)
        if self.period_count is not None:
            if self.period_count <= 0:
                raise InvalidTerm("Period count must be positive", {"period_count": self.period_count})
            if not self.periodic_amount.is_positive():
                raise InvalidTerm("Periodic amount must be positive for a fixed-term plan",
                                  {"periodic_amount": self.periodic_amount})
            if not self.final_amount.is_positive():
                raise InvalidTerm("Final period must have an amount due",
                                  {"final_amount": self.final_amount, "period_count": self.period_count})
        elif self.kind.has_fixed_term:
            raise InvalidTerm(f"{self.kind.value} plans need a period count")

    @property
    def total_payable(self) -> Money:
        """Amount that closes the plan (outstanding principal for interest-only)"""
        return self.principal + self.interest_total

    @property
    def final_amount(self) -> Optional[Money]:
        """Due amount of the last period; the remainder after full periods"""
        if self.period_count is None:
            return None
        return self.total_payable - self.periodic_amount * (self.period_count - 1)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            'principal': self.principal.minor,
            'kind': self.kind.value,
            'periodic_amount': self.periodic_amount.minor,
            'period_count': self.period_count,
            'given_date': self.given_date.isoformat(),
            'anchor_date': self.anchor_date.isoformat(),
            'rate_percent': str(self.rate_percent) if self.rate_percent is not None else None,
            'interest_total': self.interest_total.minor,
            'asked_amount': self.asked_amount.minor if self.asked_amount else None,
            'given_amount': self.given_amount.minor if self.given_amount else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanPlan':
        """Create instance from dictionary"""
        def get_money(key: str) -> Optional[Money]:
            if data.get(key) is None:
                return None
            return Money(int(data[key]))

        return cls(
            principal=Money(int(data['principal'])),
            kind=LoanKind(data['kind']),
            periodic_amount=Money(int(data['periodic_amount'])),
            period_count=data.get('period_count'),
            given_date=date.fromisoformat(data['given_date']),
            anchor_date=date.fromisoformat(data['anchor_date']),
            rate_percent=Decimal(data['rate_percent']) if data.get('rate_percent') is not None else None,
            interest_total=get_money('interest_total') or Money.zero(),
            asked_amount=get_money('asked_amount'),
            given_amount=get_money('given_amount'),
        )


def derive_plan(
    principal: Money,
    kind: LoanKind,
    params: TermParams,
    config: Optional[LedgerConfig] = None
) -> LoanPlan:
    """
    Derive an immutable loan plan

    Args:
        principal: Amount lent (or asked, for daily loans)
        kind: Loan product
        params: Dates, overrides and rate/tenure
        config: Product constants; global configuration when None

    Returns:
        LoanPlan with mutually consistent periodic amount and period count

    Raises:
        InvalidPrincipal: principal <= 0
        InvalidTerm: missing or non-positive term values, negative rate
        InconsistentOverride: caller amount and count do not reconcile
        ScheduleAnchorMismatch: weekly anchor is not on the required weekday
    """
    config = config or get_config()
    if not isinstance(principal, Money):
        raise TypeError("principal must be Money")
    if not principal.is_positive():
        raise InvalidPrincipal(principal)
    if params.anchor_date < params.given_date:
        raise InvalidTerm("First due date precedes the disbursal date", {
            "given_date": params.given_date.isoformat(),
            "anchor_date": params.anchor_date.isoformat()
        })

    if kind is LoanKind.WEEKLY_INSTALLMENT:
        if params.anchor_date.weekday() != config.weekly_anchor_weekday:
            raise ScheduleAnchorMismatch(params.anchor_date, weekday_name(config.weekly_anchor_weekday))
        return _installment_plan(principal, kind, params, config.weekly_installment_divisor)
    elif kind is LoanKind.MONTHLY_INSTALLMENT:
        return _installment_plan(principal, kind, params, config.monthly_installment_divisor)
    elif kind is LoanKind.DAILY_INSTALLMENT:
        return _installment_plan(
            principal, kind, params, config.daily_installment_days,
            asked_amount=principal,
            given_amount=floor_percent_of(principal, config.daily_disbursal_percent)
        )
    elif kind is LoanKind.INTEREST_ONLY:
        return _interest_only_plan(principal, params)
    elif kind is LoanKind.AMORTIZED_TERM:
        return _amortized_plan(principal, params)
    else:
        raise InvalidTerm(f"Unsupported loan kind: {kind}")


def _installment_plan(
    principal: Money,
    kind: LoanKind,
    params: TermParams,
    divisor: int,
    **extra
) -> LoanPlan:
    requested_count = params.override_period_count
    if requested_count is not None and requested_count <= 0:
        raise InvalidTerm("Period count must be positive", {"period_count": requested_count})

    if params.override_amount is not None:
        if not params.override_amount.is_positive():
            raise InvalidTerm("Installment amount must be positive",
                              {"override_amount": params.override_amount})
        periodic_amount = params.override_amount
    elif requested_count is not None:
        periodic_amount = Money(ceil_div(principal.minor, requested_count))
    else:
        periodic_amount = Money(ceil_div(principal.minor, divisor))

    period_count = ceil_div(principal.minor, periodic_amount.minor)
    if requested_count is not None and requested_count != period_count:
        period_count = _reconcile_override(principal, periodic_amount, requested_count)

    return LoanPlan(
        principal=principal,
        kind=kind,
        periodic_amount=periodic_amount,
        period_count=period_count,
        given_date=params.given_date,
        anchor_date=params.anchor_date,
        **extra
    )


def _reconcile_override(principal: Money, periodic_amount: Money, period_count: int) -> int:
    """Accept a caller count that misses the computed one by rounding only"""
    covered = periodic_amount * period_count
    # The final period must still have something left to collect
    if abs(covered - principal) <= OVERRIDE_TOLERANCE and periodic_amount * (period_count - 1) < principal:
        return period_count
    raise InconsistentOverride(
        "Installment amount and period count do not reconcile with the principal",
        {
            "principal": principal,
            "periodic_amount": periodic_amount,
            "period_count": period_count,
            "expected_period_count": ceil_div(principal.minor, periodic_amount.minor),
        }
    )


def _require_rate(params: TermParams) -> Decimal:
    if params.rate_percent is None:
        raise InvalidTerm("Interest rate is required")
    rate = Decimal(params.rate_percent)
    if rate < 0:
        raise InvalidTerm("Interest rate cannot be negative", {"rate_percent": str(rate)})
    return rate


def _interest_only_plan(principal: Money, params: TermParams) -> LoanPlan:
    rate = _require_rate(params)
    if params.override_period_count is not None:
        raise InvalidTerm("Interest-only loans have no fixed period count")
    return LoanPlan(
        principal=principal,
        kind=LoanKind.INTEREST_ONLY,
        periodic_amount=percent_of(principal, rate),
        period_count=None,
        given_date=params.given_date,
        anchor_date=params.anchor_date,
        rate_percent=rate,
    )


def _amortized_plan(principal: Money, params: TermParams) -> LoanPlan:
    rate = _require_rate(params)
    months = params.months
    if months is None or months <= 0:
        raise InvalidTerm("Tenure in months must be positive", {"months": months})

    # Flat rate on the original principal, matching printed receipts
    interest_total = Money(round_half_up(
        Decimal(principal.minor) * rate / Decimal(100) * Decimal(months) / Decimal(12)
    ))
    total_payable = principal + interest_total
    emi = Money(ceil_div(total_payable.minor, months))
    if emi * (months - 1) >= total_payable:
        raise InvalidTerm("Tenure is too long for the amount payable", {
            "total_payable": total_payable,
            "months": months,
        })

    if params.override_amount is not None and abs(params.override_amount - emi) > OVERRIDE_TOLERANCE:
        raise InconsistentOverride(
            "EMI does not match the flat-rate calculation",
            {"override_amount": params.override_amount, "emi": emi}
        )
    if params.override_period_count is not None and params.override_period_count != months:
        raise InconsistentOverride(
            "Period count must equal the tenure",
            {"period_count": params.override_period_count, "months": months}
        )

    return LoanPlan(
        principal=principal,
        kind=LoanKind.AMORTIZED_TERM,
        periodic_amount=emi,
        period_count=months,
        given_date=params.given_date,
        anchor_date=params.anchor_date,
        rate_percent=rate,
        interest_total=interest_total,
    )


def interest_for(plan: LoanPlan, outstanding: Money) -> Money:
    """Interest charge of one period on the current outstanding principal"""
    if plan.kind is not LoanKind.INTEREST_ONLY:
        raise InvalidTerm("Only interest-only plans charge periodic interest")
    return percent_of(outstanding, plan.rate_percent)


@dataclass(frozen=True)
class VaddiSummary:
    """Collection totals of a weekly loan split into equal instalments"""
    principal: Money
    weeks: int
    weekly_amount: Money
    total_collection: Money
    total_vaddi: Money
    vaddi_percent: Decimal


def vaddi_summary(principal: Money, weeks: int) -> VaddiSummary:
    """Weekly amount and the interest earned by rounding it up"""
    if not principal.is_positive():
        raise InvalidPrincipal(principal)
    if weeks <= 0:
        raise InvalidTerm("Number of weeks must be positive", {"weeks": weeks})

    weekly_amount = Money(ceil_div(principal.minor, weeks))
    total_collection = weekly_amount * weeks
    total_vaddi = total_collection - principal
    vaddi_percent = (Decimal(total_vaddi.minor) * 100 / Decimal(principal.minor)).quantize(
        Decimal('0.01'), rounding=ROUND_HALF_UP
    )
    return VaddiSummary(
        principal=principal,
        weeks=weeks,
        weekly_amount=weekly_amount,
        total_collection=total_collection,
        total_vaddi=total_vaddi,
        vaddi_percent=vaddi_percent,
    )
