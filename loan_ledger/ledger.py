"""
Ledger Module

Append-only payment log of one loan and the balance/status projection built
from it. LedgerState is recomputed from the log on every read and is never
stored, so there is no second copy of the balance to go stale.

Concurrency contract: a Ledger is an immutable value. Mutations (payment,
undo, settlement, foreclosure) return a new Ledger; persisting it is the
caller's job and must be serialised per loan. LoanStore.append_payment and
LoanStore.remove_last_payment take the payment count the caller read and
reject the write if another writer got there first. Different loans never
share state and can be processed in parallel.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date, datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING
from enum import Enum
import uuid

from .money import Money, ceil_div
from .plans import LoanPlan, LoanKind
from .schedule import InterestSchedule, Schedule
from .errors import (
    InvalidPayment, InvalidTerm, OverpaymentError, NothingToUndo, LoanAlreadySettled
)

if TYPE_CHECKING:
    from .foreclosure import ForeclosureQuote


class PaymentMode(Enum):
    """How the customer paid"""
    CASH = "cash"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"

    @classmethod
    def parse(cls, value: str) -> 'PaymentMode':
        if isinstance(value, PaymentMode):
            return value
        key = str(value).strip().lower().replace(" ", "_")
        for mode in cls:
            if mode.value == key:
                return mode
        if key in _LEGACY_MODE_NAMES:
            return _LEGACY_MODE_NAMES[key]
        raise ValueError(f"Unknown payment mode: {value!r}")


_LEGACY_MODE_NAMES = {
    "offline": PaymentMode.CASH,
    "online": PaymentMode.UPI,
    "gpay": PaymentMode.UPI,
    "phonepe": PaymentMode.UPI,
    "paytm": PaymentMode.UPI,
    "bank": PaymentMode.BANK_TRANSFER,
    "neft": PaymentMode.BANK_TRANSFER,
    "imps": PaymentMode.BANK_TRANSFER,
    "check": PaymentMode.CHEQUE,
}


class PaymentKind(Enum):
    """What a payment record does to the loan"""
    INSTALLMENT = "installment"    # regular due; the interest payment of an interest-only loan
    SETTLEMENT = "settlement"      # principal return, closes an interest-only loan
    FORECLOSURE = "foreclosure"    # early payoff, closes a fixed-term loan

    @property
    def closes_loan(self) -> bool:
        return self is not PaymentKind.INSTALLMENT


class LoanStatus(Enum):
    """Loan lifecycle states; all transitions out of ACTIVE are one-way"""
    ACTIVE = "active"
    SETTLED = "settled"
    FORECLOSED = "foreclosed"
    DEFAULTED = "defaulted"        # set by the caller, never derived


class PeriodStatus(Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    OVERDUE = "overdue"            # unpaid and past due; set by the overdue classifier
    UPCOMING = "upcoming"          # unpaid, due on or after the as-of date


@dataclass(frozen=True)
class PaymentRecord:
    """One recorded transaction; never edited once written"""
    id: str
    loan_id: str
    amount: Money
    paid_date: date                # entered by staff, may be backdated
    mode: PaymentMode
    sequence: int                  # insertion order, 1-based
    kind: PaymentKind = PaymentKind.INSTALLMENT
    note: str = ""
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'amount': self.amount.minor,
            'paid_date': self.paid_date.isoformat(),
            'mode': self.mode.value,
            'sequence': self.sequence,
            'kind': self.kind.value,
            'note': self.note,
            'recorded_at': self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentRecord':
        return cls(
            id=data['id'],
            loan_id=data['loan_id'],
            amount=Money(int(data['amount'])),
            paid_date=date.fromisoformat(data['paid_date']),
            mode=PaymentMode(data['mode']),
            sequence=int(data['sequence']),
            kind=PaymentKind(data.get('kind', PaymentKind.INSTALLMENT.value)),
            note=data.get('note') or "",
            recorded_at=datetime.fromisoformat(data['recorded_at']),
        )


@dataclass(frozen=True)
class LedgerState:
    """Derived balance and status of a loan"""
    balance: Money                 # floored at zero
    total_paid: Money
    periods_settled: int
    status: LoanStatus
    payment_count: int
    overpaid: Money = field(default_factory=Money.zero)  # stored payments beyond the payable amount

    @property
    def is_closed(self) -> bool:
        return self.status in (LoanStatus.SETTLED, LoanStatus.FORECLOSED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'balance': self.balance.minor,
            'total_paid': self.total_paid.minor,
            'periods_settled': self.periods_settled,
            'status': self.status.value,
            'payment_count': self.payment_count,
            'overpaid': self.overpaid.minor,
        }


@dataclass(frozen=True)
class PaymentPreview:
    """Effect of a payment before it is recorded"""
    amount: Money
    periods_covered: Decimal
    balance_after: Money
    periods_remaining: Optional[int]
    excess: Money

    @property
    def would_overpay(self) -> bool:
        return self.excess.is_positive()


@dataclass(frozen=True)
class LoanSummary:
    """Progress figures shown on the loan detail view"""
    balance: Money
    total_paid: Money
    progress_percent: Optional[Decimal]
    total_periods: Optional[int]
    periods_remaining: Optional[int]
    last_payment_date: Optional[date]
    status: LoanStatus


@dataclass(frozen=True)
class Ledger:
    """Payment log of one loan plus its plan"""
    plan: LoanPlan
    loan_id: str
    payments: Tuple[PaymentRecord, ...] = ()
    defaulted: bool = False

    def __post_init__(self):
        payments = tuple(sorted(self.payments, key=lambda p: p.sequence))
        for payment in payments:
            if payment.loan_id != self.loan_id:
                raise ValueError(f"Payment {payment.id} belongs to loan {payment.loan_id}, not {self.loan_id}")
        object.__setattr__(self, 'payments', payments)

    # -- derived values -------------------------------------------------

    @property
    def payment_count(self) -> int:
        return len(self.payments)

    @property
    def last_payment(self) -> Optional[PaymentRecord]:
        """Most recently inserted record, whatever its paid date"""
        return self.payments[-1] if self.payments else None

    @property
    def next_sequence(self) -> int:
        return self.payments[-1].sequence + 1 if self.payments else 1

    @property
    def closing_record(self) -> Optional[PaymentRecord]:
        for payment in self.payments:
            if payment.kind.closes_loan:
                return payment
        return None

    @property
    def installment_paid(self) -> Money:
        return sum((p.amount for p in self.payments if p.kind is PaymentKind.INSTALLMENT), Money.zero())

    @property
    def interest_paid(self) -> Money:
        """Interest collected on an interest-only loan; flat-rate plans do not split it out"""
        if self.plan.kind is LoanKind.INTEREST_ONLY:
            return self.installment_paid
        return Money.zero()

    @property
    def total_paid(self) -> Money:
        return sum((p.amount for p in self.payments), Money.zero())

    @property
    def raw_balance(self) -> Money:
        """Outstanding amount before flooring; negative means stored overpayment"""
        if self.closing_record is not None:
            return Money.zero()
        if self.plan.kind is LoanKind.INTEREST_ONLY:
            # Interest payments never reduce the principal
            return self.plan.principal
        return self.plan.total_payable - self.installment_paid

    @property
    def balance(self) -> Money:
        return max(self.raw_balance, Money.zero())

    @property
    def status(self) -> LoanStatus:
        closing = self.closing_record
        if closing is not None:
            return LoanStatus.FORECLOSED if closing.kind is PaymentKind.FORECLOSURE else LoanStatus.SETTLED
        if self.plan.kind.has_fixed_term and not self.raw_balance.is_positive():
            return LoanStatus.SETTLED
        if self.defaulted:
            return LoanStatus.DEFAULTED
        return LoanStatus.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.status in (LoanStatus.SETTLED, LoanStatus.FORECLOSED)

    @property
    def periods_settled(self) -> int:
        periodic = self.plan.periodic_amount.minor
        if self.plan.kind.has_fixed_term:
            if self.is_closed:
                return self.plan.period_count
            return min(self.installment_paid.minor // periodic, self.plan.period_count)
        if periodic == 0:
            return 0
        return self.interest_paid.minor // periodic

    @property
    def state(self) -> LedgerState:
        raw_balance = self.raw_balance
        return LedgerState(
            balance=max(raw_balance, Money.zero()),
            total_paid=self.total_paid,
            periods_settled=self.periods_settled,
            status=self.status,
            payment_count=self.payment_count,
            overpaid=max(-raw_balance, Money.zero()),
        )

    # -- mutations (each returns a new Ledger) -------------------------

    def apply_payment(
        self,
        amount: Money,
        paid_date: date,
        mode: PaymentMode = PaymentMode.CASH,
        note: str = "",
        payment_id: Optional[str] = None
    ) -> Tuple['Ledger', PaymentRecord]:
        """
        Append a regular payment

        Returns:
            The new ledger and the record appended

        Raises:
            InvalidPayment: amount is not positive
            LoanAlreadySettled: loan is settled or foreclosed
            OverpaymentError: amount exceeds the outstanding balance
        """
        self._require_open()
        self._require_positive(amount)

        if self.plan.kind.has_fixed_term and amount > self.balance:
            raise OverpaymentError(excess=amount - self.balance, balance=self.balance)

        return self._append(amount, paid_date, mode, PaymentKind.INSTALLMENT, note, payment_id)

    def undo_last_payment(self) -> Tuple['Ledger', PaymentRecord]:
        """
        Remove the most recently inserted payment

        Returns:
            The new ledger and the record removed

        Raises:
            NothingToUndo: ledger is empty
            LoanAlreadySettled: last record is a settlement or foreclosure
        """
        last = self.last_payment
        if last is None:
            raise NothingToUndo(self.loan_id)
        if last.kind.closes_loan:
            raise LoanAlreadySettled(self.loan_id, self.status.value)
        return replace(self, payments=self.payments[:-1]), last

    def settle(
        self,
        settlement_amount: Money,
        paid_date: date,
        mode: PaymentMode = PaymentMode.CASH,
        note: str = ""
    ) -> Tuple['Ledger', PaymentRecord]:
        """
        Return the principal of an interest-only loan and close it

        Raises:
            InvalidTerm: loan is not interest-only
            LoanAlreadySettled: loan is already closed
            InvalidPayment: amount is not positive or short of the principal
            OverpaymentError: amount exceeds the outstanding principal
        """
        if self.plan.kind is not LoanKind.INTEREST_ONLY:
            raise InvalidTerm("Only interest-only loans are closed by settlement",
                              {"kind": self.plan.kind.value})
        self._require_open()
        self._require_positive(settlement_amount)

        outstanding = self.balance
        if settlement_amount > outstanding:
            raise OverpaymentError(excess=settlement_amount - outstanding, balance=outstanding)
        if settlement_amount < outstanding:
            raise InvalidPayment("Settlement must return the full principal", {
                "settlement_amount": settlement_amount,
                "shortfall": outstanding - settlement_amount,
            })

        return self._append(settlement_amount, paid_date, mode, PaymentKind.SETTLEMENT, note, None)

    def foreclose(
        self,
        quote: 'ForeclosureQuote',
        paid_date: date,
        mode: PaymentMode = PaymentMode.CASH,
        note: str = ""
    ) -> Tuple['Ledger', PaymentRecord]:
        """
        Close a fixed-term loan early at a quoted amount

        Raises:
            InvalidTerm: loan is interest-only
            LoanAlreadySettled: loan is already closed
            InvalidPayment: quote was computed against a different balance
        """
        if not self.plan.kind.has_fixed_term:
            raise InvalidTerm("Interest-only loans close through settlement",
                              {"kind": self.plan.kind.value})
        self._require_open()
        if quote.balance != self.balance:
            raise InvalidPayment("Foreclosure quote is stale", {
                "quoted_balance": quote.balance,
                "balance": self.balance,
            })
        return self._append(quote.foreclosure_amount, paid_date, mode, PaymentKind.FORECLOSURE, note, None)

    def with_defaulted(self, defaulted: bool = True) -> 'Ledger':
        return replace(self, defaulted=defaulted)

    def reactivate(self) -> 'Ledger':
        """Fresh active view over the same plan; the old log is left intact"""
        return Ledger(plan=self.plan, loan_id=self.loan_id)

    # -- projections ---------------------------------------------------

    def project(self, schedule: Schedule, as_of: Optional[date] = None) -> Dict[int, PeriodStatus]:
        """
        Paid/unpaid status of each schedule period

        The first periods_settled periods are paid; nothing is tracked per
        period. A period with nothing due counts as paid. Interest-only
        schedules are unbounded, so they are projected over the entries due
        on or before as_of.
        """
        if isinstance(schedule, InterestSchedule):
            if as_of is None:
                raise ValueError("as_of is required to project an interest-only schedule")
            entries = schedule.up_to(as_of)
        else:
            entries = tuple(schedule)

        closed = self.is_closed
        settled = self.periods_settled
        return {
            entry.index: PeriodStatus.PAID
            if closed or entry.index < settled or not entry.due_amount.is_positive()
            else PeriodStatus.UNPAID
            for entry in entries
        }

    def preview_payment(self, amount: Money) -> PaymentPreview:
        """What recording `amount` would do, without recording it"""
        self._require_positive(amount)
        periodic = self.plan.periodic_amount
        if periodic.is_positive():
            periods_covered = (Decimal(amount.minor) / Decimal(periodic.minor)).quantize(
                Decimal('0.1'), rounding=ROUND_HALF_UP
            )
        else:
            periods_covered = Decimal('0.0')

        if not self.plan.kind.has_fixed_term:
            return PaymentPreview(amount, periods_covered, self.balance, None, Money.zero())

        remaining = self.balance - amount
        balance_after = max(remaining, Money.zero())
        return PaymentPreview(
            amount=amount,
            periods_covered=periods_covered,
            balance_after=balance_after,
            periods_remaining=ceil_div(balance_after.minor, periodic.minor),
            excess=max(-remaining, Money.zero()),
        )

    def summary(self) -> LoanSummary:
        balance = self.balance
        if self.plan.kind.has_fixed_term:
            total = self.plan.total_payable
            progress = (Decimal((total - balance).minor) * 100 / Decimal(total.minor)).quantize(
                Decimal('0.01'), rounding=ROUND_HALF_UP
            )
            periods_remaining = self.plan.period_count - self.periods_settled
        else:
            progress = Decimal('100.00') if self.is_closed else None
            periods_remaining = None

        last = self.last_payment
        return LoanSummary(
            balance=balance,
            total_paid=self.total_paid,
            progress_percent=progress,
            total_periods=self.plan.period_count,
            periods_remaining=periods_remaining,
            last_payment_date=last.paid_date if last else None,
            status=self.status,
        )

    # -- helpers ---------------------------------------------------------

    def _require_positive(self, amount: Money) -> None:
        if not isinstance(amount, Money):
            raise TypeError("amount must be Money")
        if not amount.is_positive():
            raise InvalidPayment("Payment amount must be positive", {"amount": amount})

    def _require_open(self) -> None:
        if self.is_closed:
            raise LoanAlreadySettled(self.loan_id, self.status.value)

    def _append(
        self,
        amount: Money,
        paid_date: date,
        mode: PaymentMode,
        kind: PaymentKind,
        note: str,
        payment_id: Optional[str]
    ) -> Tuple['Ledger', PaymentRecord]:
        record = PaymentRecord(
            id=payment_id or str(uuid.uuid4()),
            loan_id=self.loan_id,
            amount=amount,
            paid_date=paid_date,
            mode=mode,
            sequence=self.next_sequence,
            kind=kind,
            note=note,
        )
        return replace(self, payments=self.payments + (record,)), record
