"""
Loan Service Module

Facade used by the API and other callers. Loads a ledger from the store, runs
the engine operation and commits the result with a compare-and-swap on the
payment count while holding the per-loan lock. This is also the layer that
logs and publishes events; the calculation modules do neither.
"""

from datetime import date
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from contextlib import contextmanager
import uuid

from .money import Money
from .plans import LoanPlan, LoanKind, TermParams, derive_plan
from .schedule import ScheduleEntry, InterestSchedule, generate_schedule
from .ledger import Ledger, LedgerState, PaymentMode, PaymentRecord, PaymentPreview, LoanSummary
from .overdue import DueCollection, OverdueReport, classify, due_between
from .foreclosure import ForeclosureQuote, foreclose_quote
from .store import LoanStore
from .clock import Clock, SystemClock
from .events import EventDispatcher, EventPayload, LedgerEvent
from .config import LedgerConfig, get_config
from .errors import LedgerError
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class PaymentReceipt:
    """Plain result of a ledger mutation: the record touched and the state after it"""
    loan_id: str
    record: PaymentRecord
    state: LedgerState

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'payment': self.record.to_dict(),
            'state': self.state.to_dict(),
        }


class LoanService:
    """
    Manages loans from disbursal through closure
    """

    def __init__(
        self,
        store: LoanStore,
        clock: Optional[Clock] = None,
        dispatcher: Optional[EventDispatcher] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher or EventDispatcher()
        self.config = config or get_config()
        self.logger = get_logger("loan_ledger.service")

    # -- creation and reads --------------------------------------------

    def create_loan(
        self,
        principal: Money,
        kind: LoanKind,
        params: TermParams,
        loan_id: Optional[str] = None
    ) -> Ledger:
        """
        Derive a plan and store a new loan

        Args:
            principal: Amount lent
            kind: Loan product
            params: Term parameters
            loan_id: Caller-chosen id; generated when None

        Returns:
            Empty ledger of the new loan
        """
        loan_id = loan_id or str(uuid.uuid4())
        with self._logged("create_loan", loan_id):
            plan = derive_plan(principal, kind, params, self.config)
            self.store.save_plan(loan_id, plan)

        log_action(self.logger, "info", "Loan created", loan_id=loan_id, action="create_loan",
                   resource="loan", extra={"kind": kind.value, "principal": principal.minor,
                                           "periodic_amount": plan.periodic_amount.minor})
        self._publish(LedgerEvent.LOAN_CREATED, loan_id, {"plan": plan.to_dict()})
        return Ledger(plan=plan, loan_id=loan_id)

    def get_ledger(self, loan_id: str) -> Ledger:
        return self.store.load_ledger(loan_id)

    def get_plan(self, loan_id: str) -> LoanPlan:
        return self.store.load_plan(loan_id)

    def get_state(self, loan_id: str) -> LedgerState:
        return self.get_ledger(loan_id).state

    def get_schedule(self, loan_id: str, periods: Optional[int] = None) -> Tuple[ScheduleEntry, ...]:
        """Full schedule, or the first `periods` interest periods of an interest-only loan"""
        schedule = generate_schedule(self.get_plan(loan_id))
        if isinstance(schedule, InterestSchedule):
            return schedule.take(periods or self.config.interest_schedule_horizon)
        if periods is not None:
            return schedule[:periods]
        return schedule

    def preview_payment(self, loan_id: str, amount: Money) -> PaymentPreview:
        return self.get_ledger(loan_id).preview_payment(amount)

    def summary(self, loan_id: str) -> LoanSummary:
        return self.get_ledger(loan_id).summary()

    # -- mutations -------------------------------------------------------

    def record_payment(
        self,
        loan_id: str,
        amount: Money,
        paid_date: Optional[date] = None,
        mode: PaymentMode = PaymentMode.CASH,
        note: str = ""
    ) -> PaymentReceipt:
        """Record a regular payment; paid_date defaults to the clock's today"""
        paid_date = paid_date or self.clock.today()
        with self._logged("record_payment", loan_id), self.store.lock(loan_id):
            ledger = self.store.load_ledger(loan_id)
            updated, record = ledger.apply_payment(amount, paid_date, mode, note)
            self.store.append_payment(loan_id, record, expected_count=ledger.payment_count)

        receipt = PaymentReceipt(loan_id, record, updated.state)
        log_action(self.logger, "info", "Payment recorded", loan_id=loan_id, action="record_payment",
                   resource="payment", extra={"amount": amount.minor, "balance": receipt.state.balance.minor})
        self._publish(LedgerEvent.PAYMENT_RECORDED, loan_id, receipt.to_dict())
        if receipt.state.is_closed:
            self._publish(LedgerEvent.LOAN_SETTLED, loan_id, receipt.to_dict())
        return receipt

    def undo_last_payment(self, loan_id: str) -> PaymentReceipt:
        """Remove the most recently inserted payment"""
        with self._logged("undo_last_payment", loan_id), self.store.lock(loan_id):
            ledger = self.store.load_ledger(loan_id)
            updated, record = ledger.undo_last_payment()
            self.store.remove_last_payment(loan_id, expected_count=ledger.payment_count)

        receipt = PaymentReceipt(loan_id, record, updated.state)
        log_action(self.logger, "info", "Payment undone", loan_id=loan_id, action="undo_last_payment",
                   resource="payment", extra={"payment_id": record.id, "amount": record.amount.minor})
        self._publish(LedgerEvent.PAYMENT_UNDONE, loan_id, receipt.to_dict())
        return receipt

    def settle(
        self,
        loan_id: str,
        amount: Optional[Money] = None,
        paid_date: Optional[date] = None,
        mode: PaymentMode = PaymentMode.CASH,
        note: str = ""
    ) -> PaymentReceipt:
        """Close an interest-only loan; amount defaults to the outstanding principal"""
        paid_date = paid_date or self.clock.today()
        with self._logged("settle", loan_id), self.store.lock(loan_id):
            ledger = self.store.load_ledger(loan_id)
            updated, record = ledger.settle(ledger.balance if amount is None else amount, paid_date, mode, note)
            self.store.append_payment(loan_id, record, expected_count=ledger.payment_count)

        receipt = PaymentReceipt(loan_id, record, updated.state)
        log_action(self.logger, "info", "Loan settled", loan_id=loan_id, action="settle",
                   resource="loan", extra={"amount": record.amount.minor})
        self._publish(LedgerEvent.LOAN_SETTLED, loan_id, receipt.to_dict())
        return receipt

    def quote_foreclosure(
        self,
        loan_id: str,
        penalty_percent: Optional[Union[Decimal, int]] = None
    ) -> ForeclosureQuote:
        if penalty_percent is None:
            penalty_percent = self.config.default_foreclosure_penalty_percent
        with self._logged("quote_foreclosure", loan_id):
            return foreclose_quote(self.get_ledger(loan_id), penalty_percent)

    def commit_foreclosure(
        self,
        loan_id: str,
        penalty_percent: Optional[Union[Decimal, int]] = None,
        paid_date: Optional[date] = None,
        mode: PaymentMode = PaymentMode.CASH,
        note: str = ""
    ) -> Tuple[PaymentReceipt, ForeclosureQuote]:
        """Quote and commit an early payoff against the current balance"""
        if penalty_percent is None:
            penalty_percent = self.config.default_foreclosure_penalty_percent
        paid_date = paid_date or self.clock.today()
        with self._logged("commit_foreclosure", loan_id), self.store.lock(loan_id):
            ledger = self.store.load_ledger(loan_id)
            quote = foreclose_quote(ledger, penalty_percent)
            updated, record = ledger.foreclose(quote, paid_date, mode, note)
            self.store.append_payment(loan_id, record, expected_count=ledger.payment_count)

        receipt = PaymentReceipt(loan_id, record, updated.state)
        log_action(self.logger, "info", "Loan foreclosed", loan_id=loan_id, action="commit_foreclosure",
                   resource="loan", extra=quote.to_dict())
        self._publish(LedgerEvent.LOAN_FORECLOSED, loan_id, {**receipt.to_dict(), "quote": quote.to_dict()})
        return receipt, quote

    def mark_defaulted(self, loan_id: str, defaulted: bool = True) -> LedgerState:
        """Record the caller's default decision; the engine never derives it"""
        with self._logged("mark_defaulted", loan_id), self.store.lock(loan_id):
            self.store.set_defaulted(loan_id, defaulted)
            state = self.store.load_ledger(loan_id).state

        log_action(self.logger, "warning" if defaulted else "info", "Default flag changed",
                   loan_id=loan_id, action="mark_defaulted", resource="loan",
                   extra={"defaulted": defaulted})
        if defaulted:
            self._publish(LedgerEvent.LOAN_DEFAULTED, loan_id, {"state": state.to_dict()})
        return state

    # -- overdue ---------------------------------------------------------

    def classify_overdue(self, loan_id: str, as_of: Optional[date] = None) -> OverdueReport:
        as_of = as_of or self.clock.today()
        ledger = self.get_ledger(loan_id)
        return classify(ledger, generate_schedule(ledger.plan), as_of)

    def overdue_loans(self, as_of: Optional[date] = None) -> List[OverdueReport]:
        """Overdue reports of all open loans, oldest unpaid obligation first"""
        as_of = as_of or self.clock.today()
        reports = []
        for loan_id in self.store.list_loan_ids():
            ledger = self.get_ledger(loan_id)
            if ledger.is_closed:
                continue
            report = classify(ledger, generate_schedule(ledger.plan), as_of)
            if report.is_overdue:
                reports.append(report)
        reports.sort(key=lambda report: (-report.days_overdue, report.loan_id))
        return reports

    def collections_due(self, start: Optional[date] = None, end: Optional[date] = None) -> List[DueCollection]:
        """
        Unpaid periods of open loans falling due in a window

        Both bounds default to the clock's today, giving the day's round.
        Loans with nothing due in the window are left out; the rest come
        earliest due date first.
        """
        start = start or self.clock.today()
        end = end or start
        collections = []
        for loan_id in self.store.list_loan_ids():
            ledger = self.get_ledger(loan_id)
            if ledger.is_closed:
                continue
            collection = due_between(ledger, generate_schedule(ledger.plan), start, end)
            if collection.entries:
                collections.append(collection)
        collections.sort(key=lambda collection: (collection.earliest_due, collection.loan_id))
        return collections

    # -- helpers ---------------------------------------------------------

    @contextmanager
    def _logged(self, action: str, loan_id: str) -> Iterator[None]:
        try:
            yield
        except LedgerError as e:
            log_action(self.logger, "warning", f"{action} rejected: {e.message}", loan_id=loan_id,
                       action=action, resource="loan", extra=e.to_dict())
            raise

    def _publish(self, event_type: LedgerEvent, loan_id: str, data: Dict[str, Any]) -> None:
        self.dispatcher.publish(EventPayload(event_type=event_type, loan_id=loan_id, data=data))
