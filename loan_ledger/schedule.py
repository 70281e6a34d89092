"""
Schedule Generator Module

Produces the due-date schedule of a loan plan. Schedules are pure functions of
the plan: the same plan always yields the same entries, and this module is the
single answer to "when is period k due".
"""

from datetime import date
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union
from itertools import count, islice, takewhile

from .money import Money
from .periods import add_days, add_weeks, add_months
from .plans import LoanPlan, LoanKind


@dataclass(frozen=True)
class ScheduleEntry:
    """Single due period of a schedule"""
    index: int              # 0-based period number
    due_date: date
    due_amount: Money

    def to_dict(self):
        return {
            'index': self.index,
            'due_date': self.due_date.isoformat(),
            'due_amount': self.due_amount.minor,
        }


def due_date_for(plan: LoanPlan, index: int) -> date:
    """Due date of period `index`, always stepped from the anchor"""
    if index < 0:
        raise ValueError("Period index cannot be negative")

    if plan.kind is LoanKind.WEEKLY_INSTALLMENT:
        return add_weeks(plan.anchor_date, index)
    elif plan.kind is LoanKind.DAILY_INSTALLMENT:
        return add_days(plan.anchor_date, index)
    elif plan.kind in (LoanKind.MONTHLY_INSTALLMENT, LoanKind.AMORTIZED_TERM, LoanKind.INTEREST_ONLY):
        # Stepping from the anchor (not the previous date) keeps day 31 from drifting to 28
        return add_months(plan.anchor_date, index)
    else:
        raise ValueError(f"Unsupported loan kind: {plan.kind}")


class InterestSchedule:
    """
    Unbounded monthly schedule of an interest-only loan.

    Entries are produced on demand; every iteration restarts from period 0.
    """

    def __init__(self, plan: LoanPlan):
        if plan.kind is not LoanKind.INTEREST_ONLY:
            raise ValueError("InterestSchedule only applies to interest-only plans")
        self.plan = plan

    def entry(self, index: int) -> ScheduleEntry:
        return ScheduleEntry(index, due_date_for(self.plan, index), self.plan.periodic_amount)

    def __iter__(self) -> Iterator[ScheduleEntry]:
        return (self.entry(index) for index in count())

    def take(self, n: int) -> Tuple[ScheduleEntry, ...]:
        """First n entries"""
        return tuple(islice(self, n))

    def up_to(self, as_of: date) -> Tuple[ScheduleEntry, ...]:
        """Entries already due on or before as_of"""
        return tuple(takewhile(lambda entry: entry.due_date <= as_of, self))

    def next_due(self, as_of: date) -> ScheduleEntry:
        """First entry due on or after as_of"""
        for entry in self:
            if entry.due_date >= as_of:
                return entry

    def __eq__(self, other) -> bool:
        return isinstance(other, InterestSchedule) and self.plan == other.plan

    def __repr__(self) -> str:
        return f"InterestSchedule(anchor={self.plan.anchor_date.isoformat()}, amount={self.plan.periodic_amount})"


Schedule = Union[Tuple[ScheduleEntry, ...], InterestSchedule]


def generate_schedule(plan: LoanPlan) -> Schedule:
    """
    Generate the schedule of a plan

    Args:
        plan: Loan plan

    Returns:
        Tuple of entries for fixed-term plans (the final entry carries the
        remainder so the schedule sums to total_payable); an InterestSchedule
        for interest-only plans
    """
    if plan.kind is LoanKind.INTEREST_ONLY:
        return InterestSchedule(plan)

    last_index = plan.period_count - 1
    entries = []
    for index in range(plan.period_count):
        amount = plan.final_amount if index == last_index else plan.periodic_amount
        entries.append(ScheduleEntry(index, due_date_for(plan, index), amount))
    return tuple(entries)


def maturity_date(plan: LoanPlan) -> Optional[date]:
    """Due date of the final period; None for open-ended plans"""
    if plan.period_count is None:
        return None
    return due_date_for(plan, plan.period_count - 1)


def materialize(schedule: Schedule, as_of: date) -> Tuple[ScheduleEntry, ...]:
    """Finite view of a schedule: all of a fixed schedule, due entries of an open one"""
    if isinstance(schedule, InterestSchedule):
        return schedule.up_to(as_of)
    return tuple(schedule)
