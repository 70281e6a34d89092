"""
Overdue Classifier Module

Walks a ledger's period projection against an as-of date and buckets unpaid
periods into overdue and upcoming. Purely a read; marking a loan defaulted is
the caller's decision.
"""

from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from enum import Enum

from .money import Money
from .periods import days_between
from .schedule import InterestSchedule, Schedule, ScheduleEntry, materialize
from .ledger import Ledger, PeriodStatus


class DelinquencyStatus(Enum):
    """Delinquency status categories"""
    CURRENT = "current"                 # 0 days past due
    EARLY = "early"                     # 1-30 days past due
    LATE = "late"                       # 31-60 days past due
    SERIOUS = "serious"                 # 61-90 days past due
    DEFAULT = "default"                 # 90+ days past due

    @classmethod
    def for_days(cls, days_past_due: int) -> 'DelinquencyStatus':
        """Determine delinquency status based on days past due"""
        if days_past_due <= 0:
            return cls.CURRENT
        elif days_past_due <= 30:
            return cls.EARLY
        elif days_past_due <= 60:
            return cls.LATE
        elif days_past_due <= 90:
            return cls.SERIOUS
        else:
            return cls.DEFAULT


@dataclass(frozen=True)
class OverdueReport:
    """Overdue and upcoming periods of one loan as of a date"""
    loan_id: str
    as_of: date
    overdue: Tuple[ScheduleEntry, ...]
    upcoming: Tuple[ScheduleEntry, ...]
    overdue_amount: Money
    days_overdue: int           # age of the oldest unpaid period
    missed_count: int
    next_due: Optional[ScheduleEntry] = None
    delinquency: DelinquencyStatus = field(default=DelinquencyStatus.CURRENT)

    @property
    def is_overdue(self) -> bool:
        return self.missed_count > 0

    @property
    def period_labels(self) -> Dict[int, PeriodStatus]:
        """OVERDUE/UPCOMING label of every unpaid period in the report"""
        labels = {entry.index: PeriodStatus.OVERDUE for entry in self.overdue}
        labels.update({entry.index: PeriodStatus.UPCOMING for entry in self.upcoming})
        return labels

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'as_of': self.as_of.isoformat(),
            'overdue': [entry.to_dict() for entry in self.overdue],
            'upcoming': [entry.to_dict() for entry in self.upcoming],
            'overdue_amount': self.overdue_amount.minor,
            'days_overdue': self.days_overdue,
            'missed_count': self.missed_count,
            'next_due': self.next_due.to_dict() if self.next_due else None,
            'delinquency': self.delinquency.value,
        }


def classify(ledger: Ledger, schedule: Schedule, as_of_date: date) -> OverdueReport:
    """
    Classify the unpaid periods of a loan

    An unpaid period is overdue when its due date is before as_of_date and
    upcoming otherwise. Interest-only schedules are only walked up to
    as_of_date.

    Args:
        ledger: Ledger of the loan
        schedule: Schedule generated from ledger.plan
        as_of_date: Date to classify against (from the injected clock)

    Returns:
        OverdueReport
    """
    entries = materialize(schedule, as_of_date)
    projection = ledger.project(entries)

    overdue = []
    upcoming = []
    for entry in entries:
        if projection[entry.index] is PeriodStatus.PAID:
            continue
        if entry.due_date < as_of_date:
            overdue.append(entry)
        else:
            upcoming.append(entry)

    if upcoming:
        next_due = upcoming[0]
    elif isinstance(schedule, InterestSchedule) and not ledger.is_closed:
        # Interest may have been paid ahead of the calendar
        first_open = schedule.next_due(as_of_date).index
        next_due = schedule.entry(max(first_open, ledger.periods_settled))
    else:
        next_due = None

    days_overdue = days_between(overdue[0].due_date, as_of_date) if overdue else 0

    return OverdueReport(
        loan_id=ledger.loan_id,
        as_of=as_of_date,
        overdue=tuple(overdue),
        upcoming=tuple(upcoming),
        overdue_amount=sum((entry.due_amount for entry in overdue), Money.zero()),
        days_overdue=days_overdue,
        missed_count=len(overdue),
        next_due=next_due,
        delinquency=DelinquencyStatus.for_days(days_overdue),
    )


def exceeds_threshold(report: OverdueReport, days: int) -> bool:
    """Whether the oldest unpaid period is older than `days`; input to a default policy"""
    return report.days_overdue > days


@dataclass(frozen=True)
class DueCollection:
    """Unpaid periods of one loan falling due inside a collection window"""
    loan_id: str
    kind: str
    entries: Tuple[ScheduleEntry, ...]

    @property
    def amount_due(self) -> Money:
        return sum((entry.due_amount for entry in self.entries), Money.zero())

    @property
    def earliest_due(self) -> Optional[date]:
        return self.entries[0].due_date if self.entries else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'kind': self.kind,
            'entries': [entry.to_dict() for entry in self.entries],
            'amount_due': self.amount_due.minor,
        }


def due_between(ledger: Ledger, schedule: Schedule, start: date, end: date) -> DueCollection:
    """
    Unpaid periods due between start and end, both inclusive

    Feeds the collector's round for a day or a week. Periods paid ahead are
    left out, as is anything on a closed loan.
    """
    if end < start:
        raise ValueError("Collection window ends before it starts")

    entries = materialize(schedule, end)
    projection = ledger.project(entries)
    window = tuple(
        entry for entry in entries
        if start <= entry.due_date <= end and projection[entry.index] is not PeriodStatus.PAID
    )
    return DueCollection(loan_id=ledger.loan_id, kind=ledger.plan.kind.value, entries=window)
