"""
Test suite for overdue module
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.money import Money
from loan_ledger.plans import LoanKind, TermParams, derive_plan
from loan_ledger.schedule import generate_schedule
from loan_ledger.ledger import Ledger, PeriodStatus
from loan_ledger.overdue import DelinquencyStatus, classify, due_between, exceeds_threshold

GIVEN = date(2024, 1, 1)
THOUSAND = Money.from_major(1000)


@pytest.fixture
def weekly_ledger():
    params = TermParams(given_date=GIVEN, anchor_date=date(2024, 1, 7))
    plan = derive_plan(Money.from_major(10000), LoanKind.WEEKLY_INSTALLMENT, params)
    return Ledger(plan=plan, loan_id="weekly-1")


@pytest.fixture
def interest_ledger():
    params = TermParams(given_date=GIVEN, anchor_date=date(2024, 2, 1), rate_percent=Decimal("2"))
    plan = derive_plan(Money.from_major(10000), LoanKind.INTEREST_ONLY, params)
    return Ledger(plan=plan, loan_id="vaddi-1")


def pay(ledger, amount, times=1):
    for _ in range(times):
        ledger, _record = ledger.apply_payment(amount, date(2024, 1, 7))
    return ledger


class TestClassifyFixedTerm:
    """Test overdue classification of installment loans"""

    def test_thirty_days_past_period_three(self, weekly_ledger):
        """Test period 3 unpaid 30 days after its due date"""
        ledger = pay(weekly_ledger, THOUSAND, times=3)
        schedule = generate_schedule(ledger.plan)
        as_of = date(2024, 2, 27)  # period 3 fell due on 2024-01-28

        report = classify(ledger, schedule, as_of)

        assert report.overdue[0].index == 3
        assert report.overdue[0].due_date == date(2024, 1, 28)
        assert report.days_overdue == 30
        assert [entry.index for entry in report.overdue] == [3, 4, 5, 6, 7]
        assert report.missed_count == 5
        assert report.overdue_amount == Money.from_major(5000)
        assert report.next_due.index == 8
        assert report.delinquency is DelinquencyStatus.EARLY
        assert report.is_overdue

    def test_period_labels(self, weekly_ledger):
        ledger = pay(weekly_ledger, THOUSAND, times=3)
        report = classify(ledger, generate_schedule(ledger.plan), date(2024, 2, 27))
        labels = report.period_labels

        assert labels[3] is PeriodStatus.OVERDUE
        assert labels[8] is PeriodStatus.UPCOMING
        assert 0 not in labels

    def test_due_today_is_upcoming(self, weekly_ledger):
        schedule = generate_schedule(weekly_ledger.plan)
        report = classify(weekly_ledger, schedule, date(2024, 1, 7))

        assert not report.is_overdue
        assert report.days_overdue == 0
        assert report.next_due.index == 0
        assert len(report.upcoming) == 10
        assert report.delinquency is DelinquencyStatus.CURRENT

    def test_settled_loan_has_nothing_due(self, weekly_ledger):
        ledger = pay(weekly_ledger, Money.from_major(10000))
        report = classify(ledger, generate_schedule(ledger.plan), date(2025, 1, 1))

        assert report.overdue == ()
        assert report.upcoming == ()
        assert report.next_due is None

    def test_to_dict(self, weekly_ledger):
        report = classify(weekly_ledger, generate_schedule(weekly_ledger.plan), date(2024, 1, 10))
        data = report.to_dict()

        assert data['as_of'] == "2024-01-10"
        assert data['missed_count'] == 1
        assert data['overdue_amount'] == 100000
        assert data['delinquency'] == "early"


class TestClassifyInterestOnly:
    """Test classification of the unbounded interest schedule"""

    def test_unpaid_interest_months(self, interest_ledger):
        report = classify(interest_ledger, generate_schedule(interest_ledger.plan), date(2024, 4, 15))

        assert [entry.index for entry in report.overdue] == [0, 1, 2]
        assert report.days_overdue == 74
        assert report.delinquency is DelinquencyStatus.SERIOUS
        assert report.next_due.due_date == date(2024, 5, 1)

    def test_interest_paid_ahead(self, interest_ledger):
        """Test next due skips months already paid in advance"""
        ledger = pay(interest_ledger, Money.from_major(200), times=5)
        report = classify(ledger, generate_schedule(ledger.plan), date(2024, 3, 15))

        assert not report.is_overdue
        assert report.next_due.index == 5
        assert report.next_due.due_date == date(2024, 7, 1)

    def test_zero_rate_loan_never_falls_overdue(self):
        """Test a 0% vaddi loan with nothing paid owes nothing month after month"""
        params = TermParams(given_date=GIVEN, anchor_date=date(2024, 2, 1), rate_percent=Decimal("0"))
        ledger = Ledger(plan=derive_plan(Money.from_major(10000), LoanKind.INTEREST_ONLY, params), loan_id="vaddi-0")
        report = classify(ledger, generate_schedule(ledger.plan), date(2024, 12, 1))

        assert report.missed_count == 0
        assert report.days_overdue == 0
        assert report.overdue_amount.is_zero()
        assert report.delinquency is DelinquencyStatus.CURRENT
        assert not report.is_overdue


class TestDelinquency:

    @pytest.mark.parametrize("days,status", [
        (0, DelinquencyStatus.CURRENT),
        (1, DelinquencyStatus.EARLY),
        (30, DelinquencyStatus.EARLY),
        (31, DelinquencyStatus.LATE),
        (60, DelinquencyStatus.LATE),
        (90, DelinquencyStatus.SERIOUS),
        (91, DelinquencyStatus.DEFAULT),
    ])
    def test_buckets(self, days, status):
        assert DelinquencyStatus.for_days(days) is status

    def test_exceeds_threshold(self, weekly_ledger):
        ledger = pay(weekly_ledger, THOUSAND, times=3)
        report = classify(ledger, generate_schedule(ledger.plan), date(2024, 2, 27))

        assert exceeds_threshold(report, 29)
        assert not exceeds_threshold(report, 30)


class TestDueBetween:
    """Test the collection window query"""

    def test_sunday_round(self, weekly_ledger):
        ledger = pay(weekly_ledger, THOUSAND, times=2)
        collection = due_between(ledger, generate_schedule(ledger.plan), date(2024, 1, 21), date(2024, 1, 21))

        assert [entry.index for entry in collection.entries] == [2]
        assert collection.amount_due == THOUSAND
        assert collection.earliest_due == date(2024, 1, 21)

    def test_paid_ahead_periods_skipped(self, weekly_ledger):
        ledger = pay(weekly_ledger, THOUSAND, times=4)
        collection = due_between(ledger, generate_schedule(ledger.plan), date(2024, 1, 7), date(2024, 2, 10))

        assert [entry.index for entry in collection.entries] == [4]

    def test_week_of_interest_months(self, interest_ledger):
        """Test the open interest schedule is walked up to the end of the window"""
        collection = due_between(interest_ledger, generate_schedule(interest_ledger.plan),
                                 date(2024, 2, 26), date(2024, 3, 3))

        assert [entry.due_date for entry in collection.entries] == [date(2024, 3, 1)]
        assert collection.amount_due == Money.from_major(200)

    def test_zero_rate_loan_has_nothing_to_collect(self):
        params = TermParams(given_date=GIVEN, anchor_date=date(2024, 2, 1), rate_percent=Decimal("0"))
        ledger = Ledger(plan=derive_plan(Money.from_major(10000), LoanKind.INTEREST_ONLY, params), loan_id="vaddi-0")
        collection = due_between(ledger, generate_schedule(ledger.plan), date(2024, 2, 1), date(2024, 12, 31))

        assert collection.entries == ()

    def test_closed_loan_has_nothing_to_collect(self, weekly_ledger):
        ledger = pay(weekly_ledger, Money.from_major(10000))
        collection = due_between(ledger, generate_schedule(ledger.plan), date(2024, 1, 1), date(2024, 12, 31))

        assert collection.entries == ()
        assert collection.amount_due.is_zero()

    def test_inverted_window(self, weekly_ledger):
        with pytest.raises(ValueError):
            due_between(weekly_ledger, generate_schedule(weekly_ledger.plan), date(2024, 2, 1), date(2024, 1, 1))

    def test_to_dict(self, weekly_ledger):
        data = due_between(weekly_ledger, generate_schedule(weekly_ledger.plan),
                           date(2024, 1, 7), date(2024, 1, 14)).to_dict()

        assert data['loan_id'] == "weekly-1"
        assert data['kind'] == "weekly_installment"
        assert data['amount_due'] == 200000
        assert [entry['index'] for entry in data['entries']] == [0, 1]
