"""
Tests for the Event System (Observer Pattern)
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

from loan_ledger.events import EventDispatcher, EventPayload, LedgerEvent


@pytest.fixture
def dispatcher():
    return EventDispatcher()


def payment_event(loan_id="loan-1"):
    return EventPayload(
        event_type=LedgerEvent.PAYMENT_RECORDED,
        loan_id=loan_id,
        data={"payment": {"amount": 100000}, "state": {"balance": 900000}}
    )


class TestEventPayload:
    """Test EventPayload creation and serialization"""

    def test_event_payload_creation(self):
        event = payment_event()

        assert event.event_type == LedgerEvent.PAYMENT_RECORDED
        assert event.loan_id == "loan-1"
        assert isinstance(event.timestamp, datetime)
        assert len(event.event_id) > 0

    def test_event_payload_serialization(self):
        data = payment_event().to_dict()

        assert data['event_type'] == "loan.payment_recorded"
        assert data['loan_id'] == "loan-1"
        assert data['data']['state']['balance'] == 900000
        assert "timestamp" in data


class TestEventDispatcher:
    """Test publish/subscribe behaviour"""

    def test_subscribe_and_publish(self, dispatcher):
        handler = Mock()
        dispatcher.subscribe(LedgerEvent.PAYMENT_RECORDED, handler)

        event = payment_event()
        dispatcher.publish(event)

        handler.assert_called_once_with(event)

    def test_other_events_not_delivered(self, dispatcher):
        handler = Mock()
        dispatcher.subscribe(LedgerEvent.LOAN_SETTLED, handler)

        dispatcher.publish(payment_event())

        handler.assert_not_called()

    def test_global_handler_receives_everything(self, dispatcher):
        handler = Mock()
        dispatcher.subscribe_all(handler)

        dispatcher.publish(payment_event())
        dispatcher.publish(EventPayload(LedgerEvent.LOAN_DEFAULTED, "loan-2", {}))

        assert handler.call_count == 2

    def test_unsubscribe(self, dispatcher):
        handler = Mock()
        dispatcher.subscribe(LedgerEvent.PAYMENT_RECORDED, handler)
        dispatcher.unsubscribe(LedgerEvent.PAYMENT_RECORDED, handler)

        dispatcher.publish(payment_event())

        handler.assert_not_called()

    def test_unsubscribe_unknown_handler(self, dispatcher):
        """Test removing a handler that was never added is harmless"""
        dispatcher.unsubscribe(LedgerEvent.PAYMENT_RECORDED, Mock())
        assert dispatcher.get_handler_count() == 0

    def test_failing_handler_does_not_stop_others(self, dispatcher):
        """Test a receipt printer error never blocks other subscribers"""
        failing = Mock(side_effect=RuntimeError("printer offline"))
        working = Mock()
        dispatcher.subscribe(LedgerEvent.PAYMENT_RECORDED, failing)
        dispatcher.subscribe(LedgerEvent.PAYMENT_RECORDED, working)

        dispatcher.publish(payment_event())

        failing.assert_called_once()
        working.assert_called_once()

    def test_handler_counts_and_clear(self, dispatcher):
        dispatcher.subscribe(LedgerEvent.PAYMENT_RECORDED, Mock())
        dispatcher.subscribe(LedgerEvent.LOAN_SETTLED, Mock())
        dispatcher.subscribe_all(Mock())

        assert dispatcher.get_handler_count(LedgerEvent.PAYMENT_RECORDED) == 1
        assert dispatcher.get_handler_count() == 3

        dispatcher.clear()
        assert dispatcher.get_handler_count() == 0
