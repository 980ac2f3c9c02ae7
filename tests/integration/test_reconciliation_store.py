"""
Integration Tests for the Reconciliation Store (SQLAlchemy on SQLite)
"""

import threading

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from stkpay.extensions import db as _db
from stkpay.models import CallbackEvent, CallbackOutcome, OrderPayment
from stkpay.providers.base import PaymentRequest, PaymentResult
from stkpay.services.reconciliation_store import ReconciliationStore


def _payment_request(checkout_request_id='ws_CO_1', merchant_request_id='m-1'):
    return PaymentRequest(
        merchant_request_id=merchant_request_id,
        checkout_request_id=checkout_request_id,
        phone_number='254712345678',
        amount=100,
        account_reference='ORDER-1',
        description='Order ORDER-1'
    )


def _result(result_code=0, checkout_request_id='ws_CO_1', receipt='ABC123'):
    return PaymentResult(
        merchant_request_id='m-1',
        checkout_request_id=checkout_request_id,
        result_code=result_code,
        result_description='ok' if result_code == 0 else 'Request cancelled by user',
        receipt_number=receipt if result_code == 0 else None,
        transaction_amount=100 if result_code == 0 else None
    )


@pytest.fixture
def store(db):
    return ReconciliationStore(db.session)


class TestOrderPayments:

    def test_register_pending(self, store):
        payment = store.register_pending('ORDER-1', _payment_request())

        assert payment.id is not None
        assert payment.status == 'pending'
        assert payment.payment_status == 'pending'
        assert payment.amount == 100
        assert store.find_by_checkout_request_id('ws_CO_1') is payment

    def test_register_same_checkout_id_keeps_first_row(self, store, db):
        first = store.register_pending('ORDER-1', _payment_request())
        second = store.register_pending('ORDER-2', _payment_request())

        assert second.id == first.id
        assert second.order_id == 'ORDER-1'
        assert db.session.query(OrderPayment).count() == 1

    def test_find_for_callback_falls_back_to_merchant_id(self, store):
        payment = store.register_pending('ORDER-1', _payment_request())

        assert store.find_for_callback('ws_CO_other', 'm-1') is payment
        assert store.find_for_callback('ws_CO_other', None) is None
        assert store.find_for_callback(None, None) is None

    def test_apply_result_is_compare_and_set(self, store):
        payment = store.register_pending('ORDER-1', _payment_request())

        assert store.apply_result(payment, _result(0)) is True
        assert store.apply_result(payment, _result(1032)) is False

        assert payment.status == 'paid'
        assert payment.payment_status == 'completed'
        assert payment.payment_details['receipt_number'] == 'ABC123'
        assert payment.payment_details['reconciled_at']
        assert payment.reconciled_at is not None

    def test_apply_failure(self, store):
        payment = store.register_pending('ORDER-1', _payment_request())

        assert store.apply_result(payment, _result(1032)) is True

        assert payment.status == 'payment_failed'
        assert payment.payment_status == 'failed'
        assert payment.is_terminal

    def test_has_paid_attempt(self, store):
        payment = store.register_pending('ORDER-1', _payment_request())
        assert store.has_paid_attempt('ORDER-1') is False

        store.apply_result(payment, _result(0))

        assert store.has_paid_attempt('ORDER-1') is True
        assert store.has_paid_attempt('ORDER-2') is False


class TestConcurrentWriters:
    """Two sessions on one file-backed SQLite database, both holding the row as pending."""

    @pytest.fixture
    def session_factory(self, tmp_path, app):
        engine = create_engine(f'sqlite:///{tmp_path / "race.db"}', connect_args={'timeout': 15})
        _db.metadata.create_all(engine)

        yield sessionmaker(bind=engine, expire_on_commit=False)

        engine.dispose()

    def test_single_winner_across_sessions(self, session_factory):
        setup = session_factory()
        ReconciliationStore(setup).register_pending('ORDER-1', _payment_request())
        setup.close()

        barrier = threading.Barrier(2, timeout=5)
        outcomes = {}
        errors = []

        def writer(result_code):
            session = session_factory()
            try:
                store = ReconciliationStore(session)
                payment = store.find_by_checkout_request_id('ws_CO_1')
                assert payment.payment_status == 'pending'
                barrier.wait()
                applied = store.apply_result(payment, _result(result_code))
                outcomes[result_code] = (applied, payment.status)
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=writer, args=(code,)) for code in (0, 1032)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        winners = [code for code, (applied, _) in outcomes.items() if applied]
        assert len(winners) == 1

        check = session_factory()
        stored = check.execute(select(OrderPayment).filter_by(checkout_request_id='ws_CO_1')).scalar_one()
        expected = 'paid' if winners[0] == 0 else 'payment_failed'
        assert stored.status == expected
        assert outcomes[0][1] == outcomes[1032][1] == expected
        check.close()


class TestCallbackEvents:

    def test_record_and_mark(self, store, stk_callback):
        payment = store.register_pending('ORDER-1', _payment_request(
            checkout_request_id='ws_CO_191220191020363925', merchant_request_id='29115-34620561-1'
        ))
        event = store.record_callback(stk_callback(0))

        assert event.outcome == CallbackOutcome.RECEIVED.value
        assert event.checkout_request_id == 'ws_CO_191220191020363925'
        assert event.result_code == 0

        store.mark_callback(event, CallbackOutcome.APPLIED, payment=payment)

        assert event.outcome == 'applied'
        assert event.order_payment_id == payment.id
        assert event.processed_at is not None
        assert payment.callback_events.count() == 1

    def test_record_malformed_payload(self, store):
        event = store.record_callback(None)

        assert event.payload == {}
        assert event.checkout_request_id is None
        assert event.result_code is None

    def test_retryable_callbacks_respects_retry_count(self, store, stk_callback):
        event = store.record_callback(stk_callback(0))
        store.mark_callback(event, CallbackOutcome.UNMATCHED)

        assert store.retryable_callbacks(max_attempts=1) == [event]

        store.mark_callback(event, CallbackOutcome.UNMATCHED, count_retry=True)

        assert event.retry_count == 1
        assert store.retryable_callbacks(max_attempts=1) == []

    def test_statistics(self, store, stk_callback):
        payment = store.register_pending('ORDER-1', _payment_request())
        store.register_pending('ORDER-2', _payment_request('ws_CO_2', 'm-2'))
        store.apply_result(payment, _result(0))
        store.mark_callback(store.record_callback(stk_callback(0)), CallbackOutcome.DUPLICATE)

        stats = store.statistics()

        assert stats['payments'] == {'paid': 1, 'pending': 1}
        assert stats['callbacks'] == {'duplicate': 1}

    def test_to_dict(self, store, db, stk_callback):
        event = store.record_callback(stk_callback(1032))
        data = event.to_dict()

        assert data['result_code'] == 1032
        assert data['outcome'] == 'received'
        assert db.session.get(CallbackEvent, event.id) is event
