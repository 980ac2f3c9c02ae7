"""
Integration Tests for the callback reconciliation task
"""

import json

import pytest
from sqlalchemy.exc import OperationalError
from unittest.mock import patch

from stkpay.models import CallbackEvent
from stkpay.providers.base import PaymentRequest
from stkpay.services.reconciliation_store import ReconciliationStore
from stkpay.tasks.reconcile_callbacks_task import reconcile_unmatched_callbacks


def _register(db, checkout_request_id='ws_CO_191220191020363925'):
    return ReconciliationStore(db.session).register_pending('ORDER-1', PaymentRequest(
        merchant_request_id='29115-34620561-1',
        checkout_request_id=checkout_request_id,
        phone_number='254712345678',
        amount=100,
        account_reference='ORDER-1',
        description='Order ORDER-1'
    ))


@pytest.mark.usefixtures('db')
class TestReconcileUnmatchedCallbacks:

    def test_callback_that_overtook_registration(self, client, db, stk_callback):
        client.post('/api/v1/mpesa/callback', data=json.dumps(stk_callback(0, receipt='ABC123')),
                    content_type='application/json')
        assert CallbackEvent.query.one().outcome == 'unmatched'

        payment = _register(db)
        matched = reconcile_unmatched_callbacks.run()

        assert matched == 1
        db.session.refresh(payment)
        assert payment.status == 'paid'
        assert payment.payment_details['receipt_number'] == 'ABC123'
        event = CallbackEvent.query.one()
        assert event.outcome == 'applied'
        assert event.order_payment_id == payment.id

    def test_callback_that_hit_a_store_error(self, client, db, stk_callback):
        payment = _register(db)
        deadlock = OperationalError('UPDATE order_payments', {}, Exception('database is locked'))

        with patch.object(ReconciliationStore, 'apply_result', side_effect=deadlock):
            response = client.post('/api/v1/mpesa/callback', data=json.dumps(stk_callback(0, receipt='ABC123')),
                                   content_type='application/json')

        assert response.status_code == 200
        assert CallbackEvent.query.one().outcome == 'error'

        assert reconcile_unmatched_callbacks.run() == 1

        db.session.refresh(payment)
        assert payment.status == 'paid'
        assert CallbackEvent.query.one().outcome == 'applied'

    def test_gives_up_after_max_attempts(self, client, db, stk_callback):
        client.post('/api/v1/mpesa/callback', data=json.dumps(stk_callback(0)),
                    content_type='application/json')

        for _ in range(3):
            assert reconcile_unmatched_callbacks.run(max_attempts=2) == 0

        assert CallbackEvent.query.one().retry_count == 2

    def test_nothing_to_do(self):
        assert reconcile_unmatched_callbacks.run() == 0

    def test_runs_eagerly_through_celery(self):
        assert reconcile_unmatched_callbacks.delay().get() == 0
