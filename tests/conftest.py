"""
Pytest Configuration and Fixtures
"""
import threading
import uuid
from datetime import datetime
from unittest.mock import Mock, patch

import fakeredis
import pytest
from flask_jwt_extended import create_access_token

from stkpay import create_app
from stkpay.extensions import db as _db, redis_client as _redis_client
from stkpay.models import CallbackOutcome, PaymentState, PaymentStatus, TERMINAL_STATES
from stkpay.providers.base import PaymentRequest

CHECKOUT_ID = 'ws_CO_191220191020363925'
MERCHANT_ID = '29115-34620561-1'


@pytest.fixture(scope='session')
def app():
    """Create application for testing"""
    app = create_app('testing')

    # Establish application context
    ctx = app.app_context()
    ctx.push()

    yield app

    ctx.pop()


@pytest.fixture(scope='function')
def db(app):
    """Fresh schema per test"""
    _db.create_all()

    yield _db

    _db.session.remove()
    _db.drop_all()


@pytest.fixture(scope='function', autouse=True)
def redis_client():
    """
    Fake Redis for tests, swapped in behind the app redis client.
    """
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    original = _redis_client.client
    _redis_client.client = fake_redis

    yield fake_redis

    fake_redis.flushall()
    _redis_client.client = original


@pytest.fixture(scope='function')
def client(app):
    """Create a test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def auth_headers(app):
    token = create_access_token(identity='storefront-test')
    return {
        'Authorization': f'Bearer {token}',
        'Content-Type': 'application/json'
    }


# Daraja HTTP fakes

def daraja_response(status_code=200, body=None, text=None):
    """Mock requests.Response"""
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text if text is not None else str(body)
    if body is None:
        response.json.side_effect = ValueError('No JSON object could be decoded')
    else:
        response.json.return_value = body
    return response


def token_response(token='test-access-token', expires_in='3599'):
    return daraja_response(200, {'access_token': token, 'expires_in': expires_in})


def stk_push_accepted(checkout_request_id=CHECKOUT_ID, merchant_request_id=MERCHANT_ID):
    return daraja_response(200, {
        'MerchantRequestID': merchant_request_id,
        'CheckoutRequestID': checkout_request_id,
        'ResponseCode': '0',
        'ResponseDescription': 'Success. Request accepted for processing',
        'CustomerMessage': 'Success. Request accepted for processing'
    })


@pytest.fixture
def daraja_session():
    """
    requests.Session stand-in answering the OAuth GET with a token.
    Tests set session.post.return_value / side_effect per call.
    """
    session = Mock()
    session.get.return_value = token_response()
    session.post.return_value = stk_push_accepted()
    return session


@pytest.fixture
def patched_daraja(daraja_session):
    """Every MPesaProvider built by the app talks to daraja_session"""
    with patch('stkpay.providers.mpesa_provider.build_session', return_value=daraja_session):
        yield daraja_session


@pytest.fixture
def mpesa_config():
    return {
        'consumer_key': 'test_consumer_key',
        'consumer_secret': 'test_consumer_secret',
        'shortcode': '174379',
        'passkey': 'test_passkey',
        'callback_url': 'https://shop.example.com/api/v1/mpesa/callback',
        'environment': 'sandbox',
        'timestamp_timezone': 'UTC',
    }


# Callback bodies

@pytest.fixture
def stk_callback():
    """Builder for Daraja Body.stkCallback payloads"""

    def build(result_code=0, checkout_request_id=CHECKOUT_ID, merchant_request_id=MERCHANT_ID,
              receipt='ABC123', amount=100, phone=254712345678, result_desc=None):
        stk = {
            'MerchantRequestID': merchant_request_id,
            'CheckoutRequestID': checkout_request_id,
            'ResultCode': result_code,
            'ResultDesc': result_desc or (
                'The service request is processed successfully.' if result_code == 0
                else 'Request cancelled by user'
            ),
        }
        if result_code == 0:
            stk['CallbackMetadata'] = {
                'Item': [
                    {'Name': 'Amount', 'Value': amount},
                    {'Name': 'MpesaReceiptNumber', 'Value': receipt},
                    {'Name': 'Balance'},
                    {'Name': 'TransactionDate', 'Value': 20191219102115},
                    {'Name': 'PhoneNumber', 'Value': phone},
                ]
            }
        return {'Body': {'stkCallback': stk}}

    return build


# In-memory store

class FakePayment:
    def __init__(self, order_id, checkout_request_id, merchant_request_id,
                 phone_number='254712345678', amount=100):
        self.id = uuid.uuid4()
        self.order_id = order_id
        self.checkout_request_id = checkout_request_id
        self.merchant_request_id = merchant_request_id
        self.phone_number = phone_number
        self.amount = amount
        self.status = PaymentState.PENDING.value
        self.payment_status = PaymentStatus.PENDING.value
        self.payment_details = None
        self.reconciled_at = None

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATES


class FakeEvent:
    def __init__(self, payload):
        self.id = uuid.uuid4()
        self.payload = payload
        self.outcome = CallbackOutcome.RECEIVED.value
        self.retry_count = 0
        self.order_payment_id = None
        self.error_message = None


class FakeStore:
    """
    Same surface as ReconciliationStore, held in memory.

    apply_result() does its compare-and-set under a lock. When barrier is set,
    every caller waits on it first, so racing writers all pass the pending
    check before any of them commits.
    """

    def __init__(self):
        self.payments = []
        self.events = []
        self.lock = threading.Lock()
        self.barrier = None
        self.apply_error = None
        self.register_error = None
        self.rollbacks = 0
        self.transitions = []

    def add_payment(self, order_id='ORDER-1', checkout_request_id=CHECKOUT_ID,
                    merchant_request_id=MERCHANT_ID, **kwargs):
        payment = FakePayment(order_id, checkout_request_id, merchant_request_id, **kwargs)
        self.payments.append(payment)
        return payment

    def register_pending(self, order_id, payment_request: PaymentRequest):
        if self.register_error:
            raise self.register_error
        return self.add_payment(
            order_id,
            payment_request.checkout_request_id,
            payment_request.merchant_request_id,
            phone_number=payment_request.phone_number,
            amount=payment_request.amount
        )

    def find_by_checkout_request_id(self, checkout_request_id):
        return next((p for p in self.payments if p.checkout_request_id == checkout_request_id), None)

    def find_by_merchant_request_id(self, merchant_request_id):
        if not merchant_request_id:
            return None
        return next((p for p in self.payments if p.merchant_request_id == merchant_request_id), None)

    def find_for_callback(self, checkout_request_id, merchant_request_id):
        return (
            self.find_by_checkout_request_id(checkout_request_id)
            or self.find_by_merchant_request_id(merchant_request_id)
        )

    def has_paid_attempt(self, order_id):
        return any(p.order_id == order_id and p.status == PaymentState.PAID.value for p in self.payments)

    def apply_result(self, payment, result):
        if self.apply_error:
            raise self.apply_error
        if self.barrier is not None:
            self.barrier.wait()

        with self.lock:
            if payment.payment_status != PaymentStatus.PENDING.value:
                return False
            payment.status = PaymentState.PAID.value if result.succeeded else PaymentState.PAYMENT_FAILED.value
            payment.payment_status = (
                PaymentStatus.COMPLETED.value if result.succeeded else PaymentStatus.FAILED.value
            )
            payment.reconciled_at = datetime.utcnow()
            payment.payment_details = result.to_details()
            payment.payment_details['reconciled_at'] = payment.reconciled_at.isoformat()
            self.transitions.append((payment.checkout_request_id, payment.status))
            return True

    def record_callback(self, payload):
        event = FakeEvent(payload)
        self.events.append(event)
        return event

    def mark_callback(self, event, outcome, payment=None, error_message=None, count_retry=False):
        event.outcome = outcome.value
        event.error_message = error_message
        if payment is not None:
            event.order_payment_id = payment.id
        if count_retry:
            event.retry_count += 1
        return event

    def retryable_callbacks(self, max_attempts):
        return [
            e for e in self.events
            if e.outcome in (CallbackOutcome.UNMATCHED.value, CallbackOutcome.ERROR.value)
            and e.retry_count < max_attempts
        ]

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture
def fake_store():
    return FakeStore()
