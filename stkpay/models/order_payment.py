import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy.dialects.postgresql import JSONB

from stkpay.extensions import db

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONVariant = db.JSON().with_variant(JSONB(), 'postgresql')


class PaymentState(str, Enum):
    """Order-facing payment lifecycle: pending -> paid | payment_failed"""
    PENDING = 'pending'
    PAID = 'paid'
    PAYMENT_FAILED = 'payment_failed'


class PaymentStatus(str, Enum):
    """Gateway-facing settlement status kept alongside the order status"""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


TERMINAL_STATES = frozenset({PaymentState.PAID.value, PaymentState.PAYMENT_FAILED.value})


class OrderPayment(db.Model):
    """One STK push attempt for an order, addressable by its CheckoutRequestID."""
    __tablename__ = 'order_payments'

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    order_id = db.Column(db.String(64), nullable=False, index=True)

    # Correlation identifiers issued by Daraja
    checkout_request_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    merchant_request_id = db.Column(db.String(100), index=True)

    # Request details
    phone_number = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    account_reference = db.Column(db.String(32))
    description = db.Column(db.String(100))

    # Lifecycle
    status = db.Column(db.String(20), nullable=False, default=PaymentState.PENDING.value, index=True)
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_details = db.Column(JSONVariant)

    # Timestamps
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    reconciled_at = db.Column(db.DateTime)

    callback_events = db.relationship('CallbackEvent', backref='order_payment', lazy='dynamic')

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATES

    def to_dict(self):
        return {
            'id': str(self.id),
            'order_id': self.order_id,
            'checkout_request_id': self.checkout_request_id,
            'merchant_request_id': self.merchant_request_id,
            'phone_number': self.phone_number,
            'amount': self.amount,
            'status': self.status,
            'payment_status': self.payment_status,
            'payment_details': self.payment_details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'reconciled_at': self.reconciled_at.isoformat() if self.reconciled_at else None
        }

    def __repr__(self):
        return f'<OrderPayment {self.checkout_request_id} - {self.status}>'
