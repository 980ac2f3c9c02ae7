import uuid
from datetime import datetime
from enum import Enum

from stkpay.extensions import db
from stkpay.models.order_payment import JSONVariant


class CallbackOutcome(str, Enum):
    RECEIVED = 'received'
    APPLIED = 'applied'
    DUPLICATE = 'duplicate'
    UNMATCHED = 'unmatched'
    INVALID = 'invalid'
    ERROR = 'error'


class CallbackEvent(db.Model):
    """Raw STK callback as delivered by Daraja, kept for audit and late reconciliation."""
    __tablename__ = 'mpesa_callbacks'

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    order_payment_id = db.Column(db.Uuid, db.ForeignKey('order_payments.id'), index=True)

    # Correlation data pulled from the envelope (may be missing on malformed bodies)
    checkout_request_id = db.Column(db.String(100), index=True)
    merchant_request_id = db.Column(db.String(100))
    result_code = db.Column(db.Integer)

    payload = db.Column(JSONVariant, nullable=False)

    # Processing status
    outcome = db.Column(db.String(20), nullable=False, default=CallbackOutcome.RECEIVED.value, index=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text)

    # Timestamps
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    processed_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': str(self.id),
            'order_payment_id': str(self.order_payment_id) if self.order_payment_id else None,
            'checkout_request_id': self.checkout_request_id,
            'merchant_request_id': self.merchant_request_id,
            'result_code': self.result_code,
            'outcome': self.outcome,
            'retry_count': self.retry_count,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat(),
            'processed_at': self.processed_at.isoformat() if self.processed_at else None
        }

    def __repr__(self):
        return f'<CallbackEvent {self.id} - {self.outcome}>'
