"""
Reconciliation Store
Persistence for order payments and the callbacks that resolve them
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from stkpay.models import (
    CallbackEvent,
    CallbackOutcome,
    OrderPayment,
    PaymentState,
    PaymentStatus,
)
from stkpay.providers.base import PaymentRequest, PaymentResult
from stkpay.utils.logger import get_logger

logger = get_logger(__name__)

# Outcomes the reconcile task picks up again
RETRYABLE_OUTCOMES = (CallbackOutcome.UNMATCHED.value, CallbackOutcome.ERROR.value)


class ReconciliationStore:
    """
    Store access for the payment core.

    Terminal payment state is written only through apply_result(), which is a
    compare-and-set on payment_status = 'pending': when two callbacks race,
    the first one the database accepts wins and the other sees no row updated.
    """

    def __init__(self, session):
        self.session = session

    # Order payments

    def register_pending(self, order_id: str, payment_request: PaymentRequest) -> OrderPayment:
        """Persist the correlation ids of an accepted STK push against its order."""
        payment = OrderPayment(
            order_id=order_id,
            checkout_request_id=payment_request.checkout_request_id,
            merchant_request_id=payment_request.merchant_request_id,
            phone_number=payment_request.phone_number,
            amount=payment_request.amount,
            account_reference=payment_request.account_reference,
            description=payment_request.description,
            status=PaymentState.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            created_at=payment_request.created_at,
        )
        self.session.add(payment)

        try:
            self.session.commit()
        except IntegrityError:
            # CheckoutRequestID already registered: keep the first row
            self.session.rollback()
            existing = self.find_by_checkout_request_id(payment_request.checkout_request_id)
            if existing is None:
                raise
            logger.warning(
                'CheckoutRequestID %s already registered for order %s',
                payment_request.checkout_request_id, existing.order_id
            )
            return existing

        return payment

    def find_by_checkout_request_id(self, checkout_request_id: str) -> Optional[OrderPayment]:
        if not checkout_request_id:
            return None
        return self.session.execute(
            select(OrderPayment).filter_by(checkout_request_id=checkout_request_id)
        ).scalar_one_or_none()

    def find_by_merchant_request_id(self, merchant_request_id: str) -> Optional[OrderPayment]:
        if not merchant_request_id:
            return None
        return self.session.execute(
            select(OrderPayment)
            .filter_by(merchant_request_id=merchant_request_id)
            .order_by(OrderPayment.created_at.desc())
        ).scalars().first()

    def find_for_callback(
            self,
            checkout_request_id: Optional[str],
            merchant_request_id: Optional[str]
    ) -> Optional[OrderPayment]:
        """CheckoutRequestID is the join key; MerchantRequestID is the fallback."""
        return (
            self.find_by_checkout_request_id(checkout_request_id)
            or self.find_by_merchant_request_id(merchant_request_id)
        )

    def has_paid_attempt(self, order_id: str) -> bool:
        return self.session.execute(
            select(OrderPayment.id).filter_by(order_id=order_id, status=PaymentState.PAID.value).limit(1)
        ).first() is not None

    def apply_result(self, payment: OrderPayment, result: PaymentResult) -> bool:
        """
        Move a pending payment to its terminal state.

        Returns:
            True if this call performed the transition, False if the payment
            was already terminal (another writer got there first)
        """
        now = datetime.utcnow()
        details = result.to_details()
        details['reconciled_at'] = now.isoformat()

        stmt = (
            update(OrderPayment)
            .where(
                OrderPayment.id == payment.id,
                OrderPayment.payment_status == PaymentStatus.PENDING.value
            )
            .values(
                status=PaymentState.PAID.value if result.succeeded else PaymentState.PAYMENT_FAILED.value,
                payment_status=PaymentStatus.COMPLETED.value if result.succeeded else PaymentStatus.FAILED.value,
                payment_details=details,
                reconciled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        rowcount = self.session.execute(stmt).rowcount
        self.session.commit()
        self.session.refresh(payment)
        return rowcount == 1

    # Callback events

    def record_callback(self, payload: Any) -> CallbackEvent:
        stk = {}
        if isinstance(payload, dict) and isinstance(payload.get('Body'), dict):
            stk = payload['Body'].get('stkCallback') or {}
        if not isinstance(stk, dict):
            stk = {}

        result_code = stk.get('ResultCode')
        try:
            result_code = int(result_code) if result_code is not None else None
        except (TypeError, ValueError):
            result_code = None

        event = CallbackEvent(
            checkout_request_id=stk.get('CheckoutRequestID'),
            merchant_request_id=stk.get('MerchantRequestID'),
            result_code=result_code,
            payload=payload if payload is not None else {},
            outcome=CallbackOutcome.RECEIVED.value,
        )
        self.session.add(event)
        self.session.commit()
        return event

    def mark_callback(
            self,
            event: CallbackEvent,
            outcome: CallbackOutcome,
            payment: Optional[OrderPayment] = None,
            error_message: Optional[str] = None,
            count_retry: bool = False
    ) -> CallbackEvent:
        event.outcome = outcome.value
        event.error_message = error_message
        event.processed_at = datetime.utcnow()
        if payment is not None:
            event.order_payment_id = payment.id
        if count_retry:
            event.retry_count = (event.retry_count or 0) + 1
        self.session.commit()
        return event

    def retryable_callbacks(self, max_attempts: int) -> List[CallbackEvent]:
        """Callbacks that found no payment, or failed while being applied"""
        return list(self.session.execute(
            select(CallbackEvent)
            .filter(
                CallbackEvent.outcome.in_(RETRYABLE_OUTCOMES),
                CallbackEvent.retry_count < max_attempts
            )
            .order_by(CallbackEvent.created_at)
        ).scalars())

    def rollback(self) -> None:
        self.session.rollback()

    def statistics(self) -> Dict[str, Dict[str, int]]:
        payments = dict(self.session.execute(
            select(OrderPayment.status, func.count(OrderPayment.id)).group_by(OrderPayment.status)
        ).all())
        callbacks = dict(self.session.execute(
            select(CallbackEvent.outcome, func.count(CallbackEvent.id)).group_by(CallbackEvent.outcome)
        ).all())
        return {'payments': payments, 'callbacks': callbacks}
