from typing import Any, Callable, Dict, Optional, Tuple

from stkpay.errors import InvalidArgument, NotFound, UpstreamUnavailable
from stkpay.models import OrderPayment, PaymentState
from stkpay.providers.base import PaymentProvider, PaymentRequest
from stkpay.utils.logger import get_logger

logger = get_logger(__name__)

# What the storefront shows for each state
USER_MESSAGES = {
    PaymentState.PENDING.value: 'Still waiting for payment confirmation',
    PaymentState.PAID.value: 'Payment received, thank you',
    PaymentState.PAYMENT_FAILED.value: 'Payment was not completed',
}


class PaymentService:
    """
    STK push initiation and status queries.

    The provider is built lazily through provider_factory so that answering
    from the store never needs gateway credentials or a token.
    """

    def __init__(self, store, provider_factory: Callable[[], PaymentProvider]):
        self.store = store
        self._provider_factory = provider_factory
        self._provider: Optional[PaymentProvider] = None

    @property
    def provider(self) -> PaymentProvider:
        if self._provider is None:
            self._provider = self._provider_factory()
        return self._provider

    def initiate(
            self,
            phone_number: str,
            amount: Any,
            order_id: str,
            description: Optional[str] = None
    ) -> Tuple[PaymentRequest, OrderPayment]:
        """
        Start an M-Pesa payment for an order

        Returns:
            The provider acknowledgement and the pending payment row

        Raises:
            InvalidArgument, UpstreamUnavailable, UpstreamRejected
        """
        if not order_id:
            raise InvalidArgument('orderId is required')

        if self.store.has_paid_attempt(order_id):
            raise InvalidArgument(f'Order {order_id} has already been paid')

        payment_request = self.provider.initiate_payment(
            phone_number=phone_number,
            amount=amount,
            order_id=order_id,
            description=description
        )

        try:
            payment = self.store.register_pending(order_id, payment_request)
        except Exception:
            # The push is already on the payer's phone; without this row the
            # callback cannot be joined, so leave enough in the log to repair it.
            logger.error(
                'STK push %s (merchant %s) for order %s accepted but not stored',
                payment_request.checkout_request_id, payment_request.merchant_request_id, order_id
            )
            self.store.rollback()
            raise

        return payment_request, payment

    def query_status(self, checkout_request_id: str) -> Dict[str, Any]:
        """
        Current status of a payment

        A terminal status held in the store is authoritative and returned
        without contacting the gateway. Otherwise the gateway's STK query is
        asked as a best-effort answer; nothing is written back.

        Returns:
            Dict with status, order_id, details, source and message

        Raises:
            InvalidArgument, NotFound, UpstreamUnavailable
        """
        if not checkout_request_id:
            raise InvalidArgument('checkoutRequestId is required')

        payment = self.store.find_by_checkout_request_id(checkout_request_id)

        if payment is not None and payment.is_terminal:
            return self._from_store(payment)

        try:
            upstream = self.provider.query_payment(checkout_request_id)
        except NotFound:
            if payment is not None:
                return self._from_store(payment)
            raise
        except UpstreamUnavailable:
            logger.warning(
                'Status query for %s could not reach M-Pesa (stored status: %s)',
                checkout_request_id, payment.status if payment is not None else 'none'
            )
            raise

        status = upstream['status']
        return {
            'status': status,
            'order_id': payment.order_id if payment is not None else None,
            'details': {
                'result_code': upstream.get('result_code'),
                'result_description': upstream.get('result_description'),
            },
            'source': 'provider',
            'message': _user_message(status, upstream.get('result_description')),
        }

    @staticmethod
    def _from_store(payment: OrderPayment) -> Dict[str, Any]:
        details = payment.payment_details or {}
        return {
            'status': payment.status,
            'order_id': payment.order_id,
            'details': payment.payment_details,
            'source': 'store',
            'message': _user_message(payment.status, details.get('result_description')),
        }


def _user_message(status: str, result_description: Optional[str] = None) -> Optional[str]:
    message = USER_MESSAGES.get(status)
    if status == PaymentState.PAYMENT_FAILED.value and result_description:
        return f'{message}: {result_description}'
    return message
