"""
Callback Service
Reconciles Daraja STK callbacks against stored order payments
"""

from typing import Any, Callable, Dict, Optional

from stkpay.errors import InvalidArgument
from stkpay.models import CallbackOutcome
from stkpay.providers.base import PaymentResult
from stkpay.providers.mpesa_provider import parse_stk_callback
from stkpay.utils.logger import get_logger

logger = get_logger(__name__)

# Daraja stops re-delivering a callback once it sees this body with HTTP 200
ACKNOWLEDGEMENT = {'ResultCode': 0, 'ResultDesc': 'Callback received successfully'}


class CallbackService:
    """
    The only writer of terminal payment state.

    handle_callback() never raises: whatever happens after the body arrives is
    logged and recorded on the callback event, and the provider always gets
    ACKNOWLEDGEMENT back.
    """

    def __init__(self, store, notifier: Optional[Callable[[Any], None]] = None):
        self.store = store
        self.notifier = notifier

    def handle_callback(self, payload: Any) -> Dict[str, Any]:
        event = None
        try:
            event = self.store.record_callback(payload)
            result = parse_stk_callback(payload)
            logger.info(
                'M-Pesa callback received: CheckoutRequestID=%s MerchantRequestID=%s ResultCode=%s',
                result.checkout_request_id, result.merchant_request_id, result.result_code
            )
            self.apply(result, event)

        except InvalidArgument as e:
            logger.warning(f'Ignoring malformed M-Pesa callback: {e.message}')
            self._mark_safely(event, CallbackOutcome.INVALID, e.message)

        except Exception as e:
            logger.exception(f'M-Pesa callback processing failed: {str(e)}')
            self._rollback_safely()
            self._mark_safely(event, CallbackOutcome.ERROR, str(e))

        return dict(ACKNOWLEDGEMENT)

    def apply(self, result: PaymentResult, event=None, count_retry: bool = False) -> CallbackOutcome:
        """
        Apply a parsed callback to its payment

        Returns:
            The outcome recorded for the callback event
        """
        payment = self.store.find_for_callback(result.checkout_request_id, result.merchant_request_id)

        if payment is None:
            logger.warning(
                'No payment found for callback CheckoutRequestID=%s MerchantRequestID=%s; acknowledging anyway',
                result.checkout_request_id, result.merchant_request_id
            )
            self._mark(event, CallbackOutcome.UNMATCHED, count_retry=count_retry,
                       error_message='No matching payment')
            return CallbackOutcome.UNMATCHED

        if payment.is_terminal:
            logger.info(
                'Duplicate callback for %s ignored: payment already %s (callback ResultCode=%s)',
                payment.checkout_request_id, payment.status, result.result_code
            )
            self._mark(event, CallbackOutcome.DUPLICATE, payment)
            return CallbackOutcome.DUPLICATE

        if not self.store.apply_result(payment, result):
            # Another callback committed first
            logger.info(
                'Callback for %s lost the race: payment already %s',
                payment.checkout_request_id, payment.status
            )
            self._mark(event, CallbackOutcome.DUPLICATE, payment)
            return CallbackOutcome.DUPLICATE

        logger.info(
            'Payment %s for order %s reconciled as %s (%s)',
            payment.checkout_request_id, payment.order_id, payment.status, result.result_description
        )
        self._mark(event, CallbackOutcome.APPLIED, payment)
        self._notify(payment)
        return CallbackOutcome.APPLIED

    def retry_unmatched(self, max_attempts: int) -> int:
        """
        Re-apply callbacks that arrived before their payment was registered,
        or that failed on a store error after they were acknowledged

        Returns:
            Number of callbacks that now reached their payment
        """
        matched = 0

        for event in self.store.retryable_callbacks(max_attempts):
            try:
                result = parse_stk_callback(event.payload)
                outcome = self.apply(result, event, count_retry=True)
            except InvalidArgument as e:
                self._mark_safely(event, CallbackOutcome.INVALID, e.message)
                continue
            except Exception as e:
                logger.exception(f'Retry failed for callback {event.id}: {str(e)}')
                self._rollback_safely()
                self._mark_safely(event, CallbackOutcome.ERROR, str(e), count_retry=True)
                continue

            if outcome != CallbackOutcome.UNMATCHED:
                matched += 1

        return matched

    def _mark(self, event, outcome, payment=None, error_message=None, count_retry=False):
        if event is not None:
            self.store.mark_callback(
                event, outcome, payment=payment, error_message=error_message, count_retry=count_retry
            )

    def _mark_safely(self, event, outcome, error_message, count_retry=False):
        try:
            self._mark(event, outcome, error_message=error_message, count_retry=count_retry)
        except Exception as e:
            logger.error(f'Could not record callback outcome {outcome.value}: {str(e)}')
            self._rollback_safely()

    def _rollback_safely(self):
        try:
            self.store.rollback()
        except Exception as e:
            logger.error(f'Rollback after callback failure failed: {str(e)}')

    def _notify(self, payment):
        if self.notifier is None:
            return
        try:
            self.notifier(payment)
        except Exception as e:
            logger.warning(f'Payment update notification failed for {payment.checkout_request_id}: {str(e)}')
