from stkpay.models.order_payment import OrderPayment, PaymentState, PaymentStatus, TERMINAL_STATES
from stkpay.models.callback_event import CallbackEvent, CallbackOutcome

__all__ = [
    'OrderPayment', 'PaymentState', 'PaymentStatus', 'TERMINAL_STATES',
    'CallbackEvent', 'CallbackOutcome'
]
