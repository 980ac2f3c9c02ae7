from stkpay.services.callback_service import CallbackService, ACKNOWLEDGEMENT
from stkpay.services.payment_service import PaymentService, USER_MESSAGES
from stkpay.services.reconciliation_store import ReconciliationStore

__all__ = ['CallbackService', 'ACKNOWLEDGEMENT', 'PaymentService', 'USER_MESSAGES', 'ReconciliationStore']
