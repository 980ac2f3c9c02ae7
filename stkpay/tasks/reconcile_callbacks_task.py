from flask import current_app

from stkpay.extensions import celery_app, db
from stkpay.services.callback_service import CallbackService
from stkpay.services.reconciliation_store import ReconciliationStore
from stkpay.utils.logger import get_logger
from stkpay.websockets.events import emit_payment_update

logger = get_logger(__name__)


@celery_app.task(name='reconcile_unmatched_callbacks_task')
def reconcile_unmatched_callbacks(max_attempts=None):
    """
    Re-apply callbacks that overtook the write of their payment row, or that
    hit a store error after Daraja had been acknowledged

    This should be called periodically (celery beat runs it every minute)
    """
    max_attempts = max_attempts or current_app.config.get('CALLBACK_RECONCILE_MAX_ATTEMPTS', 5)

    service = CallbackService(ReconciliationStore(db.session), notifier=emit_payment_update)
    matched = service.retry_unmatched(max_attempts)

    if matched:
        logger.info(f'Reconciled {matched} previously unreconciled M-Pesa callback(s)')
    return matched
