"""
M-Pesa API Endpoints
STK push initiation, the Daraja callback and status polling
"""

from functools import partial

from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError

from stkpay.errors import AppError, NotFound, UpstreamRejected, UpstreamUnavailable
from stkpay.extensions import db
from stkpay.providers import get_provider
from stkpay.schemas.mpesa_schema import (
    StkPushRequestSchema,
    StatusQuerySchema,
    StkPushResponseSchema,
    PaymentStatusSchema
)
from stkpay.services.callback_service import ACKNOWLEDGEMENT, CallbackService
from stkpay.services.idempotency_service import idempotent
from stkpay.services.payment_service import PaymentService
from stkpay.services.reconciliation_store import ReconciliationStore
from stkpay.utils.decorators import rate_limit
from stkpay.utils.logger import get_logger
from stkpay.websockets.events import emit_payment_update

mpesa_bp = Blueprint('mpesa', __name__)
logger = get_logger(__name__)

stk_push_schema = StkPushRequestSchema()
status_query_schema = StatusQuerySchema()
stk_push_response_schema = StkPushResponseSchema()
payment_status_schema = PaymentStatusSchema()


def _payment_service():
    return PaymentService(ReconciliationStore(db.session), partial(get_provider, 'mpesa'))


def _error_response(error: AppError):
    return jsonify(error.to_dict()), error.status_code


@mpesa_bp.route('/stkpush', methods=['POST'])
@jwt_required()
@idempotent(ttl=86400)
def stk_push():
    """
    Initiate an STK push

    Headers:
        - Authorization: Bearer <token>
        - Idempotency-Key: optional, replays the first successful response

    Body:
        {
            "phoneNumber": "0712345678",
            "amount": 1500,
            "orderId": "ORDER-1",
            "description": "Order payment"
        }
    """
    try:
        data = stk_push_schema.load(request.get_json(silent=True) or {})

        payment_request, payment = _payment_service().initiate(
            phone_number=data['phone_number'],
            amount=data['amount'],
            order_id=data['order_id'],
            description=data.get('description')
        )

        body = {
            **payment_request.to_response(),
            'payment_id': str(payment.id),
            'order_id': payment.order_id,
            'amount': payment.amount,
            'phone_number': payment.phone_number,
        }
        return jsonify({
            'success': True,
            'message': 'STK push initiated successfully',
            'data': stk_push_response_schema.dump(body)
        }), 201

    except ValidationError as e:
        return jsonify({
            'success': False,
            'error': 'Validation error',
            'details': e.messages
        }), 400

    except (UpstreamUnavailable, UpstreamRejected) as e:
        logger.error(f'STK push failed: {e.message}')
        return _error_response(e)

    except AppError as e:
        return _error_response(e)


@mpesa_bp.route('/callback', methods=['POST'])
def callback():
    """
    Daraja STK callback. No authentication: Daraja cannot send a token.

    Always answers 200 with the fixed acknowledgement, whatever happens
    while processing, so Daraja does not keep re-delivering.
    """
    payload = request.get_json(silent=True)
    if payload is None:
        logger.warning('M-Pesa callback with a missing or non-JSON body')

    try:
        service = CallbackService(ReconciliationStore(db.session), notifier=emit_payment_update)
        ack = service.handle_callback(payload)
    except Exception as e:
        logger.exception(f'M-Pesa callback handler failed to start: {str(e)}')
        ack = dict(ACKNOWLEDGEMENT)

    return jsonify(ack), 200


def _status_response(checkout_request_id):
    try:
        result = _payment_service().query_status(checkout_request_id)
        return jsonify({
            'success': True,
            'data': payment_status_schema.dump(result)
        }), 200

    except NotFound as e:
        body = e.to_dict()
        body['data'] = {'status': 'not_found', 'checkoutRequestId': checkout_request_id}
        return jsonify(body), e.status_code

    except UpstreamUnavailable as e:
        body = e.to_dict()
        body['userMessage'] = 'Still waiting for confirmation, please check again shortly'
        return jsonify(body), e.status_code

    except AppError as e:
        return _error_response(e)


@mpesa_bp.route('/query', methods=['POST'])
@jwt_required()
@rate_limit(config_key='STATUS_QUERY_RATE_LIMIT', key_prefix='mpesa_query')
def query_status():
    """
    Query the status of an STK push

    Body:
        {"checkoutRequestId": "ws_CO_..."}
    """
    try:
        data = status_query_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return jsonify({
            'success': False,
            'error': 'Validation error',
            'details': e.messages
        }), 400

    return _status_response(data['checkout_request_id'])


@mpesa_bp.route('/status/<checkout_request_id>', methods=['GET'])
@jwt_required()
@rate_limit(config_key='STATUS_QUERY_RATE_LIMIT', key_prefix='mpesa_query')
def payment_status(checkout_request_id):
    """
    Same as /query, for clients that poll with GET

    Path Parameters:
        - checkout_request_id: CheckoutRequestID returned by /stkpush
    """
    return _status_response(checkout_request_id)


@mpesa_bp.route('/health', methods=['GET'])
def mpesa_health():
    """
    Report whether the M-Pesa integration is configured (never the secret values)
    """
    config = current_app.config
    required = {
        'consumer_key': bool(config.get('MPESA_CONSUMER_KEY')),
        'consumer_secret': bool(config.get('MPESA_CONSUMER_SECRET')),
        'shortcode': bool(config.get('MPESA_SHORTCODE')),
        'passkey': bool(config.get('MPESA_PASSKEY')),
        'callback_url': bool(config.get('MPESA_CALLBACK_URL')),
    }
    configured = all(required.values())

    return jsonify({
        'status': 'configured' if configured else 'misconfigured',
        'environment': config.get('MPESA_ENV'),
        'callback_url': config.get('MPESA_CALLBACK_URL') or None,
        'timestamp_timezone': config.get('MPESA_TIMESTAMP_TIMEZONE'),
        'checks': required
    }), 200 if configured else 503
