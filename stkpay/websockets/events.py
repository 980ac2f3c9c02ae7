from flask_socketio import emit, join_room, leave_room
from stkpay.extensions import socketio
from stkpay.utils.logger import get_logger

logger = get_logger(__name__)


def payment_room(checkout_request_id):
    return f'payment_{checkout_request_id}'


@socketio.on('connect')
def handle_connect():
    """Handle client connection"""
    logger.info('Socket client connected')
    emit('connected', {'message': 'Connected to payment updates'})


@socketio.on('disconnect')
def handle_disconnect(*args):
    """Handle client disconnection"""
    logger.info('Socket client disconnected')


@socketio.on('subscribe_payment')
def handle_subscribe_payment(data):
    """Subscribe to updates for one STK push"""
    checkout_request_id = (data or {}).get('checkout_request_id')
    if checkout_request_id:
        room = payment_room(checkout_request_id)
        join_room(room)
        emit('subscribed', {
            'message': f'Subscribed to payment {checkout_request_id}',
            'room': room
        })


@socketio.on('unsubscribe_payment')
def handle_unsubscribe_payment(data):
    """Unsubscribe from payment updates"""
    checkout_request_id = (data or {}).get('checkout_request_id')
    if checkout_request_id:
        leave_room(payment_room(checkout_request_id))
        emit('unsubscribed', {
            'message': f'Unsubscribed from payment {checkout_request_id}'
        })


def emit_payment_update(payment):
    """
    Push a reconciled payment to subscribed clients

    Args:
        payment: OrderPayment that just reached a terminal state
    """
    socketio.emit('payment_update', {
        'checkout_request_id': payment.checkout_request_id,
        'order_id': payment.order_id,
        'status': payment.status,
        'payment_status': payment.payment_status
    }, to=payment_room(payment.checkout_request_id))
