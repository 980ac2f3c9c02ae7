"""
Integration Tests for payment update push over Socket.IO
"""

import json

import pytest

from stkpay.extensions import socketio


@pytest.fixture
def socket_client(app):
    client = socketio.test_client(app)
    yield client
    if client.is_connected():
        client.disconnect()


def _events(socket_client, name):
    return [event for event in socket_client.get_received() if event['name'] == name]


class TestPaymentUpdates:

    def test_subscribe(self, socket_client):
        socket_client.get_received()

        socket_client.emit('subscribe_payment', {'checkout_request_id': 'ws_CO_1'})

        subscribed = _events(socket_client, 'subscribed')
        assert subscribed[0]['args'][0]['room'] == 'payment_ws_CO_1'

    @pytest.mark.usefixtures('db')
    def test_callback_pushes_update_to_subscribers(self, socket_client, client, auth_headers,
                                                   patched_daraja, stk_callback):
        client.post('/api/v1/mpesa/stkpush', headers=auth_headers, data=json.dumps({
            'phoneNumber': '0712345678', 'amount': 100, 'orderId': 'ORDER-1'
        }))
        socket_client.emit('subscribe_payment', {'checkout_request_id': 'ws_CO_191220191020363925'})
        socket_client.get_received()

        client.post('/api/v1/mpesa/callback', data=json.dumps(stk_callback(0)), content_type='application/json')

        updates = _events(socket_client, 'payment_update')
        assert len(updates) == 1
        assert updates[0]['args'][0]['status'] == 'paid'
        assert updates[0]['args'][0]['order_id'] == 'ORDER-1'

    def test_other_payments_are_not_pushed(self, socket_client):
        socket_client.emit('subscribe_payment', {'checkout_request_id': 'ws_CO_1'})
        socket_client.get_received()

        socketio.emit('payment_update', {'status': 'paid'}, to='payment_ws_CO_2')

        assert _events(socket_client, 'payment_update') == []
