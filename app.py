import os
from stkpay import create_app
from stkpay.extensions import db, socketio, celery_app  # noqa: F401  (celery -A app.celery_app worker)

app = create_app(os.getenv('FLASK_ENV', 'development'))


@app.shell_context_processor
def make_shell_context():
    from stkpay.models import OrderPayment, CallbackEvent
    return {
        'db': db,
        'OrderPayment': OrderPayment,
        'CallbackEvent': CallbackEvent
    }


if __name__ == '__main__':
    socketio.run(app, debug=True, host='0.0.0.0', port=5000)
