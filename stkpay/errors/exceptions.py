class AppError(Exception):
    status_code = 500
    error = "Application error"
    user_message = "Something went wrong, please try again"

    def __init__(self, message, status_code=None, error_code=None, details=None):
        super().__init__(message)
        if status_code:
            self.status_code = status_code
        self.message = message
        # Daraja errorCode (e.g. "500.001.1001") when the gateway supplied one
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self):
        body = {
            'success': False,
            'error': self.error,
            'message': self.message,
            'userMessage': self.user_message,
        }
        if self.error_code:
            body['errorCode'] = self.error_code
        return body


class InvalidArgument(AppError):
    status_code = 400
    error = "Invalid argument"
    user_message = "Please check the payment details and try again"


class NotFound(AppError):
    status_code = 404
    error = "Not found"
    user_message = "We could not find that payment"


class UpstreamUnavailable(AppError):
    """Transient gateway or network failure; the caller may retry with backoff."""
    status_code = 503
    error = "Payment provider unavailable"
    user_message = "Payment could not be started, please try again"


class UpstreamRejected(AppError):
    """The gateway refused the request synchronously; retrying unchanged will not help."""
    status_code = 502
    error = "Payment provider rejected the request"
    user_message = "Payment could not be started, please try again"


class ConfigurationError(AppError):
    status_code = 500
    error = "Payment provider misconfigured"
    user_message = "Payments are temporarily unavailable"
