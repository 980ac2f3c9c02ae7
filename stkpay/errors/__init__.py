from stkpay.errors.exceptions import (
    AppError,
    ConfigurationError,
    InvalidArgument,
    NotFound,
    UpstreamRejected,
    UpstreamUnavailable,
)

__all__ = [
    'AppError',
    'ConfigurationError',
    'InvalidArgument',
    'NotFound',
    'UpstreamRejected',
    'UpstreamUnavailable',
]
