"""
Utils Package
Utility functions and helpers
"""

from stkpay.utils.logger import get_logger, configure_app_logging, RequestLogger, mask_phone
from stkpay.utils.decorators import rate_limit
from stkpay.utils.http import build_session

__all__ = [
    'get_logger',
    'configure_app_logging',
    'RequestLogger',
    'mask_phone',
    'rate_limit',
    'build_session'
]
