"""
Schemas Package
Marshmallow schemas for request/response validation
"""

from stkpay.schemas.mpesa_schema import (
    StkPushRequestSchema,
    StatusQuerySchema,
    StkPushResponseSchema,
    PaymentDetailsSchema,
    PaymentStatusSchema
)

__all__ = [
    'StkPushRequestSchema',
    'StatusQuerySchema',
    'StkPushResponseSchema',
    'PaymentDetailsSchema',
    'PaymentStatusSchema'
]
