"""
M-Pesa request/response schemas

Request bodies arrive from the storefront client in camelCase; data_key maps
them onto the snake_case names used in Python.
"""

from marshmallow import Schema, fields, validate, validates, ValidationError, EXCLUDE


class StkPushRequestSchema(Schema):
    """STK push initiation request"""

    class Meta:
        unknown = EXCLUDE

    phone_number = fields.Str(required=True, data_key='phoneNumber', validate=validate.Length(min=1, max=20))
    amount = fields.Decimal(required=True)
    order_id = fields.Str(required=True, data_key='orderId', validate=validate.Length(min=1, max=64))
    description = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=100))

    @validates('amount')
    def validate_amount(self, value, **kwargs):
        if value <= 0:
            raise ValidationError('Amount must be greater than 0')


class StatusQuerySchema(Schema):
    """Status query request"""

    class Meta:
        unknown = EXCLUDE

    checkout_request_id = fields.Str(
        required=True, data_key='checkoutRequestId', validate=validate.Length(min=1, max=100)
    )


class StkPushResponseSchema(Schema):
    """Initiation acknowledgement returned to the client"""
    checkout_request_id = fields.Str(data_key='checkoutRequestId')
    merchant_request_id = fields.Str(data_key='merchantRequestId')
    response_code = fields.Str(data_key='responseCode')
    response_description = fields.Str(data_key='responseDescription', allow_none=True)
    customer_message = fields.Str(data_key='customerMessage', allow_none=True)
    payment_id = fields.Str(data_key='paymentId')
    order_id = fields.Str(data_key='orderId')
    amount = fields.Int()
    phone_number = fields.Str(data_key='phoneNumber')


class PaymentDetailsSchema(Schema):
    """Provider metadata stored with a reconciled payment"""
    receipt_number = fields.Raw(data_key='receiptNumber', allow_none=True)
    amount = fields.Raw(allow_none=True)
    transaction_date = fields.Raw(data_key='transactionDate', allow_none=True)
    phone_number = fields.Raw(data_key='phoneNumber', allow_none=True)
    result_code = fields.Int(data_key='resultCode', allow_none=True)
    result_description = fields.Str(data_key='resultDescription', allow_none=True)
    checkout_request_id = fields.Str(data_key='checkoutRequestId', allow_none=True)
    merchant_request_id = fields.Str(data_key='merchantRequestId', allow_none=True)
    reconciled_at = fields.Str(data_key='reconciledAt', allow_none=True)


class PaymentStatusSchema(Schema):
    """Status query response"""
    status = fields.Str()
    order_id = fields.Str(data_key='orderId', allow_none=True)
    details = fields.Nested(PaymentDetailsSchema, allow_none=True)
    source = fields.Str()
    message = fields.Str(allow_none=True)
