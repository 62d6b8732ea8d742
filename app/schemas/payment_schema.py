from marshmallow import Schema, fields, validates, ValidationError, EXCLUDE

from app.models import DestinationType


class RequestSchema(Schema):
    """Tokens and client extras travel in the same body and are ignored here"""

    class Meta:
        unknown = EXCLUDE


class StkPushSchema(RequestSchema):
    """Hotspot package purchase"""
    phone = fields.Str(required=True)
    amount = fields.Raw(required=True)
    package = fields.Dict(required=True)
    mac = fields.Str(required=False, allow_none=True)
    platform_id = fields.Str(required=True, data_key='platformID')


class PPPoEPaymentSchema(RequestSchema):
    phone = fields.Str(required=True)
    payment_link = fields.Str(required=True, data_key='paymentLink')


class BillPaymentSchema(RequestSchema):
    phone = fields.Str(required=True)
    months = fields.Int(required=False, load_default=1)
    bill_id = fields.Str(required=True, data_key='billID')

    @validates('months')
    def validate_months(self, value, **kwargs):
        if value < 1:
            raise ValidationError('Months must be at least 1')


class SMSPaymentSchema(RequestSchema):
    phone = fields.Str(required=True)
    amount = fields.Raw(required=True)


class WithdrawSchema(RequestSchema):
    amount = fields.Raw(required=True)


class TransactionActionSchema(RequestSchema):
    """Verify or reverse a settled payment by its receipt or record id"""
    transaction_code = fields.Str(required=False, allow_none=True, data_key='transactionCode')
    payment_id = fields.Str(required=False, allow_none=True, data_key='paymentId')
    amount = fields.Raw(required=False, allow_none=True)


class BusinessTransferSchema(RequestSchema):
    amount = fields.Raw(required=True)
    destination_type = fields.Str(required=True, data_key='destinationType')
    destination_short_code = fields.Str(required=True, data_key='destinationShortCode')
    destination_account = fields.Str(required=False, allow_none=True, data_key='destinationAccount')
    remarks = fields.Str(required=False, allow_none=True)

    @validates('destination_type')
    def validate_destination_type(self, value, **kwargs):
        if DestinationType.parse(value) is None:
            raise ValidationError('Destination type must be Till, Paybill, or Pochi.')


class CheckPaymentSchema(RequestSchema):
    code = fields.Str(required=True)
