"""API Validation Schemas."""

from marshmallow import INCLUDE, Schema, ValidationError, fields, validate, validates_schema


class ReceiptDocumentSchema(Schema):
    """An OCR document submitted directly. Line items are checked during extraction."""

    class Meta:
        unknown = INCLUDE

    line_items = fields.List(fields.Dict(), required=True)


class ReceiptUploadSchema(Schema):
    base64 = fields.Str(required=True, validate=validate.Length(min=1))
    extension = fields.Str(required=True, validate=validate.Length(min=1, max=10))


class NewItemSchema(Schema):
    title = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    warning_amount = fields.Int(allow_none=True, validate=validate.Range(min=0))


class LineActionSchema(Schema):
    item_id = fields.Int(allow_none=True)
    new_item = fields.Nested(NewItemSchema, allow_none=True)
    ignore = fields.Bool(load_default=False)
    quantity_multiplier = fields.Float(allow_none=True, validate=validate.Range(min=0, min_inclusive=False))


class LineIdentitySchema(Schema):
    title = fields.Str(required=True, validate=validate.Length(min=1))
    sku = fields.Str(allow_none=True)
    upc = fields.Str(allow_none=True)
    hsn = fields.Str(allow_none=True)
    reference = fields.Str(allow_none=True)


class ConfirmLineSchema(Schema):
    line_id = fields.Str(validate=validate.Length(equal=64))
    line = fields.Nested(LineIdentitySchema)
    action = fields.Nested(LineActionSchema, allow_none=True)

    @validates_schema
    def validate_line_reference(self, data, **kwargs):
        if not data.get("line_id") and not data.get("line"):
            raise ValidationError("Either line_id or line is required", field_name="line_id")


class ItemSchema(Schema):
    id = fields.Int(dump_only=True)
    title = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    quantity = fields.Int(validate=validate.Range(min=0))
    warning_amount = fields.Int(allow_none=True, validate=validate.Range(min=0))
    is_low = fields.Bool(dump_only=True)
    owner_id = fields.Int(dump_only=True)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)


class ItemUpdateSchema(Schema):
    title = fields.Str(validate=validate.Length(min=1, max=255))
    warning_amount = fields.Int(allow_none=True, validate=validate.Range(min=0))


class QuantityChangeSchema(Schema):
    quantity_change = fields.Int(required=True)
