from marshmallow import Schema, fields, validate


class AdminLoginSchema(Schema):
    """Schema for admin login request"""
    password = fields.Str(required=True, validate=validate.Length(min=1, max=128))


class TokenSchema(Schema):
    access_token = fields.Str(required=True)
