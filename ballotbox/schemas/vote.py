from marshmallow import Schema, fields, validate


class BallotRequestSchema(Schema):
    token = fields.Str(required=True, validate=validate.Length(min=1, max=64))


class VoteSubmitSchema(Schema):
    token = fields.Str(required=True, validate=validate.Length(min=1, max=64))
    # Count bounds are per school and checked inside the redemption
    choices = fields.List(fields.Str(validate=validate.Length(min=1, max=200)), required=True)


class BallotSchema(Schema):
    token = fields.Str(required=True)
    school = fields.Str(required=True)
    max_choices = fields.Int(required=True)
    candidates = fields.List(fields.Str(), required=True)


class VoteReceiptSchema(Schema):
    message = fields.Str(required=True)
    school = fields.Str(required=True)
    choices = fields.List(fields.Str(), required=True)
    request_id = fields.Str(required=True)
