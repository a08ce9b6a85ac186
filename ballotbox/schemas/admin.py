from marshmallow import Schema, fields, validate, pre_load

SCHOOL_VALUES = ["primary", "secondary"]


class _SchoolMixin:
    @pre_load
    def normalize_school(self, data, **kwargs):
        if isinstance(data, dict) and isinstance(data.get("school"), str):
            data = dict(data)
            data["school"] = data["school"].strip().lower()
        return data


class TokenGenerateSchema(_SchoolMixin, Schema):
    school = fields.Str(required=True, validate=validate.OneOf(SCHOOL_VALUES))
    count = fields.Int(load_default=1, validate=validate.Range(min=1))


class CandidateCreateSchema(_SchoolMixin, Schema):
    school = fields.Str(required=True, validate=validate.OneOf(SCHOOL_VALUES))
    name = fields.Str(required=True, validate=validate.Length(min=1, max=200))
