from flask import abort


def validate_or_abort(schema, payload):
    """Validate and return the deserialized payload, or abort with a 400 envelope."""
    errors = schema.validate(payload)
    if errors:
        abort(
            400,
            description={
                "code": "VALIDATION_ERROR",
                "message": "Validation error",
                "errors": errors,
            },
        )
    return schema.load(payload)
