import enum


class School(str, enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"

    @classmethod
    def parse(cls, value) -> "School":
        """Accepts a School or its value (case-insensitive); raises ValueError otherwise."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            raise ValueError(f"Unknown school: {value!r}") from None


# Stored by value ("primary"/"secondary"), as a VARCHAR with a CHECK constraint
def school_column_type(db):
    return db.Enum(
        School,
        name="school",
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
        values_callable=lambda e: [m.value for m in e],
    )
