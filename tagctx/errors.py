"""
Exceptions raised by tagctx.

Storage-layer errors (connection loss, unrelated constraint violations) are
not wrapped here; SQLAlchemy exceptions propagate to the caller unchanged.
"""
from typing import Any, Dict, Optional


class TaggingError(Exception):
    """Base class for tagging errors."""
    pass


class InvalidContext(TaggingError, ValueError):
    """A context was used that is not declared for the taggable type."""

    def __init__(self, context: Any, type_name: str):
        self.context = context
        self.type_name = type_name
        super().__init__(f"{context} is not a valid tag context for {type_name}")


class MalformedTagInput(TaggingError, TypeError):
    """Tag input was neither a string nor a list of strings."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(
            f"Provided tags: {value!r} are not allowed. You can pass a list or a string only."
        )


class ValidationFailure(TaggingError):
    """
    One or more contexts on a record hold a value that is not a tag collection.

    Attributes:
        errors: Mapping of context name to error message
    """

    def __init__(self, errors: Dict[str, str], record: Optional[Any] = None):
        self.errors = dict(errors)
        self.record = record
        details = ", ".join(f"{ctx}: {msg}" for ctx, msg in self.errors.items())
        super().__init__(f"Invalid tag contexts ({details})")
