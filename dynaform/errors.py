"""Structured error types for Dynaform.

Every failure raised by the package is a DynaformError subclass carrying a
stable ErrorCode, a human-readable message and, for field-level errors, the
offending field name. Transport layers map these onto their own protocol
(HTTP status, RPC error codes) using ``code`` and ``to_dict()``.

Taxonomy:
- Authoring time: InvalidFieldDefinition, DuplicateOptionValue
- Submission time: RequiredFieldMissing, InvalidFieldValue, InvalidOptionValue
- Authorization: Forbidden
- Lookup: NotFound, FormNotSubmittable
"""

from typing import Any, Dict, Optional

from dynaform.types import ErrorCode


class DynaformError(Exception):
    """Base class for all Dynaform errors.

    Attributes:
        code: Stable error code
        message: Human-readable error description
        field_name: Optional - the field this error relates to
        expected: Optional - what was expected (type, format, option values)
        received: Optional - what was actually received
    """

    # Set by every concrete subclass
    code: ErrorCode

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        expected: Optional[Any] = None,
        received: Optional[Any] = None,
    ):
        self.message = message
        self.field_name = field_name
        self.expected = expected
        self.received = received
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.field_name is not None:
            result["field_name"] = self.field_name
        if self.expected is not None:
            result["expected"] = self.expected
        if self.received is not None:
            result["received"] = self.received
        return result


class InvalidFieldDefinition(DynaformError):
    """A field's type and option list disagree, or a field or form definition is malformed.

    Form-level shape errors (an empty name, a non-boolean is_active) are
    reported under this class too, with no ``field_name``.
    """
    code = ErrorCode.INVALID_FIELD_DEFINITION


class DuplicateOptionValue(DynaformError):
    """Two options of the same field share a value."""
    code = ErrorCode.DUPLICATE_OPTION_VALUE


class FieldValidationError(DynaformError):
    """Base class for payload errors tied to a single field.

    The field name is mandatory, so ``RequiredFieldMissing("age")`` is enough
    to build a complete error.
    """

    def __init__(
        self,
        field_name: str,
        message: Optional[str] = None,
        expected: Optional[Any] = None,
        received: Optional[Any] = None,
    ):
        super().__init__(
            message or self.default_message(field_name),
            field_name=field_name,
            expected=expected,
            received=received,
        )

    @staticmethod
    def default_message(field_name: str) -> str:
        return f"Field '{field_name}' is invalid"


class RequiredFieldMissing(FieldValidationError):
    code = ErrorCode.REQUIRED_FIELD_MISSING

    @staticmethod
    def default_message(field_name: str) -> str:
        return f"Field '{field_name}' is required but was not provided"


class InvalidFieldValue(FieldValidationError):
    code = ErrorCode.INVALID_FIELD_VALUE


class InvalidOptionValue(FieldValidationError):
    code = ErrorCode.INVALID_OPTION_VALUE

    @staticmethod
    def default_message(field_name: str) -> str:
        return f"Field '{field_name}' has a value outside its option list"


class Forbidden(DynaformError):
    """The actor's role does not allow this operation."""
    code = ErrorCode.FORBIDDEN


class NotFound(DynaformError):
    """A referenced form, field or subscription does not exist."""
    code = ErrorCode.NOT_FOUND


class FormNotSubmittable(DynaformError):
    """The form exists but is inactive."""
    code = ErrorCode.FORM_NOT_SUBMITTABLE


__all__ = [
    "DynaformError",
    "InvalidFieldDefinition",
    "DuplicateOptionValue",
    "FieldValidationError",
    "RequiredFieldMissing",
    "InvalidFieldValue",
    "InvalidOptionValue",
    "Forbidden",
    "NotFound",
    "FormNotSubmittable",
]
