"""Submission payload validation against a FormDefinition.

The SchemaValidator walks a form's fields in presentation order and checks
the submitted value of each one:

1. A missing key, ``None``, ``""`` or ``[]`` counts as absent. Absent values
   fail required fields and skip type checks on optional ones.
2. Present values are checked against the field's JSON Schema fragment
   (see FormField.value_schema) with jsonschema's Draft7Validator.
3. Numbers must additionally be finite, dates must parse as ISO 8601
   calendar dates.

Validation is fail-fast: the first violated field, in presentation order,
raises. Keys not defined on the form pass through untouched. On success the
payload is returned as-is (as a shallow copy), so validating the result again
always succeeds.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from dateutil.parser import isoparse
from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from dynaform.config import Settings, get_settings
from dynaform.errors import (
    FieldValidationError,
    InvalidFieldValue,
    InvalidOptionValue,
    RequiredFieldMissing,
)
from dynaform.forms import FormDefinition, FormField
from dynaform.types import FieldType, requires_options

logger = logging.getLogger(__name__)

# Plain decimal or scientific notation; no hex, underscores, inf or nan
NUMERIC_STRING = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")

# Extended calendar date (YYYY-MM-DD), optionally followed by an ISO time part
CALENDAR_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:$|[T ])")


def is_empty(value: Any) -> bool:
    """Whether a payload value counts as not provided."""
    return value is None or (isinstance(value, (str, list)) and len(value) == 0)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of SchemaValidator.check.

    Attributes:
        is_valid: Whether the payload passed all checks
        data: The validated payload (None when invalid)
        error: The first field error encountered (None when valid)
    """
    is_valid: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[FieldValidationError] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"is_valid": self.is_valid}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


class SchemaValidator:
    """Validates submission payloads against form definitions.

    Examples:
        >>> from dynaform.forms import FieldOption
        >>> form = FormDefinition(name="Signup", fields=[
        ...     FormField(field_name="country", field_type=FieldType.SELECT, is_required=True,
        ...               options=[FieldOption("us", "United States"), FieldOption("ca", "Canada")]),
        ... ])
        >>> SchemaValidator().validate(form, {"country": "us"})
        {'country': 'us'}
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def validate(self, form: FormDefinition, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate a payload, returning it unchanged on success.

        Args:
            form: The form to validate against
            payload: Submitted values keyed by field_name

        Returns:
            A shallow copy of the payload

        Raises:
            RequiredFieldMissing: A required field is absent or empty
            InvalidFieldValue: A number, date or text value is malformed
            InvalidOptionValue: A select, radio or checkbox value is not an option
            TypeError: If payload is not a mapping
        """
        if not isinstance(payload, Mapping):
            raise TypeError(f"Submission payload must be an object, got {type(payload).__name__}")

        for form_field in form.ordered_fields():
            value = payload.get(form_field.field_name)
            if is_empty(value):
                if form_field.is_required:
                    raise RequiredFieldMissing(form_field.field_name, expected="non-empty value")
                continue
            self._check_value(form_field, value)

        logger.debug("Payload for form %s passed validation", form.id)
        return dict(payload)

    def check(self, form: FormDefinition, payload: Mapping[str, Any]) -> ValidationResult:
        """Non-raising variant of validate for callers that branch on the outcome."""
        try:
            data = self.validate(form, payload)
        except FieldValidationError as e:
            logger.debug("Payload for form %s failed on '%s': %s", form.id, e.field_name, e.message)
            return ValidationResult(is_valid=False, error=e)
        return ValidationResult(is_valid=True, data=data)

    def _check_value(self, form_field: FormField, value: Any) -> None:
        schema = form_field.value_schema(self.settings.checkbox_allow_duplicates)
        error = best_match(Draft7Validator(schema).iter_errors(value))
        name = form_field.field_name

        if error is not None:
            if requires_options(form_field.field_type):
                if error.validator == "uniqueItems":
                    message = f"Field '{name}' repeats an option value"
                elif form_field.field_type == FieldType.CHECKBOX:
                    message = f"Field '{name}' must be a list drawn from: {', '.join(form_field.option_values)}"
                else:
                    message = f"Field '{name}' must be one of: {', '.join(form_field.option_values)}"
                raise InvalidOptionValue(
                    name, message=message, expected=form_field.option_values, received=value
                )
            raise InvalidFieldValue(
                name,
                message=f"Field '{name}' expects a {form_field.field_type.value} value",
                expected=form_field.field_type.value,
                received=type(value).__name__,
            )

        if form_field.field_type == FieldType.NUMBER:
            self._check_number(name, value)
        elif form_field.field_type == FieldType.DATE:
            self._check_date(name, value)

    @staticmethod
    def _check_number(name: str, value: Any) -> None:
        if isinstance(value, int):
            return
        if isinstance(value, str):
            if not NUMERIC_STRING.match(value):
                raise InvalidFieldValue(
                    name,
                    message=f"Field '{name}' is not a number",
                    expected="finite number",
                    received=value,
                )
            value = float(value)
        if not math.isfinite(value):
            raise InvalidFieldValue(
                name,
                message=f"Field '{name}' must be a finite number",
                expected="finite number",
                received=str(value),
            )

    @staticmethod
    def _check_date(name: str, value: str) -> None:
        try:
            parsed = isoparse(value) if CALENDAR_DATE.match(value) else None
        except (ValueError, OverflowError):
            parsed = None
        if parsed is not None:
            return
        raise InvalidFieldValue(
            name,
            message=f"Field '{name}' is not a valid date, expected YYYY-MM-DD",
            expected="YYYY-MM-DD",
            received=value,
        )


__all__ = [
    "SchemaValidator",
    "ValidationResult",
    "is_empty",
]
