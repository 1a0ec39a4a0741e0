"""Form definitions: fields, options and structural checks.

A FormDefinition owns an ordered list of FormFields. Each field has a type
from the field type catalog; option-backed types (select, radio, checkbox)
carry a non-empty list of FieldOptions with unique values, every other type
carries none.

This module is a validation and query layer over data supplied by a
repository; it performs no persistence of its own.

Usage:
    >>> form = FormDefinition(id=1, name="Signup", created_by_user_id=1)
    >>> form.add_field(FormField(field_name="country", field_type=FieldType.SELECT,
    ...                          options=[FieldOption("us", "United States")]))
    >>> form.validate_structure()
    >>> [f.field_name for f in form.ordered_fields()]
    ['country']
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from dynaform.errors import DuplicateOptionValue, InvalidFieldDefinition, NotFound
from dynaform.types import FieldType, parse_timestamp, requires_options, utc_now


# Wire shape of a field definition as accepted by FormField.from_dict
FIELD_DEFINITION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": ["integer", "null"]},
        "form_id": {"type": ["integer", "null"]},
        "field_name": {"type": "string", "minLength": 1},
        "field_type": {"enum": [t.value for t in FieldType]},
        "is_required": {"type": "boolean"},
        "order": {"type": "integer"},
        "options": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "properties": {
                    "value": {"type": "string"},
                    "label": {"type": "string"},
                },
                "required": ["value", "label"],
            },
        },
        "placeholder": {"type": ["string", "null"]},
        "created_at": {"type": ["string", "null"]},
        "updated_at": {"type": ["string", "null"]},
    },
    "required": ["field_name", "field_type"],
}

# Wire shape of a form definition as accepted by FormDefinition.from_dict
FORM_DEFINITION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": ["integer", "null"]},
        "name": {"type": "string", "minLength": 1},
        "description": {"type": ["string", "null"]},
        "is_active": {"type": "boolean"},
        "created_by_user_id": {"type": ["integer", "null"]},
        "fields": {"type": "array", "items": {"type": "object"}},
        "created_at": {"type": ["string", "null"]},
        "updated_at": {"type": ["string", "null"]},
    },
    "required": ["name"],
}

_field_definition_validator = Draft7Validator(FIELD_DEFINITION_SCHEMA)
_form_definition_validator = Draft7Validator(FORM_DEFINITION_SCHEMA)


def _check_shape(validator: Draft7Validator, data: Any, what: str) -> None:
    """Raise InvalidFieldDefinition for the most relevant shape error, if any."""
    error = best_match(validator.iter_errors(data))
    if error is None:
        return
    path = ".".join(str(p) for p in error.absolute_path)
    location = f" at '{path}'" if path else ""
    field_name = data.get("field_name") if isinstance(data, dict) else None
    raise InvalidFieldDefinition(
        f"Malformed {what}{location}: {error.message}",
        field_name=field_name if isinstance(field_name, str) else None,
        expected=error.validator_value if error.validator != "required" else None,
    )


def _parse_stamp(data: Dict[str, Any], key: str) -> Optional[datetime]:
    """Parse an optional ISO 8601 timestamp from a shape-checked dict."""
    try:
        return parse_timestamp(data.get(key))
    except (ValueError, OverflowError) as e:
        field_name = data.get("field_name")
        raise InvalidFieldDefinition(
            f"Malformed timestamp at '{key}': {e}",
            field_name=field_name if isinstance(field_name, str) else None,
            expected="ISO 8601 timestamp",
            received=data.get(key),
        ) from e


@dataclass(frozen=True)
class FieldOption:
    """One accepted value of an option-backed field.

    ``value`` is what submissions store; ``label`` is for display only.
    """
    value: str
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "label": self.label}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldOption":
        return cls(value=data["value"], label=data["label"])


@dataclass
class FormField:
    """A single typed input slot of a form.

    Attributes:
        field_name: Key under which submissions carry this field's value
        field_type: Type from the field type catalog
        is_required: Whether submissions must provide a non-empty value
        order: Presentation and validation position; need not be unique
        options: Accepted values for select, radio and checkbox fields
        placeholder: Optional hint shown by renderers
        id: Repository-assigned identifier
        form_id: Identifier of the owning form
    """
    field_name: str
    field_type: FieldType
    is_required: bool = False
    order: int = 0
    options: Optional[List[FieldOption]] = None
    placeholder: Optional[str] = None
    id: Optional[int] = None
    form_id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not isinstance(self.field_type, FieldType):
            self.field_type = FieldType(self.field_type)
        if self.options is not None:
            self.options = [
                o if isinstance(o, FieldOption) else FieldOption.from_dict(o)
                for o in self.options
            ]

    @property
    def option_values(self) -> List[str]:
        """Option values in declaration order (empty for non-option types)."""
        return [o.value for o in self.options or []]

    def validate_definition(self) -> None:
        """Check that the option list agrees with the field type.

        Raises:
            InvalidFieldDefinition: Option-backed type without options, or
                options on a type that takes none
            DuplicateOptionValue: Two options share a value
        """
        if requires_options(self.field_type):
            if not self.options:
                raise InvalidFieldDefinition(
                    f"Field '{self.field_name}' of type '{self.field_type.value}' "
                    f"requires a non-empty option list",
                    field_name=self.field_name,
                    expected="non-empty options",
                    received=self.options,
                )
            seen = set()
            for option in self.options:
                if option.value in seen:
                    raise DuplicateOptionValue(
                        f"Field '{self.field_name}' declares option value "
                        f"'{option.value}' more than once",
                        field_name=self.field_name,
                        received=option.value,
                    )
                seen.add(option.value)
        elif self.options is not None:
            raise InvalidFieldDefinition(
                f"Field '{self.field_name}' of type '{self.field_type.value}' "
                f"does not accept options",
                field_name=self.field_name,
                received=[o.to_dict() for o in self.options],
            )

    def value_schema(self, allow_duplicate_choices: bool = True) -> Dict[str, Any]:
        """JSON Schema fragment describing an accepted payload value.

        Number and date values need checks beyond JSON Schema (finiteness,
        calendar validity); those are applied by the SchemaValidator.
        """
        if self.field_type in (FieldType.TEXT, FieldType.TEXTAREA):
            return {"type": "string"}
        if self.field_type == FieldType.NUMBER:
            return {"type": ["number", "string"]}
        if self.field_type == FieldType.DATE:
            return {"type": "string", "format": "date"}
        if self.field_type == FieldType.CHECKBOX:
            schema: Dict[str, Any] = {
                "type": "array",
                "items": {"type": "string", "enum": self.option_values},
            }
            if not allow_duplicate_choices:
                schema["uniqueItems"] = True
            return schema
        # select / radio
        return {"type": "string", "enum": self.option_values}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.id,
            "form_id": self.form_id,
            "field_name": self.field_name,
            "field_type": self.field_type.value,
            "is_required": self.is_required,
            "order": self.order,
            "options": [o.to_dict() for o in self.options] if self.options is not None else None,
            "placeholder": self.placeholder,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormField":
        """Create FormField from dict.

        Raises:
            InvalidFieldDefinition: If the dict does not have the field shape
        """
        _check_shape(_field_definition_validator, data, "field definition")
        now = utc_now()
        return cls(
            id=data.get("id"),
            form_id=data.get("form_id"),
            field_name=data["field_name"],
            field_type=FieldType(data["field_type"]),
            is_required=data.get("is_required", False),
            order=int(data.get("order", 0)),
            options=data.get("options"),
            placeholder=data.get("placeholder"),
            created_at=_parse_stamp(data, "created_at") or now,
            updated_at=_parse_stamp(data, "updated_at") or now,
        )


@dataclass
class FormDefinition:
    """A form plus its field list.

    Attributes:
        name: Display name
        description: Optional free text
        is_active: Inactive forms are hidden from submitters but stay editable
        created_by_user_id: Authoring user
        fields: Fields in insertion order; use ordered_fields() for presentation order
        id: Repository-assigned identifier
    """
    name: str
    description: Optional[str] = None
    is_active: bool = True
    created_by_user_id: Optional[int] = None
    fields: List[FormField] = field(default_factory=list)
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def validate_structure(self) -> None:
        """Check every field's definition, in presentation order.

        Raises:
            InvalidFieldDefinition: See FormField.validate_definition
            DuplicateOptionValue: See FormField.validate_definition
        """
        for form_field in self.ordered_fields():
            form_field.validate_definition()

    def ordered_fields(self) -> Iterator[FormField]:
        """Iterate fields by ascending ``order``; ties keep insertion order.

        Each call returns a fresh iterator, so the sequence can be consumed
        repeatedly and always yields the same fields in the same order.
        """
        return iter(sorted(self.fields, key=lambda f: f.order))

    def is_submittable(self) -> bool:
        """Whether ordinary actors may submit against this form."""
        return self.is_active

    def get_field(self, field_id: int) -> FormField:
        """Look up a field of this form by ID.

        Args:
            field_id: Repository-assigned field identifier

        Returns:
            The field itself (not a copy)

        Raises:
            NotFound: If no field of this form has that ID
        """
        for form_field in self.fields:
            if form_field.id == field_id:
                return form_field
        raise NotFound(f"Form field {field_id} not found on form {self.id}")

    def add_field(self, form_field: FormField) -> None:
        """Append a field and point its ``form_id`` at this form.

        Structure is not re-checked here; call validate_structure afterwards.
        """
        form_field.form_id = self.id
        self.fields.append(form_field)

    def remove_field(self, field_id: int) -> FormField:
        """Detach a field from this form.

        Args:
            field_id: Repository-assigned field identifier

        Returns:
            The removed field

        Raises:
            NotFound: If no field of this form has that ID
        """
        form_field = self.get_field(field_id)
        self.fields = [f for f in self.fields if f is not form_field]
        return form_field

    def to_json_schema(self, allow_duplicate_choices: bool = True) -> Dict[str, Any]:
        """Describe the submission payload contract as a Draft 7 JSON Schema.

        Unknown keys are allowed since submissions may carry them.
        """
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for form_field in self.ordered_fields():
            prop = form_field.value_schema(allow_duplicate_choices)
            if form_field.options:
                prop["description"] = ", ".join(
                    f"{o.value}={o.label}" for o in form_field.options
                )
            properties[form_field.field_name] = prop
            if form_field.is_required:
                required.append(form_field.field_name)
        schema: Dict[str, Any] = {
            "$schema": "http://json-schema.org/draft-07/schema#",
            "title": self.name,
            "type": "object",
            "properties": properties,
            "required": required,
        }
        if self.description:
            schema["description"] = self.description
        return schema

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization; fields are in presentation order."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "fields": [f.to_dict() for f in self.ordered_fields()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormDefinition":
        """Create FormDefinition from dict.

        Raises:
            InvalidFieldDefinition: If the form or any field is malformed
        """
        _check_shape(_form_definition_validator, data, "form definition")
        now = utc_now()
        return cls(
            id=data.get("id"),
            name=data["name"],
            description=data.get("description"),
            is_active=data.get("is_active", True),
            created_by_user_id=data.get("created_by_user_id"),
            fields=[FormField.from_dict(f) for f in data.get("fields", [])],
            created_at=_parse_stamp(data, "created_at") or now,
            updated_at=_parse_stamp(data, "updated_at") or now,
        )


__all__ = [
    "FIELD_DEFINITION_SCHEMA",
    "FORM_DEFINITION_SCHEMA",
    "FieldOption",
    "FormField",
    "FormDefinition",
]
