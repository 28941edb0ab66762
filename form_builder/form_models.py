"""
Schema model for the form builder.

Pydantic models for forms and their fields. Field aliases are the property
names of the stored JSON documents, so ``model_validate`` on a stored entry
and ``to_dict`` on a model round-trip without loss.
"""

from typing import Any, Dict, List, Literal, Optional, Union, get_args
import uuid
import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

FieldType = Literal['text', 'number', 'textarea', 'select', 'radio', 'checkbox', 'date']

FIELD_TYPES = get_args(FieldType)

CHOICE_FIELD_TYPES = {'select', 'radio', 'checkbox'}

Scalar = Union[bool, int, float, str]


def needs_options(field_type: str) -> bool:
    """Return True if the field type renders a list of options."""
    return field_type in CHOICE_FIELD_TYPES


def new_field_id() -> str:
    """Generate an opaque, stable field identifier."""
    return str(uuid.uuid4())


class _SchemaModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the stored JSON shape, omitting unset optional keys."""
        return self.model_dump(by_alias=True, exclude_none=True, mode='json')


class ValidationRules(_SchemaModel):
    """Declarative rule set; every rule is optional."""

    required: Optional[bool] = None
    # stored bounds may be any number; the editor only writes non-negative integers
    min_length: Optional[Union[int, float]] = Field(default=None, alias='minLength')
    max_length: Optional[Union[int, float]] = Field(default=None, alias='maxLength')
    email: Optional[bool] = None
    password_rule: Optional[bool] = Field(default=None, alias='passwordRule')

    def is_empty(self) -> bool:
        return not any([self.required, self.min_length, self.max_length,
                        self.email, self.password_rule])


class DerivedFieldConfig(_SchemaModel):
    """Inputs and formula of a computed field."""

    parent_fields: List[str] = Field(default_factory=list, alias='parentFields')
    formula: str = ''

    @field_validator('parent_fields')
    @classmethod
    def _dedupe_parents(cls, value: List[str]) -> List[str]:
        # ordered set: keep the first occurrence of each id
        return list(dict.fromkeys(value))


class FormField(_SchemaModel):
    """A single field of a form."""

    id: str = Field(default_factory=new_field_id, min_length=1)
    type: FieldType = 'text'
    label: str = ''
    default_value: Optional[Scalar] = Field(default=None, alias='defaultValue')
    validations: Optional[ValidationRules] = None
    options: Optional[List[str]] = None
    derived: Optional[DerivedFieldConfig] = None

    @model_validator(mode='after')
    def _normalize_options(self) -> 'FormField':
        if not needs_options(self.type) and self.options is not None:
            logger.debug(f"Dropping options on non-choice field {self.id} ({self.type})")
            self.options = None
        return self

    @property
    def is_derived(self) -> bool:
        return self.derived is not None

    @property
    def parent_ids(self) -> List[str]:
        return list(self.derived.parent_fields) if self.derived else []


class FormSchema(_SchemaModel):
    """A named, ordered collection of fields."""

    id: str = ''
    name: str = ''
    created_at: str = Field(default='', alias='createdAt')
    fields: List[FormField] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> 'FormSchema':
        """Blank in-progress schema."""
        return cls(id='', name='', created_at='', fields=[])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FormSchema':
        return cls.model_validate(data)

    def find_field(self, field_id: str) -> Optional[FormField]:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None

    def field_index(self, field_id: str) -> int:
        """Position of the field, or -1 when absent."""
        for index, field in enumerate(self.fields):
            if field.id == field_id:
                return index
        return -1

    def field_ids(self) -> List[str]:
        return [field.id for field in self.fields]
