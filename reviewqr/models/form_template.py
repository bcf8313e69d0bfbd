"""
reviewqr/models/form_template.py

Custom review-form templates.

A template lists the extra fields a business asks for on its public review
form, on top of rating and feedback. At most one template per business is
active; its fields drive validation of `formData` on submission.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FormFieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RATING = "rating"


class FormField(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z][A-Za-z0-9_]*$")
    label: str = Field(..., min_length=1, max_length=200)
    type: FormFieldType = FormFieldType.TEXT
    required: bool = False
    placeholder: Optional[str] = None
    options: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_options(self) -> "FormField":
        if self.type == FormFieldType.SELECT and not self.options:
            raise ValueError("select fields need at least one option")
        return self


def _check_unique_keys(fields: Optional[List[FormField]]) -> Optional[List[FormField]]:
    if fields is None:
        return fields
    keys = [field.key for field in fields]
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        raise ValueError(f"duplicate field keys: {', '.join(duplicates)}")
    return fields


class FormTemplateInput(BaseModel):
    """Create payload."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    settings: Optional[Dict[str, Any]] = None

    @field_validator("fields")
    @classmethod
    def unique_keys(cls, value: List[FormField]) -> List[FormField]:
        return _check_unique_keys(value)


class FormTemplateUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value. `fields` replaces the whole list."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    fields: Optional[List[FormField]] = None
    settings: Optional[Dict[str, Any]] = None

    @field_validator("fields")
    @classmethod
    def unique_keys(cls, value: Optional[List[FormField]]) -> Optional[List[FormField]]:
        return _check_unique_keys(value)


class FormTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    name: str
    description: Optional[str] = None
    fields: List[FormField]
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    created_at: datetime
    updated_at: datetime
