# models/entity.py
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Tuple

from pydantic import BaseModel, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
REQUIRED_FIELDS = ("name", "age", "email")
# Fields clients may write; id and timestamps are server-managed
WRITABLE_FIELDS = REQUIRED_FIELDS


@dataclass(frozen=True)
class EntityKind:
    name: str        # "student"
    collection: str  # "students"
    label: str       # "Student"


class EntityFields(BaseModel):
    """Normalized name/age/email of a Student or Instructor."""

    name: str
    age: int
    email: str

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError("invalid name")
        return value.strip()

    @field_validator("age", mode="before")
    @classmethod
    def coerce_age(cls, value):
        age = _to_int(value)
        if age is None or age < 1:
            raise ValueError("invalid age")
        return age

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        if not isinstance(value, str):
            raise ValueError("invalid email format")
        email = value.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValueError("invalid email format")
        return email


class Entity(EntityFields):
    id: str
    createdAt: datetime
    updatedAt: datetime


class SearchResult(BaseModel):
    name: str
    age: int
    email: str


def _to_int(value):
    # bool is an int subclass but never a valid age
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"[+-]?[0-9]+", text):
            return int(text)
    return None


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _build(fields: Dict[str, Any]) -> EntityFields:
    try:
        return EntityFields(**fields)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = str(error["loc"][0]) if error.get("loc") else None
        cause = error.get("ctx", {}).get("error")
        raise ValidationError(str(cause) if cause else error["msg"], field) from None


def validate_entity(fields: Dict[str, Any]) -> EntityFields:
    """Validate a complete record for creation."""
    for field in REQUIRED_FIELDS:
        if _is_missing(fields.get(field)):
            raise ValidationError("missing required field", field)
    return _build({field: fields[field] for field in REQUIRED_FIELDS})


def validate_update(existing: Dict[str, Any], changes: Dict[str, Any]) -> Tuple[EntityFields, Dict[str, Any]]:
    """Validate a partial update against the stored record.

    Returns the normalized merged record and the normalized values of the
    fields that were supplied. Anything outside WRITABLE_FIELDS is dropped.
    """
    supplied = {k: v for k, v in changes.items() if k in WRITABLE_FIELDS}
    for field, value in supplied.items():
        if _is_missing(value):
            raise ValidationError("missing required field", field)

    merged = {field: existing.get(field) for field in REQUIRED_FIELDS}
    merged.update(supplied)
    record = validate_entity(merged)
    applied = {field: getattr(record, field) for field in supplied}
    return record, applied
