"""Pydantic models describing the filter fields of a list view."""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


class FieldType(str, Enum):
    """How a filter value is typed and carried in the query string."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    ENUM = "enum"


class FieldSpec(BaseModel):
    """A single named filter field with its default and URL encoding."""

    name: str = Field(..., description="Attribute name used in FilterState")
    type: FieldType = Field(default=FieldType.STRING)
    default: Any = Field(default=None, description="Value that is never written to the URL")
    param: Optional[str] = Field(default=None, description="Query-string key; defaults to name")
    aliases: List[str] = Field(
        default_factory=list,
        description="Legacy query-string keys accepted when decoding",
    )
    choices: List[str] = Field(default_factory=list, description="Allowed values for enum fields")
    minimum: Optional[float] = Field(default=None)
    maximum: Optional[float] = Field(default=None)
    delimiter: str = Field(default="|", description="Joins list items in a single parameter")
    repeat: bool = Field(
        default=False,
        description="Write each list item as its own parameter (brand=a&brand=b)",
    )
    resets_page: bool = Field(
        default=True,
        description="Changing this field sends the view back to its first page",
    )

    @property
    def key(self) -> str:
        return self.param or self.name

    @property
    def nullable(self) -> bool:
        return self.default is None

    def default_value(self) -> Any:
        return copy.deepcopy(self.default)

    def is_default(self, value: Any) -> bool:
        return value == self.default

    def coerce(self, value: Any) -> Any:
        """Validate a user-supplied value and return it in canonical form.

        Raises ValueError / TypeError for anything the field cannot hold; the
        caller decides how to surface that.
        """
        if value is None:
            if self.nullable:
                return None
            raise TypeError(f"{self.name} does not accept None")

        if self.type is FieldType.STRING:
            if not isinstance(value, str):
                raise TypeError(f"{self.name} expects text, got {type(value).__name__}")
            return value

        if self.type is FieldType.BOOLEAN:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
                return value.strip().lower() in _TRUE_STRINGS
            raise ValueError(f"{self.name} expects a boolean, got {value!r}")

        if self.type in (FieldType.INTEGER, FieldType.NUMBER):
            if isinstance(value, bool):
                raise TypeError(f"{self.name} expects a number, got a boolean")
            if isinstance(value, str):
                text = value.strip()
                if not text and self.nullable:
                    return None
                try:
                    number = int(text) if self.type is FieldType.INTEGER else float(text)
                except ValueError:
                    raise ValueError(f"{self.name} expects a number, got {value!r}") from None
            elif isinstance(value, (int, float)):
                number = value
            else:
                raise TypeError(f"{self.name} expects a number, got {type(value).__name__}")
            if self.type is FieldType.INTEGER:
                if isinstance(number, float) and not number.is_integer():
                    raise ValueError(f"{self.name} expects a whole number, got {value!r}")
                number = int(number)
            elif number != number or number in (float("inf"), float("-inf")):
                raise ValueError(f"{self.name} expects a finite number, got {value!r}")
            else:
                number = float(number)
            if self.minimum is not None and number < self.minimum:
                raise ValueError(f"{self.name} must be >= {self.minimum:g}")
            if self.maximum is not None and number > self.maximum:
                raise ValueError(f"{self.name} must be <= {self.maximum:g}")
            return number

        if self.type is FieldType.ENUM:
            if value not in self.choices:
                raise ValueError(f"{self.name} must be one of {', '.join(self.choices)}")
            return value

        # LIST
        if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
            raise TypeError(f"{self.name} expects a list of values")
        items = [str(item) for item in value]
        if any(item == "" for item in items):
            raise ValueError(f"{self.name} does not accept empty items")
        return items


class QuerySchema(BaseModel):
    """Ordered declaration of every filter field a list view carries."""

    name: str
    specs: List[FieldSpec] = Field(default_factory=list)
    page_field: Optional[str] = Field(default="page")
    page_size_field: Optional[str] = Field(default="page_size")

    @model_validator(mode="after")
    def _check_fields(self) -> "QuerySchema":
        names = [spec.name for spec in self.specs]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field names in schema '{self.name}'")
        keys: List[str] = []
        for spec in self.specs:
            keys.append(spec.key)
            keys.extend(spec.aliases)
        if len(keys) != len(set(keys)):
            raise ValueError(f"Duplicate query keys in schema '{self.name}'")
        for special in (self.page_field, self.page_size_field):
            if special is not None and special not in names:
                raise ValueError(f"Schema '{self.name}' has no field '{special}'")
        return self

    def field(self, name: str) -> FieldSpec:
        for spec in self.specs:
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown field '{name}' for view '{self.name}'")

    def has_field(self, name: str) -> bool:
        return any(spec.name == name for spec in self.specs)

    def defaults(self) -> Dict[str, Any]:
        return {spec.name: spec.default_value() for spec in self.specs}
