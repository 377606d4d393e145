"""
Wire-safe query description consumed by repositories.

Every list/map field accepts either a python value or the URL-encoded JSON
string used on the wire, decoded independently per field:

    select   = ["name","id"]
    include  = ["group"] | {"group":{"required":true}}
    sort     = {"name":"ASC","id":"DESC"}
    where    = [[{"col":"name","op":"=","value":"X"}],[{"col":"active","op":"=","value":true}]]
    page     = 1
    limit    = 10
    includeDeleted = false
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, unquote

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator


class Operator(str, Enum):
    """Comparison operators understood by the where-clause compiler."""

    EQ = "="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    LIKE = "like"
    ILIKE = "ilike"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "notin"
    ANY = "any"
    IS_NULL = "isnull"
    YEAR = "year"
    ISOYEAR = "isoyear"
    MONTH = "month"
    DAY = "day"
    DOW = "dow"
    ISODOW = "isodow"
    DOY = "doy"

    @property
    def expects_sequence(self) -> bool:
        return self in ARRAY_OPERATORS

    @property
    def is_date_part(self) -> bool:
        return self in DATE_PART_OPERATORS


ARRAY_OPERATORS = frozenset({Operator.BETWEEN, Operator.IN, Operator.NOT_IN, Operator.ANY})
DATE_PART_OPERATORS = frozenset(
    {
        Operator.YEAR,
        Operator.ISOYEAR,
        Operator.MONTH,
        Operator.DAY,
        Operator.DOW,
        Operator.ISODOW,
        Operator.DOY,
    }
)


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


def decode_wire_value(value: Any) -> Any:
    """Decode a URL-encoded JSON string; any other value is returned unchanged."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if not isinstance(value, str):
        return value
    text = unquote(value).strip()
    if not text:
        return None
    return json.loads(text)


def encode_wire_value(value: Any) -> str:
    return quote(json.dumps(value, default=str, separators=(",", ":")))


class QueryFilter(BaseModel):
    """A single `column operator value` condition."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    column: str = Field(..., alias="col", min_length=1)
    operator: Operator = Field(..., alias="op")
    value: Any = None

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, v):
        # date_year, date_month, ... spellings used by older clients
        if isinstance(v, str):
            v = v.strip().lower()
            if v.startswith("date_"):
                v = v[len("date_"):]
        return v

    @model_validator(mode="after")
    def _check_value_shape(self) -> "QueryFilter":
        if self.operator is Operator.IS_NULL:
            return self
        is_sequence = isinstance(self.value, (list, tuple))
        if self.operator.expects_sequence and not is_sequence:
            raise ValueError(f"operator '{self.operator.value}' requires an array value")
        if not self.operator.expects_sequence and is_sequence:
            raise ValueError(f"operator '{self.operator.value}' requires a scalar value")
        if self.operator is Operator.BETWEEN and len(self.value) != 2:
            raise ValueError("operator 'between' requires exactly two values")
        return self

    @property
    def is_joined(self) -> bool:
        return "." in self.column

    def to_wire(self) -> Dict[str, Any]:
        return {"col": self.column, "op": self.operator.value, "value": self.value}


FilterMatrix = List[List[QueryFilter]]


class IncludeSetting(BaseModel):
    """Per-relation include configuration in the map form of an include spec."""

    model_config = ConfigDict(populate_by_name=True)

    required: bool = False
    nested: Optional["IncludeSpec"] = None

    @field_validator("nested", mode="before")
    @classmethod
    def _parse_nested(cls, v):
        return decode_wire_value(v)


IncludeSpec = Union[List[str], Dict[str, Union[bool, IncludeSetting]]]
IncludeSetting.model_rebuild()

SortSpec = Dict[str, SortDirection]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    @field_validator("select", "include", "where", mode="before", check_fields=False)
    @classmethod
    def _decode_json_fields(cls, v):
        return decode_wire_value(v)

    @field_validator("sort", mode="before", check_fields=False)
    @classmethod
    def _decode_sort(cls, v):
        v = decode_wire_value(v)
        if isinstance(v, dict):
            return {k: d.upper() if isinstance(d, str) else d for k, d in v.items()}
        return v

    @field_validator("include_deleted", "distinct", mode="before", check_fields=False)
    @classmethod
    def _decode_flags(cls, v):
        if v is None or v == "":
            return False
        return v

    def to_query_params(self) -> Dict[str, str]:
        """Encode the set fields into the per-field wire representation."""
        params: Dict[str, str] = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value is None:
                continue
            key = field.alias or name
            dumped = self._dump_field(value)
            if isinstance(dumped, bool):
                params[key] = "true" if dumped else "false"
            elif isinstance(dumped, (int, str)) and not isinstance(value, (list, dict)):
                params[key] = str(dumped)
            else:
                params[key] = encode_wire_value(dumped)
        return params

    @staticmethod
    def _dump_field(value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json", by_alias=True, exclude_none=True)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, list):
            return [_WireModel._dump_field(v) for v in value]
        if isinstance(value, dict):
            return {k: _WireModel._dump_field(v) for k, v in value.items()}
        return value


class FindOptions(_WireModel):
    """Projection, relation, ordering and visibility options for single-row lookups."""

    select: Optional[List[str]] = None
    include: Optional[IncludeSpec] = None
    sort: Optional[SortSpec] = None
    include_deleted: bool = Field(default=False, alias="includeDeleted")

    def add_select(self, columns: List[str]) -> "FindOptions":
        self.select = [*(self.select or []), *columns]
        return self

    def add_include(self, include: IncludeSpec) -> "FindOptions":
        current = self.include
        if isinstance(include, list):
            if isinstance(current, dict):
                merged: Dict[str, Any] = dict(current)
                merged.update({name: False for name in include if name not in merged})
                self.include = merged
            else:
                self.include = [*(current or []), *include]
        else:
            if isinstance(current, list):
                merged = {name: False for name in current}
            else:
                merged = dict(current or {})
            merged.update(include)
            self.include = merged
        return self

    def add_sort(self, sort: Dict[str, Any]) -> "FindOptions":
        self.sort = {**(self.sort or {}), **sort}
        return self

    def set_include_deleted(self, include_deleted: bool) -> "FindOptions":
        self.include_deleted = include_deleted
        return self


class QueryOptions(FindOptions):
    """Full query description: FindOptions plus filter matrix and pagination."""

    where: Optional[FilterMatrix] = None
    page: Optional[int] = None
    limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("page", "limit", mode="before")
    @classmethod
    def _parse_int(cls, v, info: ValidationInfo):
        if v is None or v == "":
            return None
        v = int(v)
        # a zero limit means no pagination
        if info.field_name == "limit" and v == 0:
            return None
        return v

    @property
    def normalized_page(self) -> int:
        """1-based page; anything below 1 (or unset) is page 1."""
        return self.page if self.page and self.page > 0 else 1

    @property
    def offset(self) -> Optional[int]:
        """Row offset implied by page and limit; None when not paginating."""
        if not self.limit:
            return None
        return (self.normalized_page - 1) * self.limit

    def add_where(self, groups: FilterMatrix | List[List[Dict[str, Any]]]) -> "QueryOptions":
        """Append OR-groups to the current filter matrix."""
        self.where = [*(self.where or []), *groups]
        return self

    def set_page(self, page: Optional[int]) -> "QueryOptions":
        self.page = page
        return self

    def set_limit(self, limit: Optional[int]) -> "QueryOptions":
        self.limit = limit
        return self


class CountOptions(_WireModel):
    """Aggregate count description, optionally grouped."""

    include: Optional[IncludeSpec] = None
    where: Optional[FilterMatrix] = None
    include_deleted: bool = Field(default=False, alias="includeDeleted")
    distinct: bool = False
    col: Optional[str] = None
    group: Optional[Union[str, List[str]]] = None

    @field_validator("group", mode="before")
    @classmethod
    def _parse_group(cls, v):
        if isinstance(v, str):
            text = unquote(v).strip()
            if text.startswith(("[", "\"")):
                return json.loads(text)
            return text or None
        return v

    @property
    def group_columns(self) -> List[str]:
        if self.group is None:
            return []
        if isinstance(self.group, str):
            return [self.group]
        return list(self.group)
