from .builder import JoinPlan, SelectBuilder
from .filters import (
    CountOptions,
    FilterMatrix,
    FindOptions,
    IncludeSetting,
    Operator,
    QueryFilter,
    QueryOptions,
    SortDirection,
    decode_wire_value,
    encode_wire_value,
)
from .includes import IncludeResolver, Relation, Relations
from .where import WhereCompiler

__all__ = [
    "CountOptions",
    "FilterMatrix",
    "FindOptions",
    "IncludeResolver",
    "IncludeSetting",
    "JoinPlan",
    "Operator",
    "QueryFilter",
    "QueryOptions",
    "Relation",
    "Relations",
    "SelectBuilder",
    "SortDirection",
    "WhereCompiler",
    "decode_wire_value",
    "encode_wire_value",
]
