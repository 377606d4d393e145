"""
Explicit conversions between mapped entities, plain mappings and identifiers.

Repositories accept either mapped instances or plain mappings; these helpers
read and build column values through the mapper instead of walking arbitrary
object graphs.
"""
from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, Mapping, Optional, Type, TypeVar

from sqlalchemy import Uuid, inspect

from tenant_query.core.errors import ConfigurationError

T = TypeVar("T")

_PRIMITIVES = (str, int, float, bytes)


def column_keys(model: Type[Any]) -> list[str]:
    """Attribute names of the model's mapped columns, in mapper order."""
    return [attr.key for attr in inspect(model).column_attrs]


def primary_key_name(model: Type[Any]) -> str:
    pk = inspect(model).primary_key
    if len(pk) != 1:
        raise ValueError(f"{model.__name__} must have exactly one primary key column")
    return inspect(model).get_property_by_column(pk[0]).key


def has_column(model: Type[Any], name: str) -> bool:
    return name in inspect(model).column_attrs


# PUBLIC_INTERFACE
def coerce_value(column: Any, value: Any) -> Any:
    """
    Convert wire strings into uuid.UUID for UUID columns (element-wise for
    sequences). Other values pass through unchanged.
    """
    if not isinstance(getattr(column, "type", None), Uuid):
        return value
    if isinstance(value, (list, tuple)):
        return [coerce_value(column, v) for v in value]
    if isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError:
            raise ConfigurationError(f"Invalid UUID value {value!r} for {column}") from None
    return value


def _coerce_columns(model: Type[Any], values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: coerce_value(getattr(model, k), v) for k, v in values.items()}


# PUBLIC_INTERFACE
def resolve_identifier(value: Any, field: str = "id") -> Optional[Any]:
    """
    Return the identifier represented by value.

    A primitive (or UUID) is the identifier itself; a mapping or object has its
    identifier read from `field`. Empty strings resolve to None.
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        identifier = value.get(field)
    elif isinstance(value, _PRIMITIVES) or not hasattr(value, "__dict__"):
        identifier = value
    else:
        identifier = getattr(value, field, None)
    if identifier == "":
        return None
    return identifier


# PUBLIC_INTERFACE
def entity_values(model: Type[Any], entity: Any, *, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Collect the column values carried by entity.

    For mapped instances only attributes that were explicitly set (present in the
    instance state) are returned, so partially populated instances can drive an
    UPDATE without nulling other columns. Mappings contribute their keys that
    name columns; relation objects are translated to their foreign key.
    """
    keys = column_keys(model)
    skip = set(exclude)
    if isinstance(entity, Mapping):
        source = dict(foreign_key_from_relation(model, entity))
    else:
        source = inspect(entity).dict
    return _coerce_columns(model, {k: source[k] for k in keys if k in source and k not in skip})


# PUBLIC_INTERFACE
def foreign_key_from_relation(model: Type[Any], data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Translate `{"group": {"id": X}}` style relation payloads into `{"group_id": X}`
    when the model declares both the relationship and the `<name>_id` column.
    Explicit foreign key values already present in data win.
    """
    result = dict(data)
    relationships = inspect(model).relationships
    for key, value in data.items():
        if key not in relationships:
            continue
        fk = f"{key}_id"
        if fk in result or not has_column(model, fk):
            continue
        identifier = value.get("id") if isinstance(value, Mapping) else getattr(value, "id", None)
        if identifier is not None:
            result[fk] = identifier
    return result


# PUBLIC_INTERFACE
def build_entity(model: Type[T], entity: Any) -> T:
    """Return entity as an instance of model, constructing it from a mapping if needed."""
    if isinstance(entity, model):
        return entity
    if isinstance(entity, Mapping):
        values = foreign_key_from_relation(model, entity)
        keys = set(column_keys(model))
        return model(**_coerce_columns(model, {k: v for k, v in values.items() if k in keys}))
    raise TypeError(f"Cannot build {model.__name__} from {type(entity).__name__}")


# PUBLIC_INTERFACE
def copy_entity(source: T, *, clear_id: bool = False, include_relations: bool = True) -> T:
    """
    Build a new transient instance holding the loaded values of source.

    Loaded relations are copied one level deep (collections element-wise) into
    new transient instances; unloaded relations are left untouched.
    """
    model = type(source)
    mapper = inspect(model)
    state = inspect(source)
    loaded = state.dict
    values = {k: loaded[k] for k in column_keys(model) if k in loaded}
    if clear_id:
        values.pop(primary_key_name(model), None)
    target = model(**values)

    if include_relations:
        for rel in mapper.relationships:
            if rel.key not in loaded:
                continue
            value = loaded[rel.key]
            if value is None:
                setattr(target, rel.key, None)
            elif rel.uselist:
                setattr(target, rel.key, [copy_entity(v, include_relations=False) for v in value])
            else:
                setattr(target, rel.key, copy_entity(value, include_relations=False))
    return target
