"""Entity descriptors — explicit key and field metadata per entity type.

A descriptor is derived once per entity type (or supplied by the caller) and
answers the two questions every adapter needs: *which values identify this
item* and *how are field values copied from one instance onto another*.

Descriptors can be generated for:

- SQLAlchemy mapped classes (keys from the mapper's primary key)
- pydantic models
- dataclasses

For pydantic models and dataclasses, key fields are resolved in order from the
explicit ``key_fields`` argument, fields marked with
``json_schema_extra={"primary_key": True}`` / ``metadata={"primary_key": True}``,
and finally the naming convention ``id`` / ``<classname>_id`` / ``<classname>id``.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, get_type_hints

import sqlalchemy as sa
from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy.exc import NoInspectionAvailable

from qaud_datastore.exceptions import InvalidKeyError, InvalidOperationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class EntityDescriptor(Generic[T]):
    """Key and field metadata for one entity type."""

    entity_type: type[T]
    key_fields: tuple[str, ...]
    fields: tuple[str, ...]
    factory: Callable[[], T]
    dump: Callable[[T], dict[str, Any]]
    load: Callable[[Mapping[str, Any]], T]
    # Whether a value fits the named field; checked before assigning a generated key.
    accepts_value: Callable[[str, Any], bool] = lambda name, value: True

    def __post_init__(self) -> None:
        unknown = [name for name in self.key_fields if name not in self.fields]
        if unknown:
            raise ValueError(f"Key fields {unknown} are not fields of {self.entity_type.__name__}")

    @property
    def entity_name(self) -> str:
        return self.entity_type.__name__

    @property
    def has_keys(self) -> bool:
        return bool(self.key_fields)

    @property
    def value_fields(self) -> tuple[str, ...]:
        """All non-key fields, in declared order."""
        return tuple(name for name in self.fields if name not in self.key_fields)

    # -- Keys -----------------------------------------------------------------

    def require_keys(self, operation: str) -> None:
        """Raise :class:`InvalidOperationError` if the type declares no key fields."""
        if not self.key_fields:
            logger.error("%s on %s rejected: type has no key fields", operation, self.entity_name)
            raise InvalidOperationError(
                entity_name=self.entity_name,
                operation=operation,
                detail=f"Type does not have key fields: {self.entity_type.__module__}.{self.entity_type.__qualname__}",
            )

    def check_key(self, key_values: Sequence[Any], operation: str = "find") -> tuple[Any, ...]:
        """Validate that *key_values* matches the declared key fields one-to-one."""
        self.require_keys(operation)
        if len(key_values) != len(self.key_fields):
            logger.error(
                "%s on %s rejected: expected %d key values, got %d",
                operation,
                self.entity_name,
                len(self.key_fields),
                len(key_values),
            )
            raise InvalidKeyError(
                entity_name=self.entity_name,
                operation=operation,
                detail=(
                    f"Expected {len(self.key_fields)} key value(s) for {list(self.key_fields)}, "
                    f"got {len(key_values)}."
                ),
            )
        return tuple(key_values)

    def key_values(self, obj: Any, operation: str = "find_match") -> tuple[Any, ...]:
        """Extract the key values of *obj* in declared key order.

        *obj* may be an entity instance, any object carrying the key
        attributes, or a mapping.
        """
        self.require_keys(operation)
        values: list[Any] = []
        for name in self.key_fields:
            if isinstance(obj, Mapping):
                present = name in obj
                value = obj.get(name)
            else:
                present = hasattr(obj, name)
                value = getattr(obj, name, None)
            if not present:
                raise InvalidKeyError(
                    entity_name=self.entity_name,
                    operation=operation,
                    detail=f"Key field '{name}' is missing from the supplied object.",
                )
            values.append(value)
        return tuple(values)

    # -- Field copying --------------------------------------------------------

    def apply_changes(self, target: T, source: Any) -> T:
        """Copy every non-key field of *source* onto *target*, in place."""
        for name in self.value_fields:
            setattr(target, name, _read(source, name))
        return target

    def specified_values(self, changes: Any) -> dict[str, Any]:
        """The non-key field values actually carried by *changes*.

        Key fields and names that are not fields of the entity are skipped.
        """
        allowed = set(self.value_fields)
        return {name: value for name, value in _specified_fields(changes, self.fields) if name in allowed}

    def apply_partial(self, target: T, changes: Any) -> T:
        """Copy only the fields specified on *changes* onto *target*."""
        for name, value in self.specified_values(changes).items():
            setattr(target, name, value)
        return target

    # -- Generators -----------------------------------------------------------

    @classmethod
    def for_mapped_class(cls, entity_type: type[T], key_fields: Sequence[str] | None = None) -> EntityDescriptor[T]:
        """Build a descriptor from a SQLAlchemy mapped class.

        Keys default to the mapper's primary key columns.
        """
        mapper = sa.inspect(entity_type)
        if key_fields is not None:
            keys = tuple(key_fields)
        else:
            keys = tuple(mapper.get_property_by_column(col).key for col in mapper.primary_key)
        names = tuple(attr.key for attr in mapper.column_attrs)

        def accepts_value(name: str, value: Any) -> bool:
            try:
                python_type = mapper.column_attrs[name].columns[0].type.python_type
            except NotImplementedError:
                return True
            return isinstance(value, python_type)

        def dump(obj: T) -> dict[str, Any]:
            return {name: getattr(obj, name) for name in names}

        def load(doc: Mapping[str, Any]) -> T:
            return entity_type(**{k: v for k, v in doc.items() if k in names})

        return cls(
            entity_type=entity_type,
            key_fields=keys,
            fields=names,
            factory=entity_type,
            dump=dump,
            load=load,
            accepts_value=accepts_value,
        )

    @classmethod
    def for_model(cls, entity_type: type[T], key_fields: Sequence[str] | None = None) -> EntityDescriptor[T]:
        """Build a descriptor from a pydantic model class."""
        model_fields = entity_type.model_fields  # type: ignore[attr-defined]
        names = tuple(model_fields)
        if key_fields is not None:
            keys = tuple(key_fields)
        else:
            keys = tuple(
                name
                for name, info in model_fields.items()
                if isinstance(info.json_schema_extra, dict) and info.json_schema_extra.get("primary_key")
            ) or _convention_keys(entity_type, names)
        required = [name for name, info in model_fields.items() if info.is_required()]

        def factory() -> T:
            return entity_type.model_construct(**{name: None for name in required})  # type: ignore[attr-defined]

        def dump(obj: T) -> dict[str, Any]:
            return obj.model_dump()  # type: ignore[attr-defined]

        def load(doc: Mapping[str, Any]) -> T:
            return entity_type.model_validate(dict(doc))  # type: ignore[attr-defined]

        def accepts_value(name: str, value: Any) -> bool:
            return _validates(model_fields[name].annotation, value)

        return cls(
            entity_type=entity_type,
            key_fields=keys,
            fields=names,
            factory=factory,
            dump=dump,
            load=load,
            accepts_value=accepts_value,
        )

    @classmethod
    def for_dataclass(cls, entity_type: type[T], key_fields: Sequence[str] | None = None) -> EntityDescriptor[T]:
        """Build a descriptor from a dataclass."""
        dc_fields = dataclasses.fields(entity_type)  # type: ignore[arg-type]
        names = tuple(f.name for f in dc_fields)
        if key_fields is not None:
            keys = tuple(key_fields)
        else:
            keys = tuple(f.name for f in dc_fields if f.metadata.get("primary_key")) or _convention_keys(
                entity_type, names
            )
        required = [
            f.name
            for f in dc_fields
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING and f.init
        ]

        def factory() -> T:
            return entity_type(**{name: None for name in required})

        def dump(obj: T) -> dict[str, Any]:
            return dataclasses.asdict(obj)  # type: ignore[call-overload]

        def load(doc: Mapping[str, Any]) -> T:
            return entity_type(**{k: v for k, v in doc.items() if k in names})

        def accepts_value(name: str, value: Any) -> bool:
            return _validates(get_type_hints(entity_type)[name], value)

        return cls(
            entity_type=entity_type,
            key_fields=keys,
            fields=names,
            factory=factory,
            dump=dump,
            load=load,
            accepts_value=accepts_value,
        )


_DESCRIPTORS: dict[tuple[type, tuple[str, ...] | None], EntityDescriptor[Any]] = {}


def describe(entity_type: type[T], key_fields: Sequence[str] | None = None) -> EntityDescriptor[T]:
    """Return the (cached) descriptor for *entity_type*.

    Raises:
        TypeError: If the type is not a mapped class, pydantic model or dataclass.
    """
    cache_key = (entity_type, tuple(key_fields) if key_fields is not None else None)
    cached = _DESCRIPTORS.get(cache_key)
    if cached is not None:
        return cached

    if _is_mapped(entity_type):
        descriptor: EntityDescriptor[Any] = EntityDescriptor.for_mapped_class(entity_type, key_fields)
    elif isinstance(entity_type, type) and issubclass(entity_type, BaseModel):
        descriptor = EntityDescriptor.for_model(entity_type, key_fields)
    elif dataclasses.is_dataclass(entity_type):
        descriptor = EntityDescriptor.for_dataclass(entity_type, key_fields)
    else:
        raise TypeError(
            f"Cannot derive a descriptor for {entity_type!r}. "
            "Pass an EntityDescriptor explicitly for plain classes."
        )

    logger.debug("Derived descriptor for %s: keys=%s", descriptor.entity_name, descriptor.key_fields)
    _DESCRIPTORS[cache_key] = descriptor
    return descriptor


def _is_mapped(entity_type: Any) -> bool:
    try:
        sa.inspect(entity_type)
    except NoInspectionAvailable:
        return False
    return True


def _convention_keys(entity_type: type, names: Sequence[str]) -> tuple[str, ...]:
    """Resolve a key by naming convention: ``id``, ``<classname>_id`` or ``<classname>id``."""
    type_name = entity_type.__name__.lower()
    candidates = ("id", f"{type_name}_id", f"{type_name}id")
    for candidate in candidates:
        for name in names:
            if name.lower() == candidate:
                return (name,)
    return ()


def _validates(annotation: Any, value: Any) -> bool:
    """True when *value* passes strict validation against *annotation*."""
    try:
        TypeAdapter(annotation).validate_python(value, strict=True)
    except ValidationError:
        return False
    return True


def _read(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _specified_fields(changes: Any, names: Sequence[str]) -> Iterator[tuple[str, Any]]:
    """Yield the ``(name, value)`` pairs actually carried by *changes*."""
    if isinstance(changes, Mapping):
        yield from changes.items()
    elif isinstance(changes, BaseModel):
        for name in changes.model_fields_set:
            yield name, getattr(changes, name)
    else:
        for name in names:
            value = getattr(changes, name, None)
            if value is not None:
                yield name, value
