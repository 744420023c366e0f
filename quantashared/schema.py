"""Table and attribute metadata, validation and structural comparison."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from typing import Any

from quantashared.convert import to_string

_BSI_STRATEGIES = frozenset(
    {
        "IntBSI",
        "FloatScaleBSI",
        "SysMillisBSI",
        "SysMicroBSI",
        "SysSecBSI",
        "StringHashBSI",
        "CustomBSI",
        "ParentRelation",
    }
)
_UNORDERED_TYPES = frozenset({"NotExist", "NotDefined", "JSON"})


class SchemaError(ValueError):
    """A schema is invalid, or an alteration of it is not allowed."""


def _as_str(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bool, int, float)):
        return to_string(raw)
    raise SchemaError(f"expected a string, got {type(raw).__name__}")


def _as_int(raw: Any) -> int:
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    raise SchemaError(f"expected an integer, got {type(raw).__name__}")


def _as_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    raise SchemaError(f"expected a boolean, got {type(raw).__name__}")


def _as_any(raw: Any) -> Any:
    return raw


def _as_config(raw: Any) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        raise SchemaError(f"expected a mapping, got {type(raw).__name__}")
    return {_as_str(key): _as_str(value) for key, value in raw.items()}


def _as_values(raw: Any) -> list[EnumValue]:
    if not isinstance(raw, list):
        raise SchemaError(f"expected a list of values, got {type(raw).__name__}")
    return [_build(EnumValue, item) for item in raw]


def _as_attributes(raw: Any) -> list[BasicAttribute]:
    if not isinstance(raw, list):
        raise SchemaError(f"expected a list of attributes, got {type(raw).__name__}")
    return [_build(BasicAttribute, item) for item in raw]


def _yaml(
    tag: str,
    convert: Callable[[Any], Any],
    default: Any = None,
    *,
    omitempty: bool = True,
    factory: Callable[[], Any] | None = None,
) -> Any:
    metadata = {"yaml": tag, "omitempty": omitempty, "convert": convert}
    if factory is not None:
        return dataclasses.field(default_factory=factory, metadata=metadata)
    return dataclasses.field(default=default, metadata=metadata)


def _build(cls: type, data: Any) -> Any:
    if not isinstance(data, Mapping):
        raise SchemaError(f"expected a mapping for {cls.__name__}, got {type(data).__name__}")
    kwargs: dict[str, Any] = {}
    for field in dataclasses.fields(cls):
        tag = field.metadata.get("yaml")
        if not tag or data.get(tag) is None:
            continue
        try:
            kwargs[field.name] = field.metadata["convert"](data[tag])
        except SchemaError as err:
            raise SchemaError(f"{tag}: {err}") from None
    return cls(**kwargs)


@dataclasses.dataclass
class EnumValue:
    """A value of a StringEnum attribute and the row it maps to."""

    value: Any = _yaml("value", _as_any, None, omitempty=False)
    row_id: int = _yaml("rowID", _as_int, 0, omitempty=False)
    desc: str = _yaml("desc", _as_str, "")


@dataclasses.dataclass
class BasicAttribute:
    """Metadata for one field of a table."""

    field_name: str = _yaml("fieldName", _as_str, "", omitempty=False)
    source_name: str = _yaml("sourceName", _as_str, "", omitempty=False)
    child_table: str = _yaml("childTable", _as_str, "")
    type: str = _yaml("type", _as_str, "", omitempty=False)
    foreign_key: str = _yaml("foreignKey", _as_str, "")
    mapping_strategy: str = _yaml("mappingStrategy", _as_str, "", omitempty=False)
    size: int = _yaml("maxLen", _as_int, 0)
    scale: int = _yaml("scale", _as_int, 0)
    values: list[EnumValue] = _yaml("values", _as_values, factory=list)
    mapper_config: dict[str, str] | None = _yaml("configuration", _as_config, None)
    desc: str = _yaml("desc", _as_str, "")
    min_value: int = _yaml("minValue", _as_int, 0)
    max_value: int = _yaml("maxValue", _as_int, 0)
    call_transform: bool = _yaml("callTransform", _as_bool, False)
    high_card: bool = _yaml("highCard", _as_bool, False)
    required: bool = _yaml("required", _as_bool, False)
    searchable: bool = _yaml("searchable", _as_bool, False)
    default_value: str = _yaml("defaultValue", _as_str, "")
    column_id: bool = _yaml("columnID", _as_bool, False)
    column_id_msv: bool = _yaml("columnIDMSV", _as_bool, False)
    is_time_series: bool = _yaml("isTimeSeries", _as_bool, False)
    time_quantum_type: str = _yaml("timeQuantumType", _as_str, "")
    exclusive: bool = _yaml("exclusive", _as_bool, False)
    delegation_target: str = _yaml("delegationTarget", _as_str, "")
    ordinal: int = dataclasses.field(default=0, compare=False)
    parent: BasicTable | None = dataclasses.field(default=None, repr=False, compare=False)

    def is_bsi(self) -> bool:
        """True if the attribute is mapped as a bit-sliced index."""
        return self.mapping_strategy in _BSI_STRATEGIES

    def compare(self, other: BasicAttribute) -> tuple[bool, list[str]]:
        """Compare with ``other``; disallowed changes raise SchemaError.

        Returns whether the attributes are equal and warnings for allowed changes.
        """
        name = self.field_name
        if self.type != other.type:
            raise SchemaError(
                f"attribute '{name}' types differ existing = {self.type}, new = {other.type}"
            )
        if self.foreign_key != other.foreign_key:
            if not other.foreign_key:
                raise SchemaError(
                    f"cannot drop foreign key constraint '{self.foreign_key}' on attribute '{name}'"
                )
            raise SchemaError(
                f"cannot add foreign key constraint '{other.foreign_key}' on attribute '{name}'"
            )
        if self.mapping_strategy != other.mapping_strategy:
            raise SchemaError(
                f"attribute '{name}' mapping strategies differ existing = "
                f"'{self.mapping_strategy}', new = '{other.mapping_strategy}'"
            )
        checks = [
            ("scale", self.scale, other.scale),
            ("min value", self.min_value, other.min_value),
            ("max value", self.max_value, other.max_value),
            ("searchability", self.searchable, other.searchable),
            ("required", self.required, other.required),
            ("exclusivity", self.exclusive, other.exclusive),
        ]
        for label, mine, theirs in checks:
            if mine != theirs:
                raise SchemaError(
                    f"attribute '{name}' {label} differs existing = "
                    f"'{to_string(mine)}', new = '{to_string(theirs)}'"
                )

        changes = [
            ("source name", self.source_name, other.source_name),
            ("description", self.desc, other.desc),
            ("default val", self.default_value, other.default_value),
            ("child", self.child_table, other.child_table),
            ("enum count", len(self.values), len(other.values)),
            ("mapper conf", len(self.mapper_config or {}), len(other.mapper_config or {})),
        ]
        warnings = [
            f"attribute '{name}' {label} changed existing = "
            f"'{to_string(mine)}', new = '{to_string(theirs)}'"
            for label, mine, theirs in changes
            if mine != theirs
        ]
        return not warnings, warnings


@dataclasses.dataclass
class BasicTable:
    """Metadata for a table and its attributes."""

    name: str = _yaml("tableName", _as_str, "", omitempty=False)
    primary_key: str = _yaml("primaryKey", _as_str, "")
    secondary_keys: str = _yaml("secondaryKeys", _as_str, "")
    default_predicate: str = _yaml("defaultPredicate", _as_str, "")
    time_quantum_type: str = _yaml("timeQuantumType", _as_str, "")
    disable_dedup: bool = _yaml("disableDedup", _as_bool, False)
    attributes: list[BasicAttribute] = _yaml(
        "attributes", _as_attributes, omitempty=False, factory=list
    )
    kv: Any = dataclasses.field(default=None, repr=False, compare=False)
    _attribute_name_map: dict[str, BasicAttribute] = dataclasses.field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def finalize(self) -> BasicTable:
        """Validate attributes, build the name lookup and assign ordinals."""
        name_map: dict[str, BasicAttribute] = {}
        self._attribute_name_map = name_map
        ordinal = 1
        for attr in self.attributes:
            attr.parent = self
            if not attr.source_name and not attr.field_name:
                raise SchemaError(
                    "a valid attribute must have an input source name or field name.  "
                    "Neither exists"
                )
            if attr.mapping_strategy == "ParentRelation" and not attr.foreign_key:
                raise SchemaError(
                    f"foreign key table name must be specified for {attr.field_name}"
                )
            if attr.field_name:
                name_map[attr.field_name] = attr
            else:
                if attr.mapping_strategy == "ChildRelation":
                    if not attr.child_table:
                        # The child table name is the leaf of the dotted source path.
                        attr.child_table = attr.source_name.rsplit(".", 1)[-1]
                    continue
                name_map[attr.source_name] = attr
            if attr.type in _UNORDERED_TYPES:
                continue
            attr.ordinal = ordinal
            ordinal += 1

        if self.primary_key:
            try:
                pk_attrs = self.primary_key_info()
            except SchemaError as err:
                raise SchemaError(
                    "A primary key field was defined but it is not valid field name(s) "
                    f"[{self.primary_key}] - {err}"
                ) from err
            if self.time_quantum_type and pk_attrs[0].type not in ("Date", "DateTime"):
                raise SchemaError(
                    f"time partitions enabled for PK {pk_attrs[0].field_name}, "
                    "Type must be Date or DateTime"
                )
        return self

    def get_attribute(self, name: str) -> BasicAttribute:
        """Look up an attribute by field name (or source name when it has none)."""
        try:
            return self._attribute_name_map[name]
        except KeyError:
            raise SchemaError(f"attribute '{name}' not found") from None

    def primary_key_info(self) -> list[BasicAttribute]:
        """Attributes making up the '+'-separated primary key."""
        return [self.get_attribute(part.strip()) for part in self.primary_key.split("+")]

    def compare(self, other: BasicTable | None) -> tuple[bool, list[str]]:
        """Compare with ``other``; disallowed changes raise SchemaError.

        Returns whether the tables are equal and warnings for allowed changes.
        """
        if other is None:
            raise SchemaError("comparison table must not be nil")
        if self.name != other.name:
            raise SchemaError(f"table names differ existing = {self.name}, new = {other.name}")
        if self.primary_key != other.primary_key:
            raise SchemaError(
                f"cannot alter PK existing = {self.primary_key}, other = {other.primary_key}"
            )
        if self.secondary_keys != other.secondary_keys:
            raise SchemaError(
                f"cannot alter SKs existing = {self.secondary_keys}, new = {other.secondary_keys}"
            )
        if self.time_quantum_type != other.time_quantum_type:
            raise SchemaError(
                f"Cannot alter time quantum existing = {self.time_quantum_type}, "
                f"new = {other.time_quantum_type}"
            )
        warnings: list[str] = []
        if self.disable_dedup != other.disable_dedup:
            warnings.append(
                f"disable dedup setting changed existing = {to_string(self.disable_dedup)}, "
                f"new = {to_string(other.disable_dedup)}"
            )

        for attr in self.attributes:
            try:
                other_attr = other.get_attribute(attr.field_name)
            except SchemaError:
                raise SchemaError(f"attribute {attr.field_name} cannot be dropped") from None
            equal, attr_warnings = attr.compare(other_attr)
            if not equal:
                warnings.extend(attr_warnings)

        for attr in other.attributes:
            try:
                self.get_attribute(attr.field_name)
            except SchemaError:
                warnings.append(
                    f"new attribute '{attr.field_name}', addition is allowable"
                )

        return not warnings, warnings


def table_from_dict(data: Mapping[str, Any]) -> BasicTable:
    """Build an unvalidated table from a parsed schema document."""
    return _build(BasicTable, data)