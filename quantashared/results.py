"""Intermediate bitmap query results and their wire form.

A bitmap is a set of unsigned 64-bit column IDs.  On the wire it is an
8-byte little-endian count followed by that many 8-byte little-endian
values in ascending order.
"""

from __future__ import annotations

import dataclasses
import struct
from collections.abc import Iterable

_COUNT = struct.Struct("<Q")
_UINT64_LIMIT = 1 << 64

# A sample row on the wire: (field, row id, marshalled bitmap).
SampleRow = tuple[str, int, bytes]


def marshal_bitmap(bitmap: Iterable[int]) -> bytes:
    """Serialize a set of unsigned 64-bit integers."""
    values = sorted(set(bitmap))
    for value in values:
        if not 0 <= value < _UINT64_LIMIT:
            raise ValueError(f"bitmap value {value} is not an unsigned 64-bit integer")
    return _COUNT.pack(len(values)) + struct.pack(f"<{len(values)}Q", *values)


def unmarshal_bitmap(data: bytes) -> set[int]:
    """Decode bytes produced by :func:`marshal_bitmap`; empty input is an empty set."""
    data = bytes(data)
    if not data:
        return set()
    if len(data) < _COUNT.size:
        raise ValueError(f"bitmap data too short: {len(data)} bytes")
    (count,) = _COUNT.unpack_from(data)
    expected = _COUNT.size + 8 * count
    if len(data) != expected:
        raise ValueError(f"bitmap data length {len(data)} does not match count {count}")
    return set(struct.unpack_from(f"<{count}Q", data, _COUNT.size))


@dataclasses.dataclass
class RowBitmap:
    """A standard bitmap together with the field and row it belongs to."""

    field: str
    row_id: int
    bits: set[int]


@dataclasses.dataclass(frozen=True)
class FK:
    """A foreign key used for a join."""

    join_index: str
    field: str


@dataclasses.dataclass
class QueryResult:
    """Wire form of the results a single node returns for a query."""

    unions: bytes = b""
    intersects: list[bytes] = dataclasses.field(default_factory=list)
    differences: list[bytes] = dataclasses.field(default_factory=list)
    samples: list[SampleRow] = dataclasses.field(default_factory=list)
    sample_pct: float = 0.0
    sample_is_union: bool = False
    existences: bytes = b""
    and_differences_count: int = 0


def _union_all(bitmaps: Iterable[set[int] | None]) -> set[int]:
    result: set[int] = set()
    for bitmap in bitmaps:
        if bitmap is not None:
            result |= bitmap
    return result


def _require(bitmap: object, what: str) -> None:
    if bitmap is None:
        raise ValueError(f"Attempt to add nil {what}.")


class IntermediateResult:
    """Aggregated per-index query results and scratch pad for query processing."""

    def __init__(self, index: str) -> None:
        self.index = index
        self.sample_pct = 0.0
        self.sample_is_union = False
        self.unions: list[set[int] | None] = []
        self.intersects: list[set[int]] = []
        self.and_differences: list[set[int]] = []
        self.or_differences: list[set[int]] = []
        self.existences: list[set[int]] = []
        self.samples: list[RowBitmap] = []
        self.fk_list: list[FK] = []
        self.union: set[int] | None = None
        self.existence: set[int] | None = None

    def add_intersect(self, bitmap: set[int]) -> None:
        """Add an AND predicate result."""
        _require(bitmap, "Intersect")
        self.intersects.append(bitmap)

    def add_union(self, bitmap: set[int] | None) -> None:
        """Add an OR predicate result."""
        self.unions.append(bitmap)

    def add_and_difference(self, bitmap: set[int]) -> None:
        """Add an ANDNOT predicate result that is ANDed into the final result."""
        _require(bitmap, "Difference")
        self.and_differences.append(bitmap)

    def add_or_difference(self, bitmap: set[int]) -> None:
        """Add an ANDNOT predicate result that is ORed into the final result."""
        _require(bitmap, "Difference")
        self.or_differences.append(bitmap)

    def add_samples(self, rows: Iterable[RowBitmap]) -> None:
        """Add a batch of stratified sample rows."""
        self.samples.extend(rows)

    def add_sample(self, row: RowBitmap) -> None:
        """Add one stratified sample row."""
        _require(row, "Sample")
        self.samples.append(row)

    def add_existence(self, bitmap: set[int]) -> None:
        """Add an existence bitmap."""
        _require(bitmap, "Existence")
        self.existences.append(bitmap)

    def add_fk(self, index: str, fk: str) -> None:
        """Add a foreign key for a join."""
        self.fk_list.append(FK(join_index=index, field=fk))

    @property
    def fk_count(self) -> int:
        """Number of foreign keys."""
        return len(self.fk_list)

    def collapse(self) -> None:
        """OR together the distributive unions and existences."""
        self.union = _union_all(self.unions)
        self.existence = _union_all(self.existences)

    def marshal_query_result(self) -> QueryResult:
        """Build the wire form of these results (server side)."""
        unions = marshal_bitmap(self.union) if self.union is not None else b""
        intersects = [marshal_bitmap(bitmap) for bitmap in self.intersects]
        samples = [(row.field, row.row_id, marshal_bitmap(row.bits)) for row in self.samples]
        differences = [marshal_bitmap(b) for b in self.and_differences]
        differences += [marshal_bitmap(b) for b in self.or_differences]

        # Existences may be added after the results were collapsed.
        if self.existences and not self.existence:
            self.existence = _union_all(self.existences)
        existences = marshal_bitmap(self.existence) if self.existence is not None else b""

        return QueryResult(
            unions=unions,
            intersects=intersects,
            differences=differences,
            samples=samples,
            sample_pct=self.sample_pct,
            sample_is_union=self.sample_is_union,
            existences=existences,
            and_differences_count=len(self.and_differences),
        )

    def unmarshal_and_add(self, result: QueryResult) -> None:
        """Decode a node's wire results and add them to these results (client side)."""
        union = _decode(result.unions, "unions")
        if union:
            self.add_union(union)

        for data in result.intersects:
            self.add_intersect(_decode(data, "intersects"))

        for field, row_id, data in result.samples:
            self.add_sample(RowBitmap(field, row_id, _decode(data, "samples")))
        self.sample_pct = result.sample_pct
        self.sample_is_union = result.sample_is_union

        count = result.and_differences_count
        if not 0 <= count <= len(result.differences):
            raise ValueError(
                f"and differences count {count} exceeds {len(result.differences)} differences"
            )
        for data in result.differences[:count]:
            self.add_and_difference(_decode(data, "differences"))
        for data in result.differences[count:]:
            self.add_or_difference(_decode(data, "differences"))

        existence = _decode(result.existences, "existence")
        if existence:
            self.add_existence(existence)


def _decode(data: bytes, what: str) -> set[int]:
    try:
        return unmarshal_bitmap(data)
    except ValueError as err:
        raise ValueError(f"Error unmarshalling query result {what} - {err}") from err