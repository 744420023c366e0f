"""Bitmap query construction, wire form and reduction of node results.

A query is a tree of predicate fragments.  It is flattened into a list of
wire fragments (children before parents, linked by generated ids) for
submission to the cluster, and rebuilt from that list on the other side.
Query times are year-month-day-hour strings, carried on the wire as
nanoseconds since the epoch in UTC.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any

from quantashared.constants import YMDH_TIME_FMT
from quantashared.results import IntermediateResult, RowBitmap

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_YMDH_RE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}")


class FragmentOp(IntEnum):
    """Set operation a fragment contributes to the query."""

    INTERSECT = 0
    UNION = 1
    DIFFERENCE = 2
    INNER_JOIN = 3
    OUTER_JOIN = 4


class BSIOp(IntEnum):
    """Comparison applied to a bit-sliced index fragment."""

    NA = 0
    LT = 1
    LE = 2
    EQ = 3
    GE = 4
    GT = 5
    RANGE = 6
    BATCH_EQ = 7


def _parse_ymdh(text: str) -> int:
    """Nanoseconds since the epoch for a YMDH string; 0 if it does not parse."""
    if not _YMDH_RE.fullmatch(text):
        return 0
    try:
        moment = datetime.strptime(text, YMDH_TIME_FMT).replace(tzinfo=timezone.utc)
    except ValueError:
        return 0
    delta = moment - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000


def _format_ymdh(nanos: int) -> str:
    return (_EPOCH + timedelta(microseconds=nanos // 1000)).strftime(YMDH_TIME_FMT)


@dataclasses.dataclass
class ProtoFragment:
    """Wire form of one query predicate."""

    index: str = ""
    field: str = ""
    row_id: int = 0
    id: str = ""
    children_ids: list[str] = dataclasses.field(default_factory=list)
    operation: FragmentOp = FragmentOp.INTERSECT
    bsi_op: BSIOp = BSIOp.NA
    value: int = 0
    begin: int = 0
    end: int = 0
    fk: str = ""
    values: list[int] = dataclasses.field(default_factory=list)
    sample_pct: float = 0.0
    null_check: bool = False
    negate: bool = False
    or_context: bool = False


@dataclasses.dataclass
class ProtoQuery:
    """Wire form of a whole query; times are nanoseconds since the epoch."""

    query: list[ProtoFragment] = dataclasses.field(default_factory=list)
    from_time: int = 0
    to_time: int = 0


@dataclasses.dataclass(eq=False)
class QueryFragment:
    """An atomic query predicate and its place in the query tree."""

    index: str = ""
    field: str = ""
    row_id: int = 0
    value: int = 0
    values: list[int] = dataclasses.field(default_factory=list)
    operation: str = ""
    bsi_op: str = ""
    begin: int = 0
    end: int = 0
    fk: str = ""
    search: str = ""
    sample_pct: float = 0.0
    null_check: bool = False
    negate: bool = False
    or_context: bool = False
    children: list[QueryFragment] = dataclasses.field(default_factory=list)
    parent: QueryFragment | None = dataclasses.field(default=None, repr=False)
    query: BitmapQuery | None = dataclasses.field(default=None, repr=False)
    data: set[int] | None = dataclasses.field(default=None, repr=False)
    sample: list[RowBitmap] = dataclasses.field(default_factory=list, repr=False)
    added: bool = False

    def set_bitmap_predicate(self, index: str, field: str, row_id: int) -> None:
        """Make this a standard bitmap predicate."""
        self.index = index
        self.field = field
        self.row_id = row_id

    def set_bsi_predicate(self, index: str, field: str, bsi_op: str, value: int) -> None:
        """Make this a bit-sliced index comparison with ``value``."""
        self.index = index
        self.field = field
        self.bsi_op = bsi_op
        self.value = value

    def set_parent(self, parent: QueryFragment | None) -> None:
        """Set the parent fragment."""
        self.parent = parent

    def set_bsi_range_predicate(self, index: str, field: str, begin: int, end: int) -> None:
        """Make this a bit-sliced index range predicate."""
        self.index = index
        self.field = field
        self.bsi_op = "RANGE"
        self.begin = begin
        self.end = end

    def set_bsi_batch_eq_predicate(self, index: str, field: str, values: list[int]) -> None:
        """Make this a bit-sliced index equals-any-of predicate."""
        self.index = index
        self.field = field
        self.bsi_op = "BATCH_EQ"
        self.values = values

    def set_null_predicate(self, index: str, field: str) -> None:
        """Make this an ``is null`` predicate."""
        self.index = index
        self.field = field
        self.null_check = True


Visitor = Callable[[QueryFragment], Any]


@dataclasses.dataclass(eq=False)
class BitmapQuery:
    """Top level query state: time range and the predicate tree."""

    from_time: str = ""
    to_time: str = ""
    root: QueryFragment | None = None
    cur_level: int = 0

    def is_empty(self) -> bool:
        """True when the query has no predicates."""
        return self.root is None

    def root_index(self) -> str:
        """Index of the root predicate, or an empty string."""
        return self.root.index if self.root is not None else ""

    def push_level(self, fragment: QueryFragment) -> None:
        """Descend into a nested predicate."""
        if fragment is None:
            raise ValueError("PushLevel: fragment should never be nil!")
        self.cur_level += 1
        self.root = fragment

    def pop_level(self) -> QueryFragment | None:
        """Return to the enclosing predicate level."""
        if self.cur_level == 0:
            raise ValueError("Cannot PopLevel at root! Pop without Push?")
        if self.root is not None and self.root.parent is not None:
            self.root = self.root.parent
        self.cur_level -= 1
        return self.root

    def new_query_fragment(self) -> QueryFragment:
        """A new predicate belonging to this query."""
        return QueryFragment(query=self)

    def add_fragment(self, fragment: QueryFragment) -> QueryFragment:
        """Add a predicate to the query tree at the current level."""
        if fragment is None:
            raise ValueError("QueryFragment should never be nil!")
        root = self.root
        if root is None:
            self.root = fragment
        elif root.index == "":
            root.index = fragment.index
            root.field = fragment.field
            root.row_id = fragment.row_id
            root.value = fragment.value
            root.values = fragment.values
            root.operation = fragment.operation
            root.bsi_op = fragment.bsi_op
            root.begin = fragment.begin
            root.end = fragment.end
            root.fk = fragment.fk
            root.search = fragment.search
        elif fragment.operation == "INNER_JOIN":
            root.children.append(fragment)
        elif root.parent is not None:
            root.parent.children.append(fragment)
        else:
            root.children.append(fragment)
        fragment.added = True
        return fragment

    def to_proto(self) -> ProtoQuery:
        """Flatten the query into its wire form (children before parents)."""
        fragments: list[ProtoFragment] = []
        if self.root is not None:
            self._to_proto_frag(self.root, fragments)
        return ProtoQuery(
            query=fragments,
            from_time=_parse_ymdh(self.from_time),
            to_time=_parse_ymdh(self.to_time),
        )

    def _to_proto_frag(self, node: QueryFragment, out: list[ProtoFragment]) -> str:
        child_ids = [self._to_proto_frag(child, out) for child in node.children]
        frag_id = str(uuid.uuid4())
        out.append(
            ProtoFragment(
                index=node.index,
                field=node.field,
                row_id=node.row_id,
                id=frag_id,
                children_ids=child_ids,
                operation=FragmentOp.__members__.get(node.operation, FragmentOp.INTERSECT),
                bsi_op=BSIOp.__members__.get(node.bsi_op, BSIOp.NA),
                value=node.value,
                begin=node.begin,
                end=node.end,
                fk=node.fk,
                values=list(node.values or ()),
                sample_pct=node.sample_pct,
                null_check=node.null_check,
                negate=node.negate,
                or_context=node.or_context,
            )
        )
        return frag_id

    def reduce(self) -> IntermediateResult:
        """Collect and aggregate the data attached to the predicate tree."""
        if self.root is None:
            raise ValueError("query has no predicates")
        return self._walk_reduce(self.root)

    def _walk_reduce(self, node: QueryFragment) -> IntermediateResult:
        result = IntermediateResult(node.index)
        result.sample_pct = node.sample_pct
        for child in node.children:
            partial = self._walk_reduce(child)
            for bitmap in partial.intersects:
                result.add_intersect(bitmap)
            if node.or_context:
                for bitmap in partial.or_differences:
                    result.add_or_difference(bitmap)
            else:
                for bitmap in partial.and_differences:
                    result.add_and_difference(bitmap)
            for row in partial.samples:
                result.add_sample(row)
            result.add_union(partial.union)

        op = FragmentOp.__members__.get(node.operation)
        if op is FragmentOp.INTERSECT:
            if node.sample_pct > 0:
                result.add_samples(node.sample or [])
                result.sample_is_union = False
            else:
                result.add_intersect(node.data)
        elif op is FragmentOp.UNION:
            if node.sample_pct > 0:
                result.add_samples(node.sample or [])
                result.sample_is_union = True
            else:
                result.add_union(node.data)
        elif op is FragmentOp.DIFFERENCE:
            in_or_context = node.parent is not None and node.parent.or_context
            if in_or_context or node.or_context:
                result.add_or_difference(node.data)
            else:
                result.add_and_difference(node.data)

        result.collapse()
        return result

    def visit(self, visitor: Visitor) -> None:
        """Call ``visitor`` on every fragment, children before parents.

        An exception raised by the visitor stops the walk and propagates.
        """
        if self.root is None:
            raise ValueError("query has no predicates")
        self._walk_dag(self.root, visitor)

    def _walk_dag(self, node: QueryFragment, visitor: Visitor) -> None:
        for child in node.children:
            self._walk_dag(child, visitor)
        visitor(node)

    def group_query_fragments_by_index(self) -> dict[str, ProtoQuery]:
        """Split the wire form of the query into one query per index."""
        proto = self.to_proto()
        groups: dict[str, ProtoQuery] = {}
        for fragment in proto.query:
            group = groups.get(fragment.index)
            if group is None:
                groups[fragment.index] = ProtoQuery(
                    query=[fragment], from_time=proto.from_time, to_time=proto.to_time
                )
            else:
                group.query.append(fragment)
        return groups

    def dump(self) -> None:
        """Write the query's wire form to the debug log."""
        proto = self.to_proto()
        log.debug(" FROM TIME: %s", _format_ymdh(proto.from_time))
        log.debug("   TO TIME: %s", _format_ymdh(proto.to_time))
        log.debug("FRAGMENTS: VVV")
        for fragment in proto.query:
            log.debug("%s->:%r", fragment.operation.name, fragment)


def from_proto(
    query: ProtoQuery, data_map: Mapping[str, set[int]] | None = None
) -> BitmapQuery:
    """Rebuild a query tree from its wire form, attaching data by fragment id."""
    nodes: dict[str, QueryFragment] = {}
    for proto in query.query:
        fragment = QueryFragment(
            index=proto.index,
            field=proto.field,
            row_id=proto.row_id,
            value=proto.value,
            end=proto.end,
            begin=proto.begin,
            fk=proto.fk,
            values=list(proto.values),
            operation=FragmentOp(proto.operation).name,
            sample_pct=proto.sample_pct,
            negate=proto.negate,
            or_context=proto.or_context,
            null_check=proto.null_check,
        )
        if data_map is not None and proto.id in data_map:
            fragment.data = data_map[proto.id]
        nodes.setdefault(proto.id, fragment)

    for proto in query.query:
        parent = nodes.get(proto.id)
        if parent is None:
            continue
        for child_id in proto.children_ids:
            child = nodes.get(child_id)
            if child is not None:
                parent.children.append(child)
                child.parent = parent

    root = next((node for node in nodes.values() if node.parent is None), None)
    return BitmapQuery(
        from_time=_format_ymdh(query.from_time),
        to_time=_format_ymdh(query.to_time),
        root=root,
    )