import logging
from datetime import datetime, timezone

import pytest

from quantashared.query import (
    BitmapQuery,
    BSIOp,
    FragmentOp,
    ProtoQuery,
    QueryFragment,
    from_proto,
)
from quantashared.results import RowBitmap


def _nanos(*parts):
    return int(datetime(*parts, tzinfo=timezone.utc).timestamp()) * 10**9


def _fragment(query, index, field, operation, data=None):
    fragment = query.new_query_fragment()
    fragment.set_bitmap_predicate(index, field, 1)
    fragment.operation = operation
    fragment.data = data
    return fragment


def _three_level_query():
    query = BitmapQuery(from_time="2020-01-02T03", to_time="2020-01-05T10")
    root = _fragment(query, "t", "a", "UNION", {1, 2})
    query.add_fragment(root)
    query.add_fragment(_fragment(query, "t", "b", "INTERSECT", {2}))
    query.add_fragment(_fragment(query, "u", "c", "DIFFERENCE", {3}))
    return query, root


def test_empty_query():
    query = BitmapQuery()
    assert query.is_empty()
    assert query.root_index() == ""


def test_first_fragment_becomes_root():
    query = BitmapQuery()
    fragment = _fragment(query, "orders", "state", "UNION")
    returned = query.add_fragment(fragment)
    assert returned is fragment
    assert fragment.added
    assert query.root is fragment
    assert query.root_index() == "orders"
    assert not query.is_empty()


def test_later_fragments_are_children_of_root():
    query, root = _three_level_query()
    assert [child.field for child in root.children] == ["b", "c"]
    assert all(child.added for child in root.children)


def test_root_without_index_takes_fragment_fields():
    query = BitmapQuery()
    placeholder = QueryFragment()
    query.push_level(placeholder)
    fragment = _fragment(query, "orders", "state", "UNION")
    fragment.fk = "customers"
    query.add_fragment(fragment)
    assert placeholder.index == "orders"
    assert placeholder.field == "state"
    assert placeholder.operation == "UNION"
    assert placeholder.fk == "customers"
    assert placeholder.children == []
    assert fragment.added


def test_fragment_goes_to_parent_when_root_is_nested():
    query = BitmapQuery()
    top = _fragment(query, "t", "a", "UNION")
    query.add_fragment(top)
    nested = _fragment(query, "t", "b", "UNION")
    nested.set_parent(top)
    query.push_level(nested)
    query.add_fragment(_fragment(query, "t", "c", "INTERSECT"))
    query.add_fragment(_fragment(query, "u", "d", "INNER_JOIN"))
    assert [child.field for child in top.children] == ["c"]
    assert [child.field for child in nested.children] == ["d"]


def test_push_and_pop_levels():
    query = BitmapQuery()
    top = _fragment(query, "t", "a", "UNION")
    query.add_fragment(top)
    nested = _fragment(query, "t", "b", "UNION")
    nested.set_parent(top)
    query.push_level(nested)
    assert query.cur_level == 1
    assert query.pop_level() is top
    assert query.cur_level == 0
    with pytest.raises(ValueError):
        query.pop_level()


def test_push_level_none_and_add_none_raise():
    query = BitmapQuery()
    with pytest.raises(ValueError):
        query.push_level(None)
    with pytest.raises(ValueError):
        query.add_fragment(None)


def test_predicate_setters():
    fragment = QueryFragment()
    fragment.set_bsi_predicate("t", "age", "GE", 21)
    assert (fragment.index, fragment.field, fragment.bsi_op, fragment.value) == ("t", "age", "GE", 21)
    fragment.set_bsi_range_predicate("t", "age", 10, 20)
    assert (fragment.bsi_op, fragment.begin, fragment.end) == ("RANGE", 10, 20)
    fragment.set_bsi_batch_eq_predicate("t", "age", [1, 5])
    assert (fragment.bsi_op, fragment.values) == ("BATCH_EQ", [1, 5])
    fragment.set_null_predicate("t", "name")
    assert fragment.field == "name"
    assert fragment.null_check


def test_to_proto_orders_children_before_parents():
    query, _ = _three_level_query()
    proto = query.to_proto()
    assert [f.field for f in proto.query] == ["b", "c", "a"]
    ids = [f.id for f in proto.query]
    assert len(set(ids)) == 3
    assert proto.query[-1].children_ids == ids[:2]
    assert proto.query[0].children_ids == []


@pytest.mark.parametrize(
    "name, expected",
    [
        ("INTERSECT", FragmentOp.INTERSECT),
        ("UNION", FragmentOp.UNION),
        ("DIFFERENCE", FragmentOp.DIFFERENCE),
        ("INNER_JOIN", FragmentOp.INNER_JOIN),
        ("OUTER_JOIN", FragmentOp.OUTER_JOIN),
        ("", FragmentOp.INTERSECT),
        ("bogus", FragmentOp.INTERSECT),
    ],
)
def test_to_proto_operation_mapping(name, expected):
    query = BitmapQuery()
    query.add_fragment(_fragment(query, "t", "a", name))
    assert query.to_proto().query[0].operation is expected


@pytest.mark.parametrize(
    "name, expected",
    [("LT", BSIOp.LT), ("GE", BSIOp.GE), ("RANGE", BSIOp.RANGE), ("BATCH_EQ", BSIOp.BATCH_EQ), ("", BSIOp.NA)],
)
def test_to_proto_bsi_mapping(name, expected):
    query = BitmapQuery()
    fragment = query.new_query_fragment()
    fragment.set_bsi_predicate("t", "age", name, 3)
    query.add_fragment(fragment)
    assert query.to_proto().query[0].bsi_op is expected


def test_to_proto_times():
    query = BitmapQuery(from_time="2020-01-02T03", to_time="not a time")
    proto = query.to_proto()
    assert proto.query == []
    assert proto.from_time == _nanos(2020, 1, 2, 3)
    assert proto.to_time == 0


def test_from_proto_round_trip():
    query, _ = _three_level_query()
    proto = query.to_proto()
    data = {proto.query[0].id: {7, 8}}
    rebuilt = from_proto(proto, data)
    assert rebuilt.from_time == "2020-01-02T03"
    assert rebuilt.to_time == "2020-01-05T10"
    root = rebuilt.root
    assert root.field == "a"
    assert root.operation == "UNION"
    assert root.parent is None
    assert [c.field for c in root.children] == ["b", "c"]
    assert all(c.parent is root for c in root.children)
    assert root.children[0].data == {7, 8}
    assert root.children[1].data is None
    assert root.children[1].operation == "DIFFERENCE"


def test_from_proto_empty_query_has_no_root():
    rebuilt = from_proto(ProtoQuery(), None)
    assert rebuilt.is_empty()
    assert rebuilt.from_time == "1970-01-01T00"


def test_reduce_union_and_intersect():
    query = BitmapQuery()
    query.add_fragment(_fragment(query, "t", "a", "UNION", {1, 2, 3}))
    query.add_fragment(_fragment(query, "t", "b", "INTERSECT", {2, 3, 4}))
    result = query.reduce()
    assert result.index == "t"
    assert result.union == {1, 2, 3}
    assert result.intersects == [{2, 3, 4}]
    assert result.and_differences == []


def test_reduce_difference_and_context():
    query = BitmapQuery()
    query.add_fragment(_fragment(query, "t", "a", "UNION", {1, 2}))
    query.add_fragment(_fragment(query, "t", "b", "DIFFERENCE", {9}))
    result = query.reduce()
    assert result.and_differences == [{9}]
    assert result.or_differences == []


def test_reduce_difference_in_or_context():
    query = BitmapQuery()
    root = _fragment(query, "t", "a", "UNION", {1, 2})
    root.or_context = True
    query.add_fragment(root)
    child = _fragment(query, "t", "b", "DIFFERENCE", {9})
    child.set_parent(root)
    query.add_fragment(child)
    result = query.reduce()
    assert result.or_differences == [{9}]
    assert result.and_differences == []


def test_reduce_samples():
    query = BitmapQuery()
    root = _fragment(query, "t", "g", "UNION")
    root.sample_pct = 10
    root.sample = [RowBitmap("g", 1, {1, 2})]
    query.add_fragment(root)
    result = query.reduce()
    assert result.sample_is_union
    assert [row.bits for row in result.samples] == [{1, 2}]
    assert result.union == set()


def test_reduce_intersect_without_data_raises():
    query = BitmapQuery()
    query.add_fragment(_fragment(query, "t", "a", "INTERSECT"))
    with pytest.raises(ValueError):
        query.reduce()


def test_reduce_empty_query_raises():
    with pytest.raises(ValueError):
        BitmapQuery().reduce()


def test_visit_is_post_order_and_propagates_errors():
    query, _ = _three_level_query()
    seen = []
    query.visit(lambda fragment: seen.append(fragment.field))
    assert seen == ["b", "c", "a"]

    def fail(fragment):
        raise RuntimeError(fragment.field)

    with pytest.raises(RuntimeError, match="b"):
        query.visit(fail)


def test_group_query_fragments_by_index():
    query, _ = _three_level_query()
    groups = query.group_query_fragments_by_index()
    assert sorted(groups) == ["t", "u"]
    assert [f.field for f in groups["t"].query] == ["b", "a"]
    assert [f.field for f in groups["u"].query] == ["c"]
    assert groups["u"].from_time == _nanos(2020, 1, 2, 3)
    assert groups["t"].to_time == groups["u"].to_time


def test_dump_logs_times_and_fragments(caplog):
    query, _ = _three_level_query()
    caplog.set_level(logging.DEBUG, logger="quantashared.query")
    query.dump()
    assert "FROM TIME: 2020-01-02T03" in caplog.text
    assert "TO TIME: 2020-01-05T10" in caplog.text
    assert "DIFFERENCE->:" in caplog.text