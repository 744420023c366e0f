# quantashared

Building blocks shared by the client and server sides of a distributed bitmap
index. Bitmaps are Python sets of non-negative integer column IDs.

## Modules

- `quantashared.query` – build a predicate tree with `BitmapQuery` and
  `QueryFragment` (`add_fragment`, `push_level`, `pop_level`, the `set_*_predicate`
  helpers), flatten it to `ProtoQuery`/`ProtoFragment` with
  `BitmapQuery.to_proto()`, rebuild it with `from_proto()`, split it per index
  with `group_query_fragments_by_index()`, walk it with `visit()`, and
  `reduce()` a tree whose fragments hold data into an `IntermediateResult`.
- `quantashared.results` – `IntermediateResult` collects unions, intersects,
  AND/OR differences, samples, existence bitmaps and foreign keys; `collapse()`
  ORs the distributive parts, and `marshal_query_result()` /
  `unmarshal_and_add()` move results to and from a `QueryResult`. Bitmaps are
  serialized with `marshal_bitmap()` and `unmarshal_bitmap()`.
- `quantashared.sampling` – `perform_stratified_sampling()` draws a sample of a
  given percentage from a list of strata, sized in proportion to each stratum.
- `quantashared.schema` – `BasicTable`, `BasicAttribute` and `EnumValue`, built
  from a parsed schema document with `table_from_dict()` and validated with
  `BasicTable.finalize()`. Tables offer `get_attribute()`,
  `primary_key_info()` and `compare()`; attributes offer `is_bsi()` and
  `compare()`. Disallowed changes raise `SchemaError`; allowed ones come back
  as warnings.
- `quantashared.catalog` – store table schemas in a key/value store
  (`MemoryKVStore`, or any object following the `KVStore` protocol):
  `load_schema`, `marshal_table`, `unmarshal_table`, `table_exists`,
  `delete_table`, `get_tables`, `update_mod_time_for_table`,
  `check_parent_relation`, `check_child_relation`, and
  `get_cluster_size_target` / `set_cluster_size_target`.
- `quantashared.watch` – `SchemaWatcher.handle()` compares successive listings
  of schema keys and reports `SchemaChangeEvent`s of type `EventType.CREATE`,
  `MODIFY` or `DROP`.
- `quantashared.sqlstruct` – map dataclass fields declared with `sql_field()`
  to SQL columns: `columns`, `column_list`, `columns_aliased`,
  `generate_sql_insert`, `bind_params`, `scan`, `scan_aliased`,
  `get_all_rows` (over DB-API cursors) and `to_snake_case`.
- `quantashared.convert` – `to_string`, `to_bytes` / `unmarshal_value` with
  `ValueKind`, `retry`, `get_int_param`, `get_bool_param` and
  `to_tq_timestamp`.
- `quantashared.mappath` – `get_path()` looks up slash-separated paths in
  nested dicts and lists, raising `PathError` when a key or index is missing.
- `quantashared.sequencer` – `Sequencer` hands out a range of column IDs.
- `quantashared.jsonlog` – `JsonFormatter` and `init_logging()` write log
  records to stdout as one JSON object per line.
- `quantashared.constants` – timing defaults, time formats and `DataType`
  with `data_type_from_string()`.

## Example

```python
from quantashared.catalog import MemoryKVStore, load_schema, marshal_table, table_exists
from quantashared.schema import table_from_dict
from quantashared.sequencer import Sequencer

table = table_from_dict({
    "tableName": "cities",
    "primaryKey": "name",
    "attributes": [
        {"fieldName": "name", "type": "String", "mappingStrategy": "StringHashBSI"},
    ],
}).finalize()

kv = MemoryKVStore()
marshal_table(table, kv)
print(table_exists(kv, "cities"))                     # True

stored = load_schema("", "cities", kv)                # read back from the store
print(stored.get_attribute("name").is_bsi())          # True

seq = Sequencer(1, 10)
print(seq.next(), seq.maximum())                      # 1 10
```

`load_schema(path, name, kv)` with a non-empty `path` reads
`<path>/<name>/schema.yaml` instead.

## What this package does not do

It has no network side: there is no cluster connection, node client or
server, and no membership tracking. Queries are built, flattened, grouped and
reduced here, but sending them to nodes is left to the caller. Schema storage
goes through the `KVStore` protocol; the only store provided is the
in-process `MemoryKVStore`. There is no command-line program.

## Tests

```
pip install -e ".[test]"
pytest
```