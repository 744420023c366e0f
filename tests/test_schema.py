import copy

import pytest

from quantashared.schema import (
    BasicAttribute,
    BasicTable,
    EnumValue,
    SchemaError,
    table_from_dict,
)

CITIES_V1 = {
    "tableName": "cities",
    "attributes": [
        {"fieldName": "name", "sourceName": "name", "type": "String",
         "mappingStrategy": "StringHashBSI"},
        {"fieldName": "state_name", "sourceName": "state_name", "type": "String",
         "mappingStrategy": "StringEnum"},
        {"fieldName": "region_list", "sourceName": "region_list", "type": "String",
         "mappingStrategy": "StringEnum", "configuration": {"delim": ","}},
        {"fieldName": "population", "sourceName": "population", "type": "Integer",
         "mappingStrategy": "IntBSI"},
    ],
}

GENDER = {
    "fieldName": "gender", "sourceName": "gender", "type": "String",
    "mappingStrategy": "StringEnum",
    "values": [{"value": "M", "rowID": 1, "desc": "Male"}, {"value": "F", "rowID": 2}],
}

CITYZIP = {
    "tableName": "cityzip",
    "primaryKey": "city_id + zip",
    "attributes": [
        {"fieldName": "city_id", "sourceName": "city_id", "type": "Integer",
         "mappingStrategy": "ParentRelation", "foreignKey": "cities"},
        {"fieldName": "zip", "sourceName": "zip", "type": "String",
         "mappingStrategy": "StringEnum"},
    ],
}


def cities_v1():
    return table_from_dict(copy.deepcopy(CITIES_V1)).finalize()


def cities_v2():
    data = copy.deepcopy(CITIES_V1)
    data["attributes"].append(copy.deepcopy(GENDER))
    return table_from_dict(data).finalize()


def test_load_table():
    schema = cities_v2()
    gender = schema.get_attribute("gender")
    assert gender.mapping_strategy == "StringEnum"
    assert len(gender.values) == 2
    assert gender.values[0] == EnumValue(value="M", row_id=1, desc="Male")
    region_list = schema.get_attribute("region_list")
    assert region_list.mapper_config["delim"] == ","
    assert schema.get_attribute("name").is_bsi() is True


def test_load_table_with_pk():
    schema = table_from_dict(copy.deepcopy(CITYZIP)).finalize()
    pki = schema.primary_key_info()
    assert len(pki) == 2
    assert [a.field_name for a in pki] == ["city_id", "zip"]


def test_schema_compare():
    current = cities_v1()
    new = cities_v2()
    ok, warnings = current.compare(new)
    assert ok is False
    assert warnings == ["new attribute 'gender', addition is allowable"]

    new.disable_dedup = True
    ok, warnings = current.compare(new)
    assert len(warnings) == 2
    assert warnings[0] == "disable dedup setting changed existing = false, new = true"

    curr_state = current.get_attribute("state_name")
    new_state = new.get_attribute("state_name")
    ok, warnings = curr_state.compare(new_state)
    assert ok is True
    assert warnings == []

    new_state.desc = "State name."
    ok, warnings = curr_state.compare(new_state)
    assert ok is False
    assert warnings == [
        "attribute 'state_name' description changed existing = '', new = 'State name.'"
    ]


def test_compare_with_dropped_attribute_fails():
    with pytest.raises(SchemaError, match="attribute gender cannot be dropped"):
        cities_v2().compare(cities_v1())


def test_compare_rejects_none_and_renames():
    with pytest.raises(SchemaError):
        cities_v1().compare(None)
    other = cities_v1()
    other.name = "towns"
    with pytest.raises(SchemaError, match="table names differ"):
        cities_v1().compare(other)


def test_attribute_type_change_is_error():
    a = BasicAttribute(field_name="x", type="String")
    b = BasicAttribute(field_name="x", type="Integer")
    with pytest.raises(SchemaError, match="types differ existing = String, new = Integer"):
        a.compare(b)


def test_attribute_searchable_change_is_error():
    a = BasicAttribute(field_name="x", searchable=False)
    b = BasicAttribute(field_name="x", searchable=True)
    with pytest.raises(SchemaError, match="searchability differs existing = 'false', new = 'true'"):
        a.compare(b)


def test_foreign_key_drop_is_error():
    a = BasicAttribute(field_name="x", foreign_key="cities")
    with pytest.raises(SchemaError, match="cannot drop foreign key"):
        a.compare(BasicAttribute(field_name="x"))


def test_attribute_without_names_is_rejected():
    table = table_from_dict({"tableName": "t", "attributes": [{"type": "String"}]})
    with pytest.raises(SchemaError, match="Neither exists"):
        table.finalize()


def test_parent_relation_needs_foreign_key():
    table = table_from_dict({"tableName": "t", "attributes": [
        {"fieldName": "p", "mappingStrategy": "ParentRelation"}]})
    with pytest.raises(SchemaError, match="foreign key table name must be specified for p"):
        table.finalize()


def test_invalid_primary_key_is_rejected():
    table = table_from_dict({"tableName": "t", "primaryKey": "missing",
                             "attributes": [{"fieldName": "a", "type": "String"}]})
    with pytest.raises(SchemaError, match="not valid field name"):
        table.finalize()


def test_time_quantum_needs_date_pk():
    table = table_from_dict({"tableName": "t", "primaryKey": "a", "timeQuantumType": "YMD",
                             "attributes": [{"fieldName": "a", "type": "String"}]})
    with pytest.raises(SchemaError, match="Type must be Date or DateTime"):
        table.finalize()


def test_child_relation_table_derived_from_source_path():
    table = table_from_dict({"tableName": "t", "attributes": [
        {"sourceName": "data.orders", "mappingStrategy": "ChildRelation"},
        {"sourceName": "items", "mappingStrategy": "ChildRelation"}]}).finalize()
    assert [a.child_table for a in table.attributes] == ["orders", "items"]
    with pytest.raises(SchemaError):
        table.get_attribute("data.orders")


def test_lookup_by_source_name_and_ordinals():
    table = table_from_dict({"tableName": "t", "attributes": [
        {"sourceName": "src_only", "type": "String"},
        {"fieldName": "blob", "type": "JSON"},
        {"fieldName": "n", "type": "Integer"}]}).finalize()
    assert table.get_attribute("src_only") is table.attributes[0]
    assert [a.ordinal for a in table.attributes] == [1, 0, 2]
    assert all(a.parent is table for a in table.attributes)


def test_get_attribute_missing():
    with pytest.raises(SchemaError, match="attribute 'nope' not found"):
        cities_v1().get_attribute("nope")


def test_bad_field_type_in_document():
    with pytest.raises(SchemaError):
        table_from_dict({"tableName": "t", "attributes": [{"fieldName": "a", "maxLen": "ten"}]})


def test_is_bsi_for_non_bsi_strategy():
    assert BasicAttribute(mapping_strategy="StringEnum").is_bsi() is False
    assert BasicTable().attributes == []