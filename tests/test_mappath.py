import pytest

from quantashared.mappath import PathError, get_path


@pytest.fixture
def data():
    return {
        "data": {"partner": "espn", "sku": "sku-0001"},
        "metadata": [
            {"origin": "first", "receivedTimestamp": "12-14-1993"},
            {"origin": "second", "kind": "purchase"},
        ],
    }


def test_path(data):
    with pytest.raises(PathError) as excinfo:
        get_path("metadata/1/receivedTimestamp", data)
    assert str(excinfo.value) == "Key not present. [Key:receivedTimestamp]"
    assert get_path("metadata/0/receivedTimestamp", data) == "12-14-1993"
    assert get_path("data/partner", data) == "espn"


def test_index_out_of_bounds(data):
    with pytest.raises(PathError, match="Index out of bounds"):
        get_path("metadata/2/origin", data)


def test_negative_index_is_out_of_bounds(data):
    with pytest.raises(PathError, match="Index out of bounds"):
        get_path("metadata/-1/origin", data)


def test_non_numeric_index(data):
    with pytest.raises(PathError):
        get_path("metadata/first/origin", data)


def test_subtree_returned(data):
    assert get_path("data", data) == data["data"]
    assert get_path("metadata/1", data)["origin"] == "second"


def test_walking_past_scalar_yields_none(data):
    assert get_path("data/partner/deeper", data) is None