import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from utils.params import cities_to_list, parse_items, parse_quality_input


def test_parse_quality_input():
    assert parse_quality_input("Normal (1)") == [1]
    assert parse_quality_input("3,1, 1") == [1, 3]
    assert parse_quality_input("All") == []
    assert parse_quality_input("") == []
    assert parse_quality_input([5, "2", 9]) == [2, 5]


def test_cities_to_list():
    default = ["Martlock", "Lymhurst"]
    assert cities_to_list("All", default) == default
    assert cities_to_list("Fort Sterling, Thetford", default) == ["Fort Sterling", "Thetford"]
    assert cities_to_list([], default) == default


def test_parse_items():
    assert parse_items(" t4_bag, T5_BAG ,t4_bag,,") == ["T4_BAG", "T5_BAG"]
    assert parse_items(None) == []
