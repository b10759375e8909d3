import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import pytest

from recipes.loader import (
    MaterialKind,
    MaterialRequirement,
    RecipeValidationError,
    artefact_id,
    default_materials,
    load_recipes_csv,
)

CSV = """\
# item_id,tier,slot,core,enchant,artefact
T4_MAIN_SWORD,4,MAIN,SWORD,0
T5_BAG_INSIGHT,5,BAG,INSIGHT,1
T6_2H_BOW_KEEPER,6,2H,BOW_KEEPER,2,1

T4_CAPE_FW_CAPE_BRIDGEWATCH,4,CAPE,FW_CAPE_BRIDGEWATCH,0
T4_RUNE,4,RESOURCE,RUNE,0
T4_HEAD_CLOTH_SET1,x,HEAD,CLOTH_SET1,0
"""


def test_load_recipes_csv(tmp_path):
    p = tmp_path / "recipes.csv"
    p.write_text(CSV)
    recipes = load_recipes_csv(p)
    assert [r.item_id for r in recipes] == ["T4_MAIN_SWORD", "T5_BAG_INSIGHT", "T6_2H_BOW_KEEPER"]

    sword, bag, bow = recipes
    assert sword.materials == (
        MaterialRequirement("T4_METALBAR", 16),
        MaterialRequirement("T4_LEATHER", 8),
    )
    assert not sword.requires_tome

    assert bag.enchant == 1
    assert bag.requires_tome
    assert [m.item_id for m in bag.materials] == ["T5_CLOTH@1", "T5_LEATHER@1"]

    assert bow.materials[-1] == MaterialRequirement(
        "T6_ARTEFACT_2H_BOW_KEEPER", 1, MaterialKind.ARTEFACT
    )


def test_missing_file_raises(tmp_path):
    with pytest.raises(RecipeValidationError):
        load_recipes_csv(tmp_path / "missing.csv")


def test_empty_file_yields_nothing(tmp_path):
    p = tmp_path / "empty.csv"
    p.write_text("")
    assert load_recipes_csv(p) == []


def test_default_materials_by_slot():
    assert [m.quantity for m in default_materials(4, "OFF", 0)] == [4, 4]
    assert [m.item_id for m in default_materials(4, "CAPE", 0)] == ["T4_CLOTH", "T4_LEATHER"]
    assert artefact_id(7, "MAIN", "RUNESWORD") == "T7_ARTEFACT_MAIN_RUNESWORD"
