import pytest

from recipeshare.models import Ingredient, Recipe
from recipeshare.services import ingredient_catalog
from recipeshare.services.errors import ReferenceNotFoundError
from recipeshare.services.ingredient_catalog import (
    find_or_create_ingredient,
    normalize_ingredient_name,
    resolve_unit,
)


@pytest.mark.parametrize("raw, expected", [
    ("Tomato", "tomato"),
    ("  TOMATO ", "tomato"),
    ("Crème Fraîche", "crème fraîche"),
    ("STRASSE", "strasse"),
    ("", ""),
])
def test_normalize_ingredient_name(raw, expected):
    assert normalize_ingredient_name(raw) == expected


def test_find_or_create_reuses_entry(db_session):
    first = find_or_create_ingredient(db_session, "Olive Oil")
    db_session.commit()

    second = find_or_create_ingredient(db_session, "  olive oil ")
    db_session.commit()

    assert first.id == second.id
    assert db_session.query(Ingredient).count() == 1


def test_first_casing_is_kept(db_session):
    find_or_create_ingredient(db_session, "  Basil ")
    find_or_create_ingredient(db_session, "BASIL")
    db_session.commit()

    entry = db_session.query(Ingredient).one()
    assert entry.name == "Basil"
    assert entry.normalized_name == "basil"


def test_concurrent_insert_reuses_winner(db_session, user, recipe_type, monkeypatch):
    # Another request committed "garlic" after our lookup
    winner = Ingredient(name="Garlic", normalized_name="garlic")
    db_session.add(winner)
    db_session.commit()
    winner_id = winner.id

    # Open a transaction with pending work, as the upsert does
    recipe = Recipe(
        user_id=user.id, title="Aioli", title_key="aioli", description="Sauce",
        prep_time=5, cook_time=0, servings=2, difficulty="easy", type_id=recipe_type.id,
    )
    db_session.add(recipe)
    db_session.flush()

    real_find = ingredient_catalog.find_ingredient
    calls = []

    def stale_find(db, normalized):
        calls.append(normalized)
        if len(calls) == 1:
            return None
        return real_find(db, normalized)

    monkeypatch.setattr(ingredient_catalog, "find_ingredient", stale_find)

    ingredient = find_or_create_ingredient(db_session, "GARLIC")

    assert ingredient.id == winner_id
    assert len(calls) == 2
    # The outer transaction survived the failed insert
    db_session.commit()
    assert db_session.get(Recipe, recipe.id) is not None
    assert db_session.query(Ingredient).count() == 1


def test_resolve_unit(db_session, units):
    assert resolve_unit(db_session, " g ").id == units["g"].id


def test_resolve_unit_unknown(db_session, units):
    with pytest.raises(ReferenceNotFoundError) as exc:
        resolve_unit(db_session, "bogus", ingredient="Flour")

    detail = exc.value.to_detail()
    assert detail["error"] == "unit_not_found"
    assert detail["value"] == "bogus"
    assert detail["ingredient"] == "Flour"


def test_unit_match_is_exact(db_session, units):
    with pytest.raises(ReferenceNotFoundError):
        resolve_unit(db_session, "G")
