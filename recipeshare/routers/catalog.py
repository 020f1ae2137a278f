"""
Read-only catalog endpoints: units, unit conversions, ingredients and recipe types.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from ..db import get_db
from ..models import Ingredient, RecipeType, Unit, UnitConversion
from ..schemas import IngredientOut, RecipeTypeOut, UnitConversionOut, UnitOut
from ..services.ingredient_catalog import normalize_ingredient_name

router = APIRouter()


@router.get("/units", response_model=list[UnitOut])
def list_units(db: Session = Depends(get_db)):
    return db.execute(select(Unit).order_by(Unit.abbreviation)).scalars().all()


@router.get("/unit-conversions", response_model=list[UnitConversionOut])
def list_unit_conversions(db: Session = Depends(get_db)):
    conversions = db.execute(
        select(UnitConversion)
        .options(joinedload(UnitConversion.from_unit), joinedload(UnitConversion.to_unit))
        .order_by(UnitConversion.id)
    ).scalars().all()
    return [
        UnitConversionOut(
            id=c.id, from_unit=c.from_unit.abbreviation, to_unit=c.to_unit.abbreviation, factor=c.factor
        )
        for c in conversions
    ]


@router.get("/ingredients", response_model=list[IngredientOut])
def list_ingredients(
    db: Session = Depends(get_db),
    search: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
):
    """List catalog ingredients, optionally filtered by a name fragment."""
    stmt = select(Ingredient)
    if search and search.strip():
        stmt = stmt.where(Ingredient.normalized_name.contains(normalize_ingredient_name(search)))
    return db.execute(stmt.order_by(Ingredient.normalized_name).limit(limit)).scalars().all()


@router.get("/recipe-types", response_model=list[RecipeTypeOut])
def list_recipe_types(db: Session = Depends(get_db)):
    return db.execute(select(RecipeType).order_by(RecipeType.description)).scalars().all()
