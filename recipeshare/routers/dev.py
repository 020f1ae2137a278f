"""Dev-only endpoints for seeding.

Endpoints:
- POST /api/dev/seed - Create units, unit conversions, recipe types and a demo user
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import RecipeType, Unit, UnitConversion, User
from ..schemas import SeedResponse

router = APIRouter()
logger = logging.getLogger("recipeshare.dev")


SEED_UNITS = [
    ("g", "gram"),
    ("kg", "kilogram"),
    ("mg", "milligram"),
    ("ml", "millilitre"),
    ("l", "litre"),
    ("tsp", "teaspoon"),
    ("tbsp", "tablespoon"),
    ("cup", "cup"),
    ("oz", "ounce"),
    ("lb", "pound"),
    ("pinch", "pinch"),
    ("pc", "piece"),
]

# (from, to, factor)
SEED_CONVERSIONS = [
    ("kg", "g", 1000),
    ("g", "mg", 1000),
    ("l", "ml", 1000),
    ("tbsp", "tsp", 3),
    ("cup", "ml", 240),
    ("lb", "oz", 16),
    ("oz", "g", 28.35),
]

SEED_RECIPE_TYPES = [
    "Breakfast",
    "Starter",
    "Main course",
    "Dessert",
    "Snack",
    "Drink",
]

DEMO_USER = {
    "username": "demo",
    "nickname": "Demo Cook",
    "email": "demo@recipeshare.local",
}


@router.post("/dev/seed", response_model=SeedResponse)
def seed(db: Session = Depends(get_db)):
    """Idempotently create reference data and a demo user."""
    existing_units = set(db.execute(select(Unit.abbreviation)).scalars())
    units_created = 0
    for abbreviation, name in SEED_UNITS:
        if abbreviation not in existing_units:
            db.add(Unit(abbreviation=abbreviation, name=name))
            units_created += 1
    db.flush()

    units_by_abbreviation = {u.abbreviation: u for u in db.execute(select(Unit)).scalars()}
    existing_pairs = {
        (from_id, to_id)
        for from_id, to_id in db.execute(select(UnitConversion.from_unit_id, UnitConversion.to_unit_id))
    }
    conversions_created = 0
    for source, target, factor in SEED_CONVERSIONS:
        from_unit = units_by_abbreviation[source]
        to_unit = units_by_abbreviation[target]
        if (from_unit.id, to_unit.id) not in existing_pairs:
            db.add(UnitConversion(from_unit_id=from_unit.id, to_unit_id=to_unit.id, factor=factor))
            conversions_created += 1

    existing_types = set(db.execute(select(RecipeType.description)).scalars())
    types_created = 0
    for description in SEED_RECIPE_TYPES:
        if description not in existing_types:
            db.add(RecipeType(description=description))
            types_created += 1

    user = db.execute(
        select(User).where(User.username == DEMO_USER["username"])
    ).scalar_one_or_none()
    if user is None:
        user = User(**DEMO_USER)
        db.add(user)

    db.commit()
    db.refresh(user)

    logger.info(f"Seeded {units_created} units, {conversions_created} conversions, {types_created} recipe types")
    return SeedResponse(
        units_created=units_created,
        recipe_types_created=types_created,
        unit_conversions_created=conversions_created,
        user_id=user.id,
        message=f"Created {units_created} units and {types_created} recipe types",
    )
