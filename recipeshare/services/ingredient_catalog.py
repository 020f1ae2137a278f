"""Ingredient catalog and unit lookups used inside the upsert transaction."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Ingredient, Unit
from .errors import ReferenceNotFoundError

logger = logging.getLogger("recipeshare.catalog")


def normalize_ingredient_name(name: str) -> str:
    """Catalog dedup key: case-folded, surrounding whitespace trimmed.

    "  Tomato " and "TOMATO" share the key "tomato".
    """
    if not name:
        return ""
    return name.strip().casefold()


def find_ingredient(db: Session, normalized: str) -> Ingredient | None:
    return db.execute(
        select(Ingredient).where(Ingredient.normalized_name == normalized)
    ).scalar_one_or_none()


def find_or_create_ingredient(db: Session, name: str) -> Ingredient:
    """Return the catalog entry for `name`, inserting it on first use.

    The display name of a new entry is the submitted name (trimmed), so the
    first casing ever submitted is the one the catalog keeps.

    A concurrent request may insert the same normalized name between our
    lookup and insert. The unique constraint on normalized_name rejects the
    second insert; the savepoint is rolled back and the winner's row reused.
    """
    normalized = normalize_ingredient_name(name)
    existing = find_ingredient(db, normalized)
    if existing:
        return existing

    ingredient = Ingredient(name=name.strip(), normalized_name=normalized)
    try:
        with db.begin_nested():
            db.add(ingredient)
    except IntegrityError:
        logger.info(f"Ingredient '{normalized}' inserted concurrently, reusing existing row")
        winner = find_ingredient(db, normalized)
        if winner is None:
            raise
        return winner
    return ingredient


def resolve_unit(db: Session, abbreviation: str, ingredient: str | None = None) -> Unit:
    """Exact-match a unit abbreviation. Unknown units abort the transaction."""
    unit = db.execute(
        select(Unit).where(Unit.abbreviation == abbreviation.strip())
    ).scalar_one_or_none()
    if unit is None:
        raise ReferenceNotFoundError("unit", abbreviation, ingredient=ingredient)
    return unit
