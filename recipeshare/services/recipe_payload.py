"""Validation of raw recipe submissions.

Multipart forms carry scalars as strings and the steps / ingredient lists
as JSON text. Everything is checked before any storage or database work,
and all problems are reported together.
"""

import json
import math
from typing import Any, Optional

from ..schemas import IngredientLine, RecipePayload
from .errors import RecipeValidationError

REQUIRED_FIELDS = (
    "title",
    "description",
    "steps",
    "prep_time",
    "cook_time",
    "servings",
    "difficulty",
    "type_id",
)

# Column widths of recipes.title, ingredients.name and units.abbreviation
TITLE_MAX = 200
INGREDIENT_NAME_MAX = 255
UNIT_MAX = 20

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _load_json_list(raw: Any, field: str, errors: list[dict]) -> Optional[list]:
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        errors.append({"field": field, "message": f"{field} must be a JSON array"})
        return None
    if not isinstance(value, list):
        errors.append({"field": field, "message": f"{field} must be a JSON array"})
        return None
    return value


def _parse_int(raw: Any, field: str, errors: list[dict], minimum: int) -> Optional[int]:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        errors.append({"field": field, "message": f"{field} must be an integer"})
        return None
    if value < minimum:
        errors.append({"field": field, "message": f"{field} must be >= {minimum}"})
        return None
    return value


def _parse_bool(raw: Any, field: str, errors: list[dict], default: bool) -> bool:
    if _is_blank(raw):
        return default
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    errors.append({"field": field, "message": f"{field} must be a boolean"})
    return default


def _positive_amount(raw: Any) -> Optional[float]:
    if isinstance(raw, bool) or raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def parse_steps(raw: Any, errors: list[dict]) -> list[str]:
    items = _load_json_list(raw, "steps", errors)
    if items is None:
        return []
    steps = []
    for index, item in enumerate(items):
        if not isinstance(item, str) or not item.strip():
            errors.append({
                "field": f"steps[{index}]",
                "message": f"Step {index + 1} must be non-empty text",
            })
            continue
        steps.append(item.strip())
    if not items:
        errors.append({"field": "steps", "message": "At least one step is required"})
    return steps


def parse_ingredient_lines(raw: Any, errors: list[dict]) -> list[IngredientLine]:
    """Parse ingredient lines, collecting every bad field of every line.

    Each line needs a non-empty name, a positive numeric amount and a
    non-empty unit. One error entry is produced per offending line, listing
    all of its missing or invalid fields.
    """
    if _is_blank(raw):
        return []
    items = _load_json_list(raw, "ingredients", errors)
    if items is None:
        return []

    lines = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            errors.append({
                "field": f"ingredients[{index}]",
                "ingredient": None,
                "missing": ["name", "amount", "unit"],
                "message": f"Ingredient {index + 1} must be an object",
            })
            continue

        name = item.get("name")
        unit = item.get("unit")
        amount = _positive_amount(item.get("amount"))

        missing = []
        if not isinstance(name, str) or not name.strip() or len(name.strip().casefold()) > INGREDIENT_NAME_MAX:
            missing.append("name")
        if amount is None:
            missing.append("amount")
        if not isinstance(unit, str) or not unit.strip() or len(unit.strip()) > UNIT_MAX:
            missing.append("unit")

        if missing:
            label = name.strip() if isinstance(name, str) and name.strip() else f"#{index + 1}"
            errors.append({
                "field": f"ingredients[{index}]",
                "ingredient": label,
                "missing": missing,
                "message": f"Ingredient '{label}' is missing or has invalid: {', '.join(missing)}",
            })
            continue

        lines.append(IngredientLine(
            name=name,
            amount=amount,
            unit=unit.strip(),
            is_optional=_parse_bool(item.get("is_optional"), f"ingredients[{index}].is_optional", errors, False),
        ))
    return lines


def parse_recipe_payload(user_id: str, fields: dict) -> RecipePayload:
    """Build a RecipePayload from raw form values or raise RecipeValidationError."""
    errors: list[dict] = []

    missing = [name for name in REQUIRED_FIELDS if _is_blank(fields.get(name))]
    if missing:
        errors.append({
            "field": ",".join(missing),
            "missing": missing,
            "message": f"Missing required fields: {', '.join(missing)}",
        })

    def present(name):
        return name not in missing

    title = fields["title"].strip() if present("title") else ""
    # The case-folded key can be longer than the title ("ß" folds to "ss")
    if len(title) > TITLE_MAX or len(title.casefold()) > TITLE_MAX:
        errors.append({"field": "title", "message": f"title must be at most {TITLE_MAX} characters"})

    difficulty = str(fields["difficulty"]).strip() if present("difficulty") else ""
    if len(difficulty) > 20:
        errors.append({"field": "difficulty", "message": "difficulty must be at most 20 characters"})

    steps = parse_steps(fields["steps"], errors) if present("steps") else []
    prep_time = _parse_int(fields["prep_time"], "prep_time", errors, 0) if present("prep_time") else None
    cook_time = _parse_int(fields["cook_time"], "cook_time", errors, 0) if present("cook_time") else None
    servings = _parse_int(fields["servings"], "servings", errors, 1) if present("servings") else None
    type_id = _parse_int(fields["type_id"], "type_id", errors, 1) if present("type_id") else None
    is_public = _parse_bool(fields.get("is_public"), "is_public", errors, True)
    ingredients = parse_ingredient_lines(fields.get("ingredients"), errors)

    if errors:
        raise RecipeValidationError(errors)

    return RecipePayload(
        user_id=user_id,
        title=title,
        description=fields["description"].strip(),
        steps=steps,
        prep_time=prep_time,
        cook_time=cook_time,
        servings=servings,
        difficulty=difficulty,
        is_public=is_public,
        type_id=type_id,
        ingredients=ingredients,
    )
