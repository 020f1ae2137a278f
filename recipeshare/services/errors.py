"""Exceptions raised by the recipe services.

Routers translate these into HTTP responses; every error carries enough
detail to name the field or entity that caused it.
"""

from typing import Optional


class RecipeServiceError(Exception):
    """Base class for recipe service failures."""


class RecipeValidationError(RecipeServiceError):
    """Malformed or missing input. Nothing has been written."""

    def __init__(self, errors: list[dict]):
        self.errors = errors
        fields = ", ".join(e["field"] for e in errors)
        super().__init__(f"Invalid recipe payload: {fields}")


class ReferenceNotFoundError(RecipeServiceError):
    """A unit abbreviation or recipe type did not resolve to an existing row."""

    def __init__(self, entity: str, value, ingredient: Optional[str] = None):
        self.entity = entity
        self.value = value
        self.ingredient = ingredient
        msg = f"Unknown {entity} '{value}'"
        if ingredient:
            msg += f" for ingredient '{ingredient}'"
        super().__init__(msg)

    def to_detail(self) -> dict:
        detail = {"error": f"{self.entity}_not_found", "entity": self.entity, "value": self.value}
        if self.ingredient:
            detail["ingredient"] = self.ingredient
        detail["message"] = str(self)
        return detail


class UploadRejectedError(RecipeServiceError):
    """An uploaded file failed the storage policy (type, size or count)."""

    def __init__(self, filename: Optional[str], reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"Upload '{filename}' rejected: {reason}")


class RecipeStorageError(RecipeServiceError):
    """The database or file store failed while applying an upsert."""
