"""Recipe upsert: create, replace or edit a recipe in one transaction.

Flow of `upsert_recipe`:
1. Plan (no writes): check the recipe type, look for a same-title recipe of
   the user and turn the caller's intent into a concrete plan, or return a
   conflict when the intent was a plain create.
2. Store uploads through the storage collaborator.
3. Apply the plan in a single database transaction: recipe row, cover,
   steps + photos, ingredient lines (catalog find-or-create, unit lookup).
   Any failure rolls back every write.
4. Run the staged file cleanup for the outcome: files replaced by a
   successful commit are removed, or the fresh uploads are removed after a
   rollback. Cleanup never changes the outcome.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Photo, Recipe, RecipeStep, RecipeType, UsedIngredient
from ..schemas import IngredientLine, RecipePayload, UpsertAction
from ..settings import settings
from .errors import (
    RecipeStorageError,
    RecipeValidationError,
    ReferenceNotFoundError,
    UploadRejectedError,
)
from .ingredient_catalog import find_or_create_ingredient, resolve_unit
from .storage import RECIPE_FOLDER, STEP_FOLDER, StoredFile, UploadStorage

logger = logging.getLogger("recipeshare.upsert")


# --- Plans ---

@dataclass
class CreateRecipe:
    pass


@dataclass
class ReplaceExisting:
    recipe_id: str


@dataclass
class EditExisting:
    recipe_id: str


UpsertPlan = Union[CreateRecipe, ReplaceExisting, EditExisting]


@dataclass
class UpsertConflict:
    existing_recipe_id: str
    title: str


# --- Files ---

@dataclass
class UploadedImage:
    filename: Optional[str]
    data: bytes


@dataclass
class RecipeUploads:
    cover: Optional[UploadedImage] = None
    # Indexed by step position; None keeps the slot of a step without an image
    steps: list[Optional[UploadedImage]] = field(default_factory=list)

    def count(self) -> int:
        return sum(1 for image in self.steps if image) + (1 if self.cover else 0)


@dataclass
class StoredImages:
    cover: Optional[StoredFile] = None
    steps: list[Optional[StoredFile]] = field(default_factory=list)

    def keys(self) -> list[str]:
        keys = [f.key for f in self.steps if f]
        if self.cover:
            keys.insert(0, self.cover.key)
        return keys


@dataclass
class FileCleanup:
    """Storage keys to delete once the transaction outcome is known."""
    on_success: list[str] = field(default_factory=list)
    on_rollback: list[str] = field(default_factory=list)


@dataclass
class UpsertResult:
    recipe_id: str
    created: bool
    cleanup: FileCleanup


UpsertOutcome = Union[UpsertResult, UpsertConflict]


# --- Planning ---

def find_same_title(db: Session, user_id: str, title_key: str) -> Optional[Recipe]:
    return db.execute(
        select(Recipe).where(Recipe.user_id == user_id, Recipe.title_key == title_key)
    ).scalar_one_or_none()


def _check_recipe_type(db: Session, type_id: int) -> None:
    if db.get(RecipeType, type_id) is None:
        raise ReferenceNotFoundError("recipe_type", type_id)


def plan_upsert(
    db: Session, payload: RecipePayload, requested: UpsertAction = UpsertAction.create
) -> Union[UpsertPlan, UpsertConflict]:
    """Decide create / replace / edit from the caller's intent and existing data."""
    _check_recipe_type(db, payload.type_id)

    existing = find_same_title(db, payload.user_id, payload.title_key)
    if existing is None:
        return CreateRecipe()
    if requested == UpsertAction.replace:
        return ReplaceExisting(existing.id)
    if requested == UpsertAction.edit:
        return EditExisting(existing.id)
    return UpsertConflict(existing_recipe_id=existing.id, title=existing.title)


def plan_edit(db: Session, payload: RecipePayload, recipe_id: str) -> Union[UpsertPlan, UpsertConflict]:
    """Plan an edit of a known recipe; a rename onto another recipe's title conflicts."""
    _check_recipe_type(db, payload.type_id)

    existing = find_same_title(db, payload.user_id, payload.title_key)
    if existing is not None and existing.id != recipe_id:
        return UpsertConflict(existing_recipe_id=existing.id, title=existing.title)
    return EditExisting(recipe_id)


# --- Uploads ---

def check_uploads(payload: RecipePayload, uploads: RecipeUploads) -> None:
    if uploads.count() > settings.max_upload_files:
        raise UploadRejectedError(
            None, f"at most {settings.max_upload_files} files per request"
        )
    if len(uploads.steps) > len(payload.steps):
        raise RecipeValidationError([{
            "field": "step_images",
            "message": f"{len(uploads.steps)} step images for {len(payload.steps)} steps",
        }])


def store_uploads(storage: UploadStorage, uploads: RecipeUploads) -> StoredImages:
    """Save every upload; on a failure the files saved so far are removed."""
    stored = StoredImages()
    try:
        if uploads.cover:
            stored.cover = storage.save(RECIPE_FOLDER, uploads.cover.filename, uploads.cover.data)
        for image in uploads.steps:
            stored.steps.append(storage.save(STEP_FOLDER, image.filename, image.data) if image else None)
    except UploadRejectedError:
        run_cleanup(storage, stored.keys(), "upload rejected")
        raise
    except RecipeStorageError:
        run_cleanup(storage, stored.keys(), "upload failed")
        raise
    except OSError as e:
        run_cleanup(storage, stored.keys(), "upload failed")
        raise RecipeStorageError(f"Failed to store upload: {e}") from e
    return stored


def run_cleanup(storage: UploadStorage, keys: list[str], reason: str) -> None:
    """Best-effort delete of stored files. Failures are logged only."""
    for key in keys:
        try:
            if not storage.delete(key):
                logger.warning(f"Could not delete stored file {key} ({reason})")
        except Exception as e:
            logger.warning(f"Failed to delete stored file {key} ({reason}): {e}")


# --- Transaction ---

def _photo(stored: StoredFile) -> Photo:
    return Photo(storage_key=stored.key, extension=stored.extension, url=stored.url)


def _assign_fields(recipe: Recipe, payload: RecipePayload) -> None:
    recipe.title = payload.title
    recipe.title_key = payload.title_key
    recipe.description = payload.description
    recipe.prep_time = payload.prep_time
    recipe.cook_time = payload.cook_time
    recipe.servings = payload.servings
    recipe.difficulty = payload.difficulty
    recipe.is_public = payload.is_public
    recipe.type_id = payload.type_id


def _set_cover(recipe: Recipe, cover: Optional[StoredFile], cleanup: FileCleanup) -> None:
    # Without a new upload the current cover stays
    if cover is None:
        return
    if recipe.cover is not None:
        cleanup.on_success.append(recipe.cover.storage_key)
    recipe.cover = _photo(cover)


def _remove_steps(db: Session, recipe: Recipe, steps: list[RecipeStep], cleanup: FileCleanup) -> None:
    for step in steps:
        if step.photo is not None:
            cleanup.on_success.append(step.photo.storage_key)
        recipe.steps.remove(step)
    # Deletes must reach the database before re-used step numbers are inserted
    db.flush()


def _insert_steps(recipe: Recipe, texts: list[str], images: list[Optional[StoredFile]], start: int = 1) -> None:
    for number, text in enumerate(texts, start=start):
        step = RecipeStep(step_number=number, instructions=text)
        if number - 1 < len(images) and images[number - 1]:
            step.photo = _photo(images[number - 1])
        recipe.steps.append(step)


def _edit_steps(db: Session, recipe: Recipe, texts: list[str], images: list[Optional[StoredFile]], cleanup: FileCleanup) -> None:
    """Update steps in place by step number, keeping photos that are not re-uploaded."""
    current = sorted(recipe.steps, key=lambda s: s.step_number)
    _remove_steps(db, recipe, current[len(texts):], cleanup)

    for index, step in enumerate(current[:len(texts)]):
        step.instructions = texts[index]
        if index < len(images) and images[index]:
            if step.photo is not None:
                cleanup.on_success.append(step.photo.storage_key)
            step.photo = _photo(images[index])

    kept = min(len(current), len(texts))
    _insert_steps(recipe, texts[kept:], images, start=kept + 1)


def _replace_ingredients(db: Session, recipe: Recipe, lines: list[IngredientLine]) -> None:
    """Ingredient lines always mirror the last submission, never a merge."""
    recipe.ingredients.clear()
    db.flush()

    for line in lines:
        unit = resolve_unit(db, line.unit, ingredient=line.name)
        ingredient = find_or_create_ingredient(db, line.name)
        recipe.ingredients.append(UsedIngredient(
            ingredient=ingredient,
            unit=unit,
            amount=line.amount,
            is_optional=line.is_optional,
        ))


def apply_upsert(
    db: Session,
    plan: UpsertPlan,
    payload: RecipePayload,
    images: StoredImages,
    cleanup: FileCleanup,
) -> UpsertOutcome:
    """Write the recipe for `plan` and commit, or roll back everything.

    Keys of stored files that the commit makes obsolete are appended to
    cleanup.on_success; they are only valid if this returns an UpsertResult.
    """
    try:
        if isinstance(plan, CreateRecipe):
            recipe = Recipe(user_id=payload.user_id, view_count=0, is_approved=False)
            _assign_fields(recipe, payload)
            db.add(recipe)
            db.flush()
            created = True
        else:
            recipe = db.get(Recipe, plan.recipe_id)
            if recipe is None or recipe.user_id != payload.user_id:
                raise ReferenceNotFoundError("recipe", plan.recipe_id)
            _assign_fields(recipe, payload)
            created = False

        _set_cover(recipe, images.cover, cleanup)

        if isinstance(plan, EditExisting):
            _edit_steps(db, recipe, payload.steps, images.steps, cleanup)
        else:
            if isinstance(plan, ReplaceExisting):
                _remove_steps(db, recipe, list(recipe.steps), cleanup)
            _insert_steps(recipe, payload.steps, images.steps)

        _replace_ingredients(db, recipe, payload.ingredients)

        recipe_id = recipe.id
        db.commit()
    except IntegrityError as e:
        db.rollback()
        cleanup.on_success.clear()
        if isinstance(plan, CreateRecipe):
            # Lost the (user, title) race to a concurrent create
            winner = find_same_title(db, payload.user_id, payload.title_key)
            if winner is not None:
                logger.info(f"Concurrent create of '{payload.title}' for user {payload.user_id}, returning conflict")
                return UpsertConflict(existing_recipe_id=winner.id, title=winner.title)
        raise RecipeStorageError(f"Recipe could not be saved: {e.orig}") from e
    except SQLAlchemyError as e:
        db.rollback()
        cleanup.on_success.clear()
        raise RecipeStorageError(f"Recipe could not be saved: {e}") from e
    except Exception:
        db.rollback()
        cleanup.on_success.clear()
        raise

    logger.info(
        f"{'Created' if created else 'Updated'} recipe {recipe_id} "
        f"({len(payload.steps)} steps, {len(payload.ingredients)} ingredients)"
    )
    return UpsertResult(recipe_id=recipe_id, created=created, cleanup=cleanup)


# --- Entry point ---

def upsert_recipe(
    db: Session,
    storage: UploadStorage,
    payload: RecipePayload,
    uploads: Optional[RecipeUploads] = None,
    action: UpsertAction = UpsertAction.create,
    recipe_id: Optional[str] = None,
) -> UpsertOutcome:
    """Create or update a recipe from a validated payload.

    With `recipe_id` the call edits that recipe; otherwise `action` is the
    caller's intent when a same-title recipe already exists.
    Returns an UpsertResult or an UpsertConflict (nothing written).
    Raises RecipeValidationError, ReferenceNotFoundError, UploadRejectedError
    or RecipeStorageError; none of them leave partial database writes.
    """
    uploads = uploads or RecipeUploads()

    if recipe_id is not None:
        plan = plan_edit(db, payload, recipe_id)
    else:
        plan = plan_upsert(db, payload, action)
    if isinstance(plan, UpsertConflict):
        return plan

    check_uploads(payload, uploads)
    stored = store_uploads(storage, uploads)
    cleanup = FileCleanup(on_rollback=stored.keys())

    try:
        outcome = apply_upsert(db, plan, payload, stored, cleanup)
    except Exception:
        run_cleanup(storage, cleanup.on_rollback, "transaction rolled back")
        raise

    if isinstance(outcome, UpsertConflict):
        run_cleanup(storage, cleanup.on_rollback, "create lost to concurrent request")
        return outcome

    run_cleanup(storage, cleanup.on_success, "replaced by update")
    return outcome
