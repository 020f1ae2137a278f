"""Recipes API router.

Endpoints:
- POST /api/recipes - Submit a recipe (create, or replace/edit a same-title one)
- PUT /api/recipes/{id} - Edit one of the caller's recipes
- GET /api/recipes/search - Search public recipes
- GET /api/recipes/user/{user_id} - List a user's recipes
- GET /api/recipes/{id} - Recipe with ordered steps, photos and ingredients
- DELETE /api/recipes/{id} - Delete one of the caller's recipes
"""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload, selectinload

from ..db import get_db
from ..deps import get_current_user, get_current_user_optional
from ..infra.idempotency import idempotency_precheck, idempotency_store_result, idempotency_clear_key
from ..models import Ingredient, Recipe, RecipeStep, RecipeType, UsedIngredient, User
from ..schemas import (
    Pagination,
    RecipeListOut,
    RecipeOut,
    RecipeSearchItem,
    RecipeSearchPage,
    RecipeStepOut,
    UpsertAction,
    UpsertConflictOut,
    UpsertResultOut,
    UsedIngredientOut,
)
from ..services.errors import (
    RecipeStorageError,
    RecipeValidationError,
    ReferenceNotFoundError,
    UploadRejectedError,
)
from ..services.recipe_payload import parse_recipe_payload
from ..services.recipe_upsert import (
    RecipeUploads,
    UploadedImage,
    UpsertConflict,
    run_cleanup,
    upsert_recipe,
)
from ..services.storage import UploadStorage, get_storage
from ..settings import settings

router = APIRouter()
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
logger = logging.getLogger("recipeshare.recipes")

SORT_ORDERS = {
    "newest": Recipe.created_at.desc(),
    "oldest": Recipe.created_at.asc(),
    "name_asc": Recipe.title.asc(),
    "name_desc": Recipe.title.desc(),
}


def _recipe_to_out(recipe: Recipe) -> RecipeOut:
    """Convert Recipe model to RecipeOut with catalog names and unit abbreviations."""
    return RecipeOut(
        id=recipe.id,
        user_id=recipe.user_id,
        title=recipe.title,
        description=recipe.description,
        prep_time=recipe.prep_time,
        cook_time=recipe.cook_time,
        servings=recipe.servings,
        difficulty=recipe.difficulty,
        is_public=recipe.is_public,
        is_approved=recipe.is_approved,
        type_id=recipe.type_id,
        view_count=recipe.view_count,
        image_url=recipe.image_url,
        steps=[RecipeStepOut.model_validate(s) for s in recipe.steps],
        ingredients=[
            UsedIngredientOut(
                ingredient_id=ui.ingredient_id,
                name=ui.name,
                amount=ui.amount,
                unit=ui.unit_abbreviation,
                is_optional=ui.is_optional,
            )
            for ui in recipe.ingredients
        ],
        created_at=recipe.created_at,
        updated_at=recipe.updated_at,
    )


def _load_recipe(db: Session, recipe_id: str) -> Optional[Recipe]:
    return (
        db.query(Recipe)
        .options(
            selectinload(Recipe.steps).joinedload(RecipeStep.photo),
            joinedload(Recipe.cover),
            selectinload(Recipe.ingredients).joinedload(UsedIngredient.ingredient),
            selectinload(Recipe.ingredients).joinedload(UsedIngredient.unit),
        )
        .filter(Recipe.id == recipe_id)
        .first()
    )


async def _read_uploads(image: Optional[UploadFile], step_images: Optional[list[UploadFile]]) -> RecipeUploads:
    uploads = RecipeUploads()
    # Browsers send an empty part for an untouched file input
    if image is not None and image.filename:
        uploads.cover = UploadedImage(filename=image.filename, data=await image.read())
    # Empty step parts keep their position so later images stay on their steps
    for f in step_images or []:
        uploads.steps.append(UploadedImage(filename=f.filename, data=await f.read()) if f.filename else None)
    while uploads.steps and uploads.steps[-1] is None:
        uploads.steps.pop()
    return uploads


def _submit(
    db: Session,
    storage: UploadStorage,
    user: User,
    fields: dict,
    uploads: RecipeUploads,
    action: UpsertAction,
    recipe_id: Optional[str] = None,
) -> tuple[int, dict]:
    """Run the upsert and map its outcome to (status, body)."""
    try:
        payload = parse_recipe_payload(user.id, fields)
        outcome = upsert_recipe(db, storage, payload, uploads, action=action, recipe_id=recipe_id)
    except RecipeValidationError as e:
        raise HTTPException(status_code=422, detail={"error": "validation_error", "errors": e.errors})
    except ReferenceNotFoundError as e:
        status = 404 if e.entity == "recipe" else 422
        raise HTTPException(status_code=status, detail=e.to_detail())
    except UploadRejectedError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "upload_rejected", "file": e.filename, "message": e.reason},
        )
    except RecipeStorageError as e:
        logger.error(f"Recipe upsert failed for user {user.id}: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "storage_error", "message": "Recipe could not be saved"},
        )

    if isinstance(outcome, UpsertConflict):
        conflict = UpsertConflictOut(
            message=f"You already have a recipe titled '{outcome.title}'",
            existing_recipe_id=outcome.existing_recipe_id,
        )
        return 409, conflict.model_dump(mode="json")

    result = UpsertResultOut(recipe_id=outcome.recipe_id, created=outcome.created)
    return (201 if outcome.created else 200), result.model_dump()


async def _handle_submission(
    request: Request,
    db: Session,
    storage: UploadStorage,
    user: User,
    fields: dict,
    image: Optional[UploadFile],
    step_images: Optional[list[UploadFile]],
    action: UpsertAction,
    recipe_id: Optional[str] = None,
):
    route_key = f"recipe_edit:{recipe_id}" if recipe_id else "recipe_submit"
    pre = await idempotency_precheck(request, user_id=user.id, route_key=route_key)
    if isinstance(pre, JSONResponse):
        return pre

    try:
        uploads = await _read_uploads(image, step_images)
        status, body = _submit(db, storage, user, fields, uploads, action, recipe_id=recipe_id)
    except Exception:
        if pre:
            await idempotency_clear_key(pre[0])
        raise

    if pre:
        redis_key, req_hash = pre
        await idempotency_store_result(redis_key, req_hash, status=status, body=body)
    return JSONResponse(content=body, status_code=status)


@router.post(
    "/recipes",
    response_model=UpsertResultOut,
    status_code=201,
    responses={200: {"model": UpsertResultOut}, 409: {"model": UpsertConflictOut}},
)
@limiter.limit(settings.submit_rate_limit)
async def submit_recipe(
    request: Request,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    steps: Optional[str] = Form(None, description="JSON array of step texts"),
    prep_time: Optional[str] = Form(None),
    cook_time: Optional[str] = Form(None),
    servings: Optional[str] = Form(None),
    difficulty: Optional[str] = Form(None),
    is_public: Optional[str] = Form(None),
    type_id: Optional[str] = Form(None),
    ingredients: Optional[str] = Form(None, description="JSON array of {name, amount, unit, is_optional}"),
    action: UpsertAction = Form(UpsertAction.create),
    image: Optional[UploadFile] = File(None, description="Cover image"),
    step_images: Optional[list[UploadFile]] = File(None, description="Step images, in step order"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
):
    """Submit a recipe.

    If the caller already has a recipe with the same title (case-insensitive),
    `action` decides: `create` answers 409 with the existing id, `replace`
    rewrites it from scratch, `edit` updates it in place.
    """
    fields = {
        "title": title,
        "description": description,
        "steps": steps,
        "prep_time": prep_time,
        "cook_time": cook_time,
        "servings": servings,
        "difficulty": difficulty,
        "is_public": is_public,
        "type_id": type_id,
        "ingredients": ingredients,
    }
    return await _handle_submission(request, db, storage, user, fields, image, step_images, action)


@router.put(
    "/recipes/{recipe_id}",
    response_model=UpsertResultOut,
    responses={409: {"model": UpsertConflictOut}},
)
async def edit_recipe(
    recipe_id: str,
    request: Request,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    steps: Optional[str] = Form(None),
    prep_time: Optional[str] = Form(None),
    cook_time: Optional[str] = Form(None),
    servings: Optional[str] = Form(None),
    difficulty: Optional[str] = Form(None),
    is_public: Optional[str] = Form(None),
    type_id: Optional[str] = Form(None),
    ingredients: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    step_images: Optional[list[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
):
    """Edit one of the caller's recipes. Ingredient lines are replaced in full."""
    recipe = db.get(Recipe, recipe_id)
    if recipe is None or recipe.user_id != user.id:
        raise HTTPException(status_code=404, detail="Recipe not found")

    fields = {
        "title": title,
        "description": description,
        "steps": steps,
        "prep_time": prep_time,
        "cook_time": cook_time,
        "servings": servings,
        "difficulty": difficulty,
        "is_public": is_public,
        "type_id": type_id,
        "ingredients": ingredients,
    }
    return await _handle_submission(
        request, db, storage, user, fields, image, step_images, UpsertAction.edit, recipe_id=recipe_id
    )


@router.get("/recipes/search", response_model=RecipeSearchPage)
def search_recipes(
    db: Session = Depends(get_db),
    name: Optional[str] = Query(None),
    author: Optional[str] = Query(None),
    type_id: Optional[int] = Query(None),
    include: list[str] = Query([], description="Ingredient name fragments, any may match"),
    exclude: list[str] = Query([], description="Ingredient name fragments, none may match"),
    sort: str = Query("newest"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    """Search public recipes by title, author, type and ingredients."""
    query = (
        db.query(Recipe, User.nickname, RecipeType.description)
        .join(User, Recipe.user_id == User.id)
        .outerjoin(RecipeType, Recipe.type_id == RecipeType.id)
        .filter(Recipe.is_public.is_(True))
    )

    if name:
        query = query.filter(Recipe.title.ilike(f"%{name}%"))
    if author:
        query = query.filter(User.nickname.ilike(f"%{author}%"))
    if type_id:
        query = query.filter(Recipe.type_id == type_id)

    include = [t.strip() for t in include if t and t.strip()]
    exclude = [t.strip() for t in exclude if t and t.strip()]
    if include:
        query = query.filter(Recipe.ingredients.any(UsedIngredient.ingredient.has(
            or_(*[Ingredient.name.ilike(f"%{t}%") for t in include])
        )))
    if exclude:
        query = query.filter(~Recipe.ingredients.any(UsedIngredient.ingredient.has(
            or_(*[Ingredient.name.ilike(f"%{t}%") for t in exclude])
        )))

    total = query.with_entities(func.count(Recipe.id)).scalar() or 0
    rows = (
        query
        .options(joinedload(Recipe.cover))
        .order_by(SORT_ORDERS.get(sort, SORT_ORDERS["newest"]))
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    items = []
    for recipe, author_name, type_description in rows:
        item = RecipeListOut.model_validate(recipe).model_dump()
        items.append(RecipeSearchItem(**item, author_name=author_name, type_description=type_description))

    return RecipeSearchPage(
        items=items,
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.get("/recipes/user/{user_id}", response_model=list[RecipeListOut])
def list_user_recipes(
    user_id: str,
    db: Session = Depends(get_db),
    viewer: Optional[User] = Depends(get_current_user_optional),
):
    """List a user's recipes, newest first. Private ones only for their owner."""
    query = (
        db.query(Recipe)
        .options(joinedload(Recipe.cover))
        .filter(Recipe.user_id == user_id)
    )
    if viewer is None or viewer.id != user_id:
        query = query.filter(Recipe.is_public.is_(True))
    return query.order_by(Recipe.created_at.desc()).all()


@router.get("/recipes/{recipe_id}", response_model=RecipeOut)
def get_recipe(
    recipe_id: str,
    db: Session = Depends(get_db),
    viewer: Optional[User] = Depends(get_current_user_optional),
):
    """Get a recipe with ordered steps, photos and ingredient lines."""
    recipe = _load_recipe(db, recipe_id)
    if recipe is None or (not recipe.is_public and (viewer is None or viewer.id != recipe.user_id)):
        raise HTTPException(status_code=404, detail="Recipe not found")

    recipe.view_count += 1
    db.commit()

    return _recipe_to_out(_load_recipe(db, recipe_id))


@router.delete("/recipes/{recipe_id}", status_code=204)
def delete_recipe(
    recipe_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: UploadStorage = Depends(get_storage),
):
    """Delete a recipe with its steps, photos, ingredient lines and ratings."""
    recipe = _load_recipe(db, recipe_id)
    if recipe is None or recipe.user_id != user.id:
        raise HTTPException(status_code=404, detail="Recipe not found")

    # Collect file keys before the rows are gone
    keys = [s.photo.storage_key for s in recipe.steps if s.photo is not None]
    if recipe.cover is not None:
        keys.append(recipe.cover.storage_key)

    db.delete(recipe)
    db.commit()

    # Files go after the commit; a failure only leaves orphaned files
    run_cleanup(storage, keys, f"recipe {recipe_id} deleted")
    return None
