"""Recipe ratings.

Endpoints:
- POST /api/recipes/{id}/ratings - Rate a recipe (once per user, not your own)
- GET /api/recipes/{id}/ratings - Ratings of a recipe, newest first
- GET /api/recipes/{id}/ratings/average - Average and count
- GET /api/users/{user_id}/recipes/{recipe_id}/rated - Has the user rated it
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..db import get_db
from ..deps import get_current_user
from ..models import Rating, Recipe, User
from ..schemas import HasRatedOut, RatingAverageOut, RatingCreate, RatingCreatedOut, RatingOut

router = APIRouter()
logger = logging.getLogger("recipeshare.ratings")


def _user_rating(db: Session, user_id: str, recipe_id: str):
    return db.execute(
        select(Rating).where(Rating.user_id == user_id, Rating.recipe_id == recipe_id)
    ).scalar_one_or_none()


@router.post("/recipes/{recipe_id}/ratings", response_model=RatingCreatedOut, status_code=201)
def create_rating(
    recipe_id: str,
    payload: RatingCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    recipe = db.get(Recipe, recipe_id)
    if recipe is None:
        raise HTTPException(status_code=404, detail="Recipe not found")
    if recipe.user_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot rate your own recipe")
    if _user_rating(db, user.id, recipe_id) is not None:
        raise HTTPException(status_code=400, detail="You have already rated this recipe")

    rating = Rating(user_id=user.id, recipe_id=recipe_id, rating=payload.rating, comment=payload.comment)
    db.add(rating)
    try:
        db.commit()
    except IntegrityError:
        # Same user rating twice concurrently
        db.rollback()
        raise HTTPException(status_code=400, detail="You have already rated this recipe")

    logger.info(f"User {user.id} rated recipe {recipe_id}: {payload.rating}")
    return RatingCreatedOut(message="Rating created successfully", rating_id=rating.id)


@router.get("/recipes/{recipe_id}/ratings", response_model=list[RatingOut])
def list_ratings(recipe_id: str, db: Session = Depends(get_db)):
    return (
        db.query(Rating)
        .options(joinedload(Rating.user))
        .filter(Rating.recipe_id == recipe_id)
        .order_by(Rating.created_at.desc())
        .all()
    )


@router.get("/recipes/{recipe_id}/ratings/average", response_model=RatingAverageOut)
def average_rating(recipe_id: str, db: Session = Depends(get_db)):
    avg, total = db.execute(
        select(func.avg(Rating.rating), func.count(Rating.id)).where(Rating.recipe_id == recipe_id)
    ).one()
    return RatingAverageOut(average_rating=float(avg or 0), total_ratings=total)


@router.get("/users/{user_id}/recipes/{recipe_id}/rated", response_model=HasRatedOut)
def has_user_rated(user_id: str, recipe_id: str, db: Session = Depends(get_db)):
    return HasRatedOut(has_rated=_user_rating(db, user_id, recipe_id) is not None)
