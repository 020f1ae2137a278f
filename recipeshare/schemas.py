"""Pydantic schemas for the RecipeShare API.

Request/response models for:
- Recipe upsert payloads and outcomes
- Recipe detail / list / search views
- Catalog reads (units, ingredients, recipe types)
- Ratings
- Student upgrades and unit conversions
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# --- Upsert input ---

class UpsertAction(str, Enum):
    create = "create"
    replace = "replace"
    edit = "edit"


class IngredientLine(BaseModel):
    name: str
    amount: float
    unit: str
    is_optional: bool = False


class RecipePayload(BaseModel):
    """A validated recipe submission (built by services.recipe_payload)."""
    user_id: str
    title: str
    description: str
    steps: list[str]
    prep_time: int
    cook_time: int
    servings: int
    difficulty: str
    is_public: bool = True
    type_id: int
    ingredients: list[IngredientLine] = []

    @property
    def title_key(self) -> str:
        return self.title.strip().casefold()


# --- Upsert output ---

class UpsertResultOut(BaseModel):
    recipe_id: str
    created: bool


class UpsertConflictOut(BaseModel):
    error: str = "recipe_exists"
    message: str
    existing_recipe_id: str
    options: list[UpsertAction] = [UpsertAction.replace, UpsertAction.edit]


# --- Recipe views ---

class RecipeStepOut(BaseModel):
    step_number: int
    instructions: str
    photo_url: Optional[str] = None

    class Config:
        from_attributes = True


class UsedIngredientOut(BaseModel):
    ingredient_id: str
    name: str
    amount: float
    unit: str
    is_optional: bool


class RecipeOut(BaseModel):
    id: str
    user_id: str
    title: str
    description: str
    prep_time: int
    cook_time: int
    servings: int
    difficulty: str
    is_public: bool
    is_approved: bool
    type_id: int
    view_count: int
    image_url: Optional[str] = None
    steps: list[RecipeStepOut] = []
    ingredients: list[UsedIngredientOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RecipeListOut(BaseModel):
    id: str
    user_id: str
    title: str
    description: str
    difficulty: str
    servings: int
    prep_time: int
    cook_time: int
    type_id: int
    image_url: Optional[str] = None
    view_count: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecipeSearchItem(RecipeListOut):
    author_name: str
    type_description: Optional[str] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class RecipeSearchPage(BaseModel):
    items: list[RecipeSearchItem]
    pagination: Pagination


# --- Catalog ---

class UnitOut(BaseModel):
    id: int
    abbreviation: str
    name: str

    class Config:
        from_attributes = True


class IngredientOut(BaseModel):
    id: str
    name: str

    class Config:
        from_attributes = True


class RecipeTypeOut(BaseModel):
    id: int
    description: str

    class Config:
        from_attributes = True


# --- Ratings ---

class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class RatingCreatedOut(BaseModel):
    message: str
    rating_id: str


class RatingOut(BaseModel):
    id: str
    user_id: str
    username: str
    recipe_id: str
    rating: int
    comment: Optional[str]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RatingAverageOut(BaseModel):
    average_rating: float
    total_ratings: int


class HasRatedOut(BaseModel):
    has_rated: bool


# --- Students ---

class StudentProcess(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class StudentOut(BaseModel):
    id: str
    user_id: str
    email: str
    nickname: str
    card_number: str
    id_front_url: str
    id_back_url: str
    process: StudentProcess
    account_balance: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StudentProcessUpdate(BaseModel):
    process: StudentProcess


class StudentBalanceUpdate(BaseModel):
    # Positive to top up, negative to charge
    amount: float = Field(..., allow_inf_nan=False)

    @field_validator("amount")
    @classmethod
    def amount_not_zero(cls, value: float) -> float:
        if value == 0:
            raise ValueError("amount must not be zero")
        return value


class UnitConversionOut(BaseModel):
    id: int
    from_unit: str
    to_unit: str
    factor: float


# --- Dev ---

class SeedResponse(BaseModel):
    units_created: int
    recipe_types_created: int
    unit_conversions_created: int = 0
    user_id: str
    message: str
