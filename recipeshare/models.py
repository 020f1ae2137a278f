"""SQLAlchemy ORM models for RecipeShare.

Tables:
- users: Recipe authors and raters
- recipe_types: Read-only recipe categories (e.g. "Dessert")
- recipes: Core recipe data, title unique per user (case-insensitive)
- recipe_steps: Ordered instructions, 1-based step numbers
- photos: Cover image of a recipe or the photo of a single step
- ingredients: Global catalog, deduplicated by normalized name
- units: Read-only measurement units keyed by abbreviation
- used_ingredients: Ingredient lines of a recipe (amount + unit)
- recipe_ratings: One 1..5 rating per user and recipe
- students: Student upgrade requests, one per user, with verification state
- unit_conversions: Read-only factors between two units
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Text,
    Integer,
    Boolean,
    Float,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func, false

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Account that owns recipes. Authentication lives outside this service."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    nickname: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # Reviews student upgrade requests
    is_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    recipes: Mapped[list["Recipe"]] = relationship(
        "Recipe", back_populates="user", cascade="all, delete-orphan"
    )


class RecipeType(Base):
    __tablename__ = "recipe_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    description: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)


class Recipe(Base):
    """A user's recipe. Written only through the upsert service."""
    __tablename__ = "recipes"
    __table_args__ = (
        Index("ix_recipes_user_id", "user_id"),
        UniqueConstraint("user_id", "title_key", name="uq_recipes_user_title"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    # Case-folded, trimmed title; backs the per-user uniqueness rule
    title_key: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    prep_time: Mapped[int] = mapped_column(Integer, nullable=False)
    cook_time: Mapped[int] = mapped_column(Integer, nullable=False)
    servings: Mapped[int] = mapped_column(Integer, nullable=False)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_approved: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("recipe_types.id"), nullable=False
    )
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="recipes")
    type: Mapped["RecipeType"] = relationship("RecipeType")

    steps: Mapped[list["RecipeStep"]] = relationship(
        "RecipeStep", back_populates="recipe", cascade="all, delete-orphan",
        order_by="RecipeStep.step_number"
    )
    cover: Mapped[Optional["Photo"]] = relationship(
        "Photo", back_populates="recipe", cascade="all, delete-orphan",
        uselist=False, foreign_keys="[Photo.recipe_id]"
    )
    ingredients: Mapped[list["UsedIngredient"]] = relationship(
        "UsedIngredient", back_populates="recipe", cascade="all, delete-orphan"
    )
    ratings: Mapped[list["Rating"]] = relationship(
        "Rating", back_populates="recipe", cascade="all, delete-orphan"
    )

    @property
    def image_url(self) -> Optional[str]:
        return self.cover.url if self.cover else None


class RecipeStep(Base):
    """Ordered instruction within a recipe."""
    __tablename__ = "recipe_steps"
    __table_args__ = (
        Index("ix_recipe_steps_recipe_id", "recipe_id"),
        UniqueConstraint("recipe_id", "step_number", name="uq_recipe_steps_number"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )

    step_number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based
    instructions: Mapped[str] = mapped_column(Text, nullable=False)

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="steps")
    photo: Mapped[Optional["Photo"]] = relationship(
        "Photo", back_populates="step", cascade="all, delete-orphan",
        uselist=False, foreign_keys="[Photo.step_id]"
    )

    @property
    def photo_url(self) -> Optional[str]:
        return self.photo.url if self.photo else None


class Photo(Base):
    """Stored image. Exactly one of recipe_id (cover) or step_id is set."""
    __tablename__ = "photos"
    __table_args__ = (
        Index("ix_photos_recipe_id", "recipe_id"),
        Index("ix_photos_step_id", "step_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    recipe_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=True
    )
    step_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("recipe_steps.id", ondelete="CASCADE"), nullable=True
    )

    storage_key: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str] = mapped_column(String(10), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    recipe: Mapped[Optional["Recipe"]] = relationship(
        "Recipe", back_populates="cover", foreign_keys="[Photo.recipe_id]"
    )
    step: Mapped[Optional["RecipeStep"]] = relationship(
        "RecipeStep", back_populates="photo", foreign_keys="[Photo.step_id]"
    )


class Ingredient(Base):
    """Global ingredient catalog entry, shared by every recipe."""
    __tablename__ = "ingredients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # First-submitted casing
    normalized_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    abbreviation: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(80), nullable=False)


class UsedIngredient(Base):
    """Ingredient line of a recipe. Rewritten in full on every upsert."""
    __tablename__ = "used_ingredients"
    __table_args__ = (
        Index("ix_used_ingredients_recipe_id", "recipe_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    ingredient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ingredients.id"), nullable=False
    )
    unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("units.id"), nullable=False)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    is_optional: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="ingredients")
    ingredient: Mapped["Ingredient"] = relationship("Ingredient")
    unit: Mapped["Unit"] = relationship("Unit")

    @property
    def name(self) -> str:
        return self.ingredient.name

    @property
    def unit_abbreviation(self) -> str:
        return self.unit.abbreviation


class Rating(Base):
    __tablename__ = "recipe_ratings"
    __table_args__ = (
        Index("ix_recipe_ratings_recipe_id", "recipe_id"),
        UniqueConstraint("user_id", "recipe_id", name="uq_recipe_ratings_user_recipe"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    recipe_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="ratings")
    user: Mapped["User"] = relationship("User")

    @property
    def username(self) -> str:
        return self.user.username


class Student(Base):
    """Student upgrade of a user account, verified by an admin from ID photos."""
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    card_number: Mapped[str] = mapped_column(String(40), nullable=False)

    id_front_key: Mapped[str] = mapped_column(String(255), nullable=False)
    id_front_url: Mapped[str] = mapped_column(String(500), nullable=False)
    id_back_key: Mapped[str] = mapped_column(String(255), nullable=False)
    id_back_url: Mapped[str] = mapped_column(String(500), nullable=False)

    process: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )  # pending | approved | rejected
    account_balance: Mapped[float] = mapped_column(
        Float, nullable=False, default=0, server_default="0"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship("User")

    @property
    def email(self) -> str:
        return self.user.email

    @property
    def nickname(self) -> str:
        return self.user.nickname


class UnitConversion(Base):
    """Multiply an amount in from_unit by factor to get it in to_unit."""
    __tablename__ = "unit_conversions"
    __table_args__ = (
        UniqueConstraint("from_unit_id", "to_unit_id", name="uq_unit_conversions_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("units.id"), nullable=False)
    to_unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("units.id"), nullable=False)
    factor: Mapped[float] = mapped_column(Float, nullable=False)

    from_unit: Mapped["Unit"] = relationship("Unit", foreign_keys=[from_unit_id])
    to_unit: Mapped["Unit"] = relationship("Unit", foreign_keys=[to_unit_id])
