"""Initial schema: users, recipe types, recipes, steps, photos, ingredient catalog, units, ratings

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("username", sa.String(80), unique=True, nullable=False),
        sa.Column("nickname", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "recipe_types",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("description", sa.String(120), unique=True, nullable=False),
    )

    op.create_table(
        "units",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("abbreviation", sa.String(20), unique=True, nullable=False),
        sa.Column("name", sa.String(80), nullable=False),
    )

    # Catalog dedup key is the case-folded, trimmed name
    op.create_table(
        "ingredients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), unique=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "recipes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("title_key", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("prep_time", sa.Integer, nullable=False),
        sa.Column("cook_time", sa.Integer, nullable=False),
        sa.Column("servings", sa.Integer, nullable=False),
        sa.Column("difficulty", sa.String(20), nullable=False),
        sa.Column("is_public", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_approved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("type_id", sa.Integer, sa.ForeignKey("recipe_types.id"), nullable=False),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "title_key", name="uq_recipes_user_title"),
    )
    op.create_index("ix_recipes_user_id", "recipes", ["user_id"])

    op.create_table(
        "recipe_steps",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_number", sa.Integer, nullable=False),
        sa.Column("instructions", sa.Text, nullable=False),
        sa.UniqueConstraint("recipe_id", "step_number", name="uq_recipe_steps_number"),
    )
    op.create_index("ix_recipe_steps_recipe_id", "recipe_steps", ["recipe_id"])

    op.create_table(
        "photos",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=True),
        sa.Column("step_id", sa.String(36), sa.ForeignKey("recipe_steps.id", ondelete="CASCADE"), nullable=True),
        sa.Column("storage_key", sa.String(255), nullable=False),
        sa.Column("extension", sa.String(10), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_photos_recipe_id", "photos", ["recipe_id"])
    op.create_index("ix_photos_step_id", "photos", ["step_id"])

    op.create_table(
        "used_ingredients",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ingredient_id", sa.String(36), sa.ForeignKey("ingredients.id"), nullable=False),
        sa.Column("unit_id", sa.Integer, sa.ForeignKey("units.id"), nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("is_optional", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_used_ingredients_recipe_id", "used_ingredients", ["recipe_id"])

    op.create_table(
        "recipe_ratings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipe_id", sa.String(36), sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "recipe_id", name="uq_recipe_ratings_user_recipe"),
    )
    op.create_index("ix_recipe_ratings_recipe_id", "recipe_ratings", ["recipe_id"])


def downgrade() -> None:
    op.drop_table("recipe_ratings")
    op.drop_table("used_ingredients")
    op.drop_table("photos")
    op.drop_table("recipe_steps")
    op.drop_table("recipes")
    op.drop_table("ingredients")
    op.drop_table("units")
    op.drop_table("recipe_types")
    op.drop_table("users")
