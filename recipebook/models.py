from datetime import datetime, timezone

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    Integer, String, Text, Float, DateTime, ForeignKey, CheckConstraint, Index, func,
)
from .database import Base

DEFAULT_TAG_COLOR = "#ff6b6b"
DEFAULT_SERVING_UNIT = "people"


def utcnow() -> datetime:
    # microsecond precision keeps "newest first" stable for rows created in the same second
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("length(username) >= 3 AND length(username) <= 30", name="ck_users_username_len"),
        CheckConstraint("length(email) <= 254", name="ck_users_email_len"),
    )


class Ingredient(Base):
    __tablename__ = "ingredients"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Global namespace: ingredients are shared reference data
    name: Mapped[str] = mapped_column(String(100), unique=True)

    __table_args__ = (
        CheckConstraint("length(name) >= 1 AND length(name) <= 100", name="ck_ingredients_name_len"),
    )


class Tag(Base):
    __tablename__ = "tags"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    color: Mapped[str] = mapped_column(String(7), default=DEFAULT_TAG_COLOR, server_default=DEFAULT_TAG_COLOR)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("length(name) >= 1 AND length(name) <= 50", name="ck_tags_name_len"),
        CheckConstraint("length(color) = 7 AND color LIKE '#%'", name="ck_tags_color"),
    )


class Recipe(Base):
    __tablename__ = "recipes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    instructions: Mapped[str] = mapped_column(Text)
    prep_time: Mapped[int] = mapped_column(Integer, default=0)
    cook_time: Mapped[int] = mapped_column(Integer, default=0)
    servings: Mapped[int] = mapped_column(Integer, default=1)
    # column-level so dropping the column drops the check with it
    serving_unit: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint("length(serving_unit) <= 20", name="ck_recipes_serving_unit_len"),
        default=DEFAULT_SERVING_UNIT,
        server_default=DEFAULT_SERVING_UNIT,
    )
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("length(title) >= 1 AND length(title) <= 200", name="ck_recipes_title_len"),
        CheckConstraint("length(description) <= 1000", name="ck_recipes_description_len"),
        CheckConstraint("length(instructions) >= 1 AND length(instructions) <= 10000", name="ck_recipes_instructions_len"),
        CheckConstraint("prep_time >= 0 AND prep_time <= 1440", name="ck_recipes_prep_time"),
        CheckConstraint("cook_time >= 0 AND cook_time <= 1440", name="ck_recipes_cook_time"),
        CheckConstraint("servings >= 1 AND servings <= 100", name="ck_recipes_servings"),
    )


class RecipeIngredient(Base):
    __tablename__ = "recipe_ingredients"
    recipe_id: Mapped[int] = mapped_column(Integer, ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True)
    ingredient_id: Mapped[int] = mapped_column(Integer, ForeignKey("ingredients.id", ondelete="CASCADE"), primary_key=True)
    quantity: Mapped[float] = mapped_column(Float)
    unit: Mapped[str] = mapped_column(String(20))

    __table_args__ = (
        CheckConstraint("quantity > 0 AND quantity <= 10000", name="ck_recipe_ingredients_quantity"),
        CheckConstraint("length(unit) >= 1 AND length(unit) <= 20", name="ck_recipe_ingredients_unit_len"),
        Index("idx_recipe_ingredients_ingredient_id", "ingredient_id"),
    )


class RecipeTag(Base):
    __tablename__ = "recipe_tags"
    recipe_id: Mapped[int] = mapped_column(Integer, ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True)
    tag_id: Mapped[int] = mapped_column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (Index("idx_recipe_tags_tag_id", "tag_id"),)


class RecipeImage(Base):
    __tablename__ = "recipe_images"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipe_id: Mapped[int] = mapped_column(Integer, ForeignKey("recipes.id", ondelete="CASCADE"), index=True)
    filename: Mapped[str] = mapped_column(String(255))
    caption: Mapped[str] = mapped_column(String(200), default="")
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint("length(filename) <= 255", name="ck_recipe_images_filename_len"),
        CheckConstraint("length(caption) <= 200", name="ck_recipe_images_caption_len"),
    )


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"
    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(100))
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
