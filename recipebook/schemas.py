from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class UserOut(BaseModel):
    id: int
    username: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class IngredientOut(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class TagOut(BaseModel):
    id: int
    name: str
    color: str

    model_config = ConfigDict(from_attributes=True)


class RecipeIngredientOut(BaseModel):
    ingredient_id: int
    name: str
    quantity: float
    unit: str

    model_config = ConfigDict(from_attributes=True)


class RecipeImageOut(BaseModel):
    id: int
    recipe_id: int
    filename: str
    caption: str = ""
    display_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class RecipeOut(BaseModel):
    id: int
    title: str
    description: str = ""
    instructions: str
    prep_time: int
    cook_time: int
    servings: int
    serving_unit: str
    created_by: int
    created_at: datetime
    author_name: str
    ingredients: List[RecipeIngredientOut] = Field(default_factory=list)
    tags: List[TagOut] = Field(default_factory=list)
    images: List[RecipeImageOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class RecipeLoad(BaseModel):
    """An aggregate plus the child kinds that could not be fetched."""
    recipe: RecipeOut
    degraded: List[str] = Field(default_factory=list)


class RecipeListLoad(BaseModel):
    recipes: List[RecipeOut] = Field(default_factory=list)
    degraded: List[str] = Field(default_factory=list)


class Created(BaseModel):
    """Result of an insert-or-ignore: the row id, and whether this call inserted it."""
    id: int
    created: bool
