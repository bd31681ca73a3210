import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Sequence

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import deadline_passed
from .models import (
    DEFAULT_SERVING_UNIT, Ingredient, Recipe, RecipeImage, RecipeIngredient, RecipeTag, Tag, User,
)
from .schemas import (
    RecipeImageOut, RecipeIngredientOut, RecipeListLoad, RecipeLoad, RecipeOut, TagOut,
)

logger = logging.getLogger(__name__)

ChildMap = Dict[int, list]


def base_query() -> Select:
    """Recipe rows joined with their owner's username."""
    return select(Recipe, User.username.label("author_name")).join(User, Recipe.created_by == User.id)


def fetch_ingredients(session: Session, recipe_ids: Sequence[int]) -> ChildMap:
    stmt = (
        select(
            RecipeIngredient.recipe_id,
            RecipeIngredient.ingredient_id,
            Ingredient.name,
            RecipeIngredient.quantity,
            RecipeIngredient.unit,
        )
        .join(Ingredient, RecipeIngredient.ingredient_id == Ingredient.id)
        .where(RecipeIngredient.recipe_id.in_(recipe_ids))
        .order_by(Ingredient.name, Ingredient.id)
    )
    out: ChildMap = defaultdict(list)
    for row in session.execute(stmt):
        out[row.recipe_id].append(RecipeIngredientOut.model_validate(row))
    return out


def fetch_tags(session: Session, recipe_ids: Sequence[int]) -> ChildMap:
    stmt = (
        select(RecipeTag.recipe_id, Tag.id, Tag.name, Tag.color)
        .join(Tag, RecipeTag.tag_id == Tag.id)
        .where(RecipeTag.recipe_id.in_(recipe_ids))
        .order_by(Tag.name, Tag.id)
    )
    out: ChildMap = defaultdict(list)
    for row in session.execute(stmt):
        out[row.recipe_id].append(TagOut.model_validate(row))
    return out


def fetch_images(session: Session, recipe_ids: Sequence[int]) -> ChildMap:
    stmt = (
        select(RecipeImage)
        .where(RecipeImage.recipe_id.in_(recipe_ids))
        .order_by(RecipeImage.display_order, RecipeImage.id)
    )
    out: ChildMap = defaultdict(list)
    for image in session.scalars(stmt):
        out[image.recipe_id].append(
            RecipeImageOut(
                id=image.id,
                recipe_id=image.recipe_id,
                filename=image.filename,
                caption=image.caption or "",
                display_order=image.display_order or 0,
            )
        )
    return out


# Looked up at call time so a single kind can be swapped out
CHILD_FETCHERS: Dict[str, Callable[[Session, Sequence[int]], ChildMap]] = {
    "ingredients": fetch_ingredients,
    "tags": fetch_tags,
    "images": fetch_images,
}


def _fetch_children(session: Session, recipe_ids: List[int]) -> tuple[Dict[str, ChildMap], List[str]]:
    children: Dict[str, ChildMap] = {}
    degraded: List[str] = []
    for kind, fetch in CHILD_FETCHERS.items():
        if not recipe_ids:
            children[kind] = {}
            continue
        try:
            # a savepoint per kind keeps one failed query from aborting the others
            with session.begin_nested():
                children[kind] = fetch(session, recipe_ids)
        except SQLAlchemyError:
            if deadline_passed():
                raise
            logger.warning("Degraded read: could not load %s for recipes %s", kind, recipe_ids, exc_info=True)
            children[kind] = {}
            degraded.append(kind)
    return children, degraded


def _to_out(recipe: Recipe, author_name: str, children: Dict[str, ChildMap]) -> RecipeOut:
    return RecipeOut(
        id=recipe.id,
        title=recipe.title,
        description=recipe.description or "",
        instructions=recipe.instructions,
        prep_time=recipe.prep_time or 0,
        cook_time=recipe.cook_time or 0,
        servings=recipe.servings,
        serving_unit=recipe.serving_unit or DEFAULT_SERVING_UNIT,
        created_by=recipe.created_by,
        created_at=recipe.created_at,
        author_name=author_name,
        ingredients=children["ingredients"].get(recipe.id, []),
        tags=children["tags"].get(recipe.id, []),
        images=children["images"].get(recipe.id, []),
    )


def load_recipe_list(session: Session, rows: Iterable) -> RecipeListLoad:
    """Aggregate ``(Recipe, author_name)`` rows, keeping their order."""
    rows = list(rows)
    children, degraded = _fetch_children(session, [recipe.id for recipe, _ in rows])
    return RecipeListLoad(
        recipes=[_to_out(recipe, author, children) for recipe, author in rows],
        degraded=degraded,
    )


def load_recipe(session: Session, recipe_id: int) -> RecipeLoad | None:
    row = session.execute(base_query().where(Recipe.id == recipe_id)).first()
    if row is None:
        return None
    loaded = load_recipe_list(session, [row])
    return RecipeLoad(recipe=loaded.recipes[0], degraded=loaded.degraded)
