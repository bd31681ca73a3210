import logging
from typing import List

from sqlalchemy import case, or_
from sqlalchemy.orm import Session

from .aggregate import base_query, load_recipe_list
from .errors import InvalidQuery
from .models import Ingredient, Recipe, RecipeIngredient, RecipeTag, Tag
from .schemas import RecipeListLoad
from .validation import clean_search_term

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"


def like_pattern(term: str) -> str:
    """Substring pattern with the term's own wildcards taken literally."""
    escaped = (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


def dedupe_rows(rows) -> List:
    seen: set[int] = set()
    out = []
    for row in rows:
        recipe = row[0]
        if recipe.id in seen:
            continue
        seen.add(recipe.id)
        out.append(row)
    return out


def search_recipes(session: Session, term) -> RecipeListLoad | InvalidQuery:
    """Title matches first, then newest first; each recipe at most once."""
    cleaned = clean_search_term(term)
    if isinstance(cleaned, InvalidQuery):
        return cleaned
    pattern = like_pattern(cleaned)

    def matches(column):
        return column.ilike(pattern, escape=LIKE_ESCAPE)

    stmt = (
        base_query()
        .outerjoin(RecipeIngredient, RecipeIngredient.recipe_id == Recipe.id)
        .outerjoin(Ingredient, RecipeIngredient.ingredient_id == Ingredient.id)
        .outerjoin(RecipeTag, RecipeTag.recipe_id == Recipe.id)
        .outerjoin(Tag, RecipeTag.tag_id == Tag.id)
        .where(
            or_(
                matches(Recipe.title),
                matches(Recipe.description),
                matches(Recipe.instructions),
                matches(Ingredient.name),
                matches(Tag.name),
            )
        )
        .order_by(
            case((matches(Recipe.title), 0), else_=1),
            Recipe.created_at.desc(),
            Recipe.id.desc(),
        )
    )
    rows = dedupe_rows(session.execute(stmt).all())
    logger.debug("Search %r matched %d recipe(s)", cleaned, len(rows))
    return load_recipe_list(session, rows)
