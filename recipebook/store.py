import logging
from typing import Any, Iterable, List, Mapping

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .aggregate import base_query, load_recipe, load_recipe_list
from .config import QUERY_TIMEOUT
from .database import Database
from .errors import (
    Conflict, InUse, InvalidQuery, NotFound, NotFoundOrForbidden, ValidationError,
)
from .models import Ingredient, Recipe, RecipeImage, RecipeIngredient, RecipeTag, Tag, User
from .schemas import Created, IngredientOut, RecipeListLoad, RecipeLoad, TagOut, UserOut
from .search import search_recipes
from .validation import check_field, check_id, clean, normalize_color

logger = logging.getLogger(__name__)

_DEFAULT = object()
_IN_USE_SAMPLE = 3


def _insert_ignore(session: Session, model, values: dict) -> bool:
    """INSERT that silently skips unique conflicts; True when a row was written."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(model.__table__).values(**values).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = pg_insert(model.__table__).values(**values).on_conflict_do_nothing()
    else:
        try:
            with session.begin_nested():
                session.add(model(**values))
            return True
        except IntegrityError:
            return False
    return session.execute(stmt).rowcount == 1


class RecipeStore:
    def __init__(self, db: Database, *, timeout: float | None = QUERY_TIMEOUT):
        self.db = db
        self.timeout = timeout

    def _session(self, timeout: Any = _DEFAULT):
        return self.db.session(timeout=self.timeout if timeout is _DEFAULT else timeout)

    @staticmethod
    def _owned(s: Session, recipe_id: int, caller_id: int) -> bool:
        stmt = select(Recipe.id).where(Recipe.id == recipe_id, Recipe.created_by == caller_id)
        return s.scalar(stmt) is not None

    @staticmethod
    def _ids(**ids: Any) -> ValidationError | None:
        for field, value in ids.items():
            error = check_id(value, field)
            if error is not None:
                return error
        return None

    # ---------- Users ----------
    def create_user(self, username: str, email: str, password_hash: str, *, timeout=_DEFAULT):
        fields = clean("user", {"username": username, "email": email})
        if isinstance(fields, ValidationError):
            return fields
        if not password_hash:
            return ValidationError("password", "Password is required")
        fields["email"] = fields["email"].lower()
        with self._session(timeout) as s:
            for field in ("username", "email"):
                column = getattr(User, field)
                if s.scalar(select(User.id).where(column == fields[field])) is not None:
                    return Conflict(field, f"{field.capitalize()} already registered")
            user = User(username=fields["username"], email=fields["email"], password_hash=password_hash)
            s.add(user)
            try:
                s.commit()
            except IntegrityError:
                # lost a race with a concurrent registration
                s.rollback()
                return Conflict("username", "Username or email already registered")
            logger.info("Created user %s (id=%d)", user.username, user.id)
            return user.id

    def find_user_by_username(self, username: str, *, timeout=_DEFAULT):
        """Returns ``(UserOut, password_hash)`` or ``NotFound``."""
        if check_field("user", "username", username) is not None:
            return NotFound("User not found")
        with self._session(timeout) as s:
            user = s.scalar(select(User).where(User.username == username.strip()))
            if user is None:
                return NotFound("User not found")
            return UserOut.model_validate(user), user.password_hash

    def get_user(self, user_id: int, *, timeout=_DEFAULT):
        if check_id(user_id, "user_id") is not None:
            return NotFound("User not found")
        with self._session(timeout) as s:
            user = s.get(User, user_id)
            if user is None:
                return NotFound("User not found")
            return UserOut.model_validate(user)

    # ---------- Recipes ----------
    def create_recipe(self, fields: Mapping[str, Any], owner_id: int, *, timeout=_DEFAULT):
        """Insert the base recipe row only; children are linked separately."""
        error = self._ids(owner_id=owner_id)
        if error:
            return error
        values = clean("recipe", fields)
        if isinstance(values, ValidationError):
            return values
        with self._session(timeout) as s:
            if s.get(User, owner_id) is None:
                return ValidationError("owner_id", "Recipe owner does not exist")
            recipe = Recipe(created_by=owner_id, **values)
            s.add(recipe)
            s.commit()
            logger.info("Created recipe %d %r for user %d", recipe.id, recipe.title, owner_id)
            return recipe.id

    def create_recipe_with_children(
        self,
        fields: Mapping[str, Any],
        owner_id: int,
        ingredients: Iterable[Mapping[str, Any]] = (),
        tag_ids: Iterable[int] = (),
        images: Iterable[Mapping[str, Any]] = (),
        *,
        timeout=_DEFAULT,
    ):
        """Recipe, ingredient links, tag links and images in one transaction.

        Nothing is written unless every child is valid and resolvable.
        """
        error = self._ids(owner_id=owner_id)
        if error:
            return error
        values = clean("recipe", fields)
        if isinstance(values, ValidationError):
            return values

        lines: List[dict] = []
        for i, item in enumerate(ingredients):
            error = check_id(item.get("ingredient_id"), f"ingredients[{i}].ingredient_id")
            if error:
                return error
            line = clean("recipe_ingredient", item)
            if isinstance(line, ValidationError):
                return ValidationError(f"ingredients[{i}].{line.field}", line.reason)
            line["ingredient_id"] = item["ingredient_id"]
            lines.append(line)
        if len({line["ingredient_id"] for line in lines}) != len(lines):
            return ValidationError("ingredients", "Each ingredient may only be listed once")

        tag_ids = list(dict.fromkeys(tag_ids))
        for i, tag_id in enumerate(tag_ids):
            error = check_id(tag_id, f"tags[{i}]")
            if error:
                return error

        pictures: List[dict] = []
        for i, item in enumerate(images):
            picture = clean("image", item)
            if isinstance(picture, ValidationError):
                return ValidationError(f"images[{i}].{picture.field}", picture.reason)
            pictures.append(picture)

        with self._session(timeout) as s:
            if s.get(User, owner_id) is None:
                return ValidationError("owner_id", "Recipe owner does not exist")
            recipe = Recipe(created_by=owner_id, **values)
            s.add(recipe)
            s.flush()
            for line in lines:
                if s.get(Ingredient, line["ingredient_id"]) is None:
                    s.rollback()
                    return NotFound(f"Ingredient {line['ingredient_id']} not found")
                s.add(RecipeIngredient(recipe_id=recipe.id, **line))
            for tag_id in tag_ids:
                if s.get(Tag, tag_id) is None:
                    s.rollback()
                    return NotFound(f"Tag {tag_id} not found")
                s.add(RecipeTag(recipe_id=recipe.id, tag_id=tag_id))
            for order, picture in enumerate(pictures):
                s.add(RecipeImage(recipe_id=recipe.id, display_order=order, **picture))
            try:
                s.commit()
            except IntegrityError as e:
                s.rollback()
                logger.warning("Recipe creation rolled back: %s", e.orig)
                return ValidationError("recipe", "Recipe could not be saved")
            logger.info(
                "Created recipe %d %r for user %d with %d ingredient(s), %d tag(s), %d image(s)",
                recipe.id, recipe.title, owner_id, len(lines), len(tag_ids), len(pictures),
            )
            return recipe.id

    def get_recipe(self, recipe_id: int, *, timeout=_DEFAULT) -> RecipeLoad | NotFound:
        if check_id(recipe_id, "recipe_id") is not None:
            return NotFound("Recipe not found")
        with self._session(timeout) as s:
            loaded = load_recipe(s, recipe_id)
        if loaded is None:
            return NotFound("Recipe not found")
        return loaded

    def update_recipe(self, recipe_id: int, fields: Mapping[str, Any], caller_id: int, *, timeout=_DEFAULT):
        """Replace the scalar fields of a recipe the caller owns."""
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        values = clean("recipe", fields)
        if isinstance(values, ValidationError):
            return values
        with self._session(timeout) as s:
            result = s.execute(
                update(Recipe)
                .where(Recipe.id == recipe_id, Recipe.created_by == caller_id)
                .values(**values)
            )
            if result.rowcount == 0:
                s.rollback()
                return NotFoundOrForbidden()
            s.commit()
        logger.info("Updated recipe %d", recipe_id)
        return True

    def delete_recipe(self, recipe_id: int, caller_id: int, *, timeout=_DEFAULT):
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        with self._session(timeout) as s:
            result = s.execute(delete(Recipe).where(Recipe.id == recipe_id, Recipe.created_by == caller_id))
            if result.rowcount == 0:
                s.rollback()
                return NotFoundOrForbidden()
            s.commit()
        logger.info("Deleted recipe %d", recipe_id)
        return True

    def user_owns_recipe(self, recipe_id: int, caller_id: int, *, timeout=_DEFAULT):
        if check_id(recipe_id, "recipe_id") is not None:
            return NotFound("Recipe not found")
        with self._session(timeout) as s:
            owner = s.scalar(select(Recipe.created_by).where(Recipe.id == recipe_id))
        if owner is None:
            return NotFound("Recipe not found")
        return owner == caller_id

    def list_all_recipes(self, *, timeout=_DEFAULT) -> RecipeListLoad:
        with self._session(timeout) as s:
            rows = s.execute(base_query().order_by(Recipe.created_at.desc(), Recipe.id.desc())).all()
            return load_recipe_list(s, rows)

    def list_recipes_by_tag(self, tag_id: int, *, timeout=_DEFAULT):
        error = check_id(tag_id, "tag_id")
        if error:
            return error
        with self._session(timeout) as s:
            stmt = (
                base_query()
                .join(RecipeTag, RecipeTag.recipe_id == Recipe.id)
                .where(RecipeTag.tag_id == tag_id)
                .order_by(Recipe.created_at.desc(), Recipe.id.desc())
            )
            return load_recipe_list(s, s.execute(stmt).all())

    def search_recipes(self, term: str, *, timeout=_DEFAULT) -> RecipeListLoad | InvalidQuery:
        with self._session(timeout) as s:
            return search_recipes(s, term)

    # ---------- Recipe children ----------
    def link_ingredient(
        self, recipe_id: int, caller_id: int, ingredient_id: int, quantity: float, unit: str, *, timeout=_DEFAULT
    ):
        """Attach an ingredient, or replace the quantity/unit of an existing link."""
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        error = check_id(ingredient_id, "ingredient_id")
        if error:
            return error
        line = clean("recipe_ingredient", {"quantity": quantity, "unit": unit})
        if isinstance(line, ValidationError):
            return line
        with self._session(timeout) as s:
            if not self._owned(s, recipe_id, caller_id):
                return NotFoundOrForbidden()
            if s.get(Ingredient, ingredient_id) is None:
                return NotFound("Ingredient not found")
            link = s.get(RecipeIngredient, (recipe_id, ingredient_id))
            if link is None:
                s.add(RecipeIngredient(recipe_id=recipe_id, ingredient_id=ingredient_id, **line))
            else:
                link.quantity = line["quantity"]
                link.unit = line["unit"]
            s.commit()
        return True

    def unlink_ingredient(self, recipe_id: int, caller_id: int, ingredient_id: int, *, timeout=_DEFAULT):
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        with self._session(timeout) as s:
            if not self._owned(s, recipe_id, caller_id):
                return NotFoundOrForbidden()
            result = s.execute(
                delete(RecipeIngredient).where(
                    RecipeIngredient.recipe_id == recipe_id, RecipeIngredient.ingredient_id == ingredient_id
                )
            )
            if result.rowcount == 0:
                s.rollback()
                return NotFound("Ingredient is not linked to this recipe")
            s.commit()
        return True

    def clear_ingredients(self, recipe_id: int, caller_id: int, *, timeout=_DEFAULT):
        """Remove every ingredient link; returns how many were removed."""
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        with self._session(timeout) as s:
            if not self._owned(s, recipe_id, caller_id):
                return NotFoundOrForbidden()
            result = s.execute(delete(RecipeIngredient).where(RecipeIngredient.recipe_id == recipe_id))
            s.commit()
            return result.rowcount

    def link_tag(self, recipe_id: int, caller_id: int, tag_id: int, *, timeout=_DEFAULT):
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        error = check_id(tag_id, "tag_id")
        if error:
            return error
        with self._session(timeout) as s:
            if not self._owned(s, recipe_id, caller_id):
                return NotFoundOrForbidden()
            if s.get(Tag, tag_id) is None:
                return NotFound("Tag not found")
            if s.get(RecipeTag, (recipe_id, tag_id)) is None:
                s.add(RecipeTag(recipe_id=recipe_id, tag_id=tag_id))
                s.commit()
        return True

    def unlink_tag(self, recipe_id: int, caller_id: int, tag_id: int, *, timeout=_DEFAULT):
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        with self._session(timeout) as s:
            if not self._owned(s, recipe_id, caller_id):
                return NotFoundOrForbidden()
            result = s.execute(
                delete(RecipeTag).where(RecipeTag.recipe_id == recipe_id, RecipeTag.tag_id == tag_id)
            )
            if result.rowcount == 0:
                s.rollback()
                return NotFound("Tag is not linked to this recipe")
            s.commit()
        return True

    def clear_tags(self, recipe_id: int, caller_id: int, *, timeout=_DEFAULT):
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        with self._session(timeout) as s:
            if not self._owned(s, recipe_id, caller_id):
                return NotFoundOrForbidden()
            result = s.execute(delete(RecipeTag).where(RecipeTag.recipe_id == recipe_id))
            s.commit()
            return result.rowcount

    def add_image(self, recipe_id: int, caller_id: int, filename: str, caption: str = "", *, timeout=_DEFAULT):
        """Record an uploaded file name after the recipe's current last image."""
        if self._ids(recipe_id=recipe_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        picture = clean("image", {"filename": filename, "caption": caption})
        if isinstance(picture, ValidationError):
            return picture
        with self._session(timeout) as s:
            if not self._owned(s, recipe_id, caller_id):
                return NotFoundOrForbidden()
            last = s.scalar(
                select(func.coalesce(func.max(RecipeImage.display_order), -1)).where(RecipeImage.recipe_id == recipe_id)
            )
            image = RecipeImage(recipe_id=recipe_id, display_order=last + 1, **picture)
            s.add(image)
            s.commit()
            return image.id

    def delete_image(self, image_id: int, caller_id: int, *, timeout=_DEFAULT):
        """Returns the removed file name so the caller can delete the file."""
        if self._ids(image_id=image_id, caller_id=caller_id):
            return NotFoundOrForbidden()
        with self._session(timeout) as s:
            filename = s.scalar(
                select(RecipeImage.filename)
                .join(Recipe, RecipeImage.recipe_id == Recipe.id)
                .where(RecipeImage.id == image_id, Recipe.created_by == caller_id)
            )
            if filename is None:
                return NotFoundOrForbidden()
            s.execute(delete(RecipeImage).where(RecipeImage.id == image_id))
            s.commit()
        logger.info("Deleted image %d (%s)", image_id, filename)
        return filename

    # ---------- Reference data ----------
    def create_ingredient(self, name: str, *, timeout=_DEFAULT) -> Created | ValidationError:
        fields = clean("ingredient", {"name": name})
        if isinstance(fields, ValidationError):
            return fields
        with self._session(timeout) as s:
            created = _insert_ignore(s, Ingredient, fields)
            s.commit()
            ingredient_id = s.scalar(select(Ingredient.id).where(Ingredient.name == fields["name"]))
        if created:
            logger.info("Created ingredient %r", fields["name"])
        return Created(id=ingredient_id, created=created)

    def delete_ingredient(self, ingredient_id: int, *, timeout=_DEFAULT):
        error = check_id(ingredient_id, "ingredient_id")
        if error:
            return error
        referenced = exists().where(RecipeIngredient.ingredient_id == Ingredient.id)
        with self._session(timeout) as s:
            # the usage check and the delete are one statement
            result = s.execute(
                delete(Ingredient)
                .where(Ingredient.id == ingredient_id, ~referenced)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                s.commit()
                logger.info("Deleted ingredient %d", ingredient_id)
                return True
            s.rollback()
            if s.get(Ingredient, ingredient_id) is None:
                return NotFound("Ingredient not found")
            count = s.scalar(
                select(func.count()).select_from(RecipeIngredient).where(RecipeIngredient.ingredient_id == ingredient_id)
            )
            titles = s.scalars(
                select(Recipe.title)
                .join(RecipeIngredient, RecipeIngredient.recipe_id == Recipe.id)
                .where(RecipeIngredient.ingredient_id == ingredient_id)
                .order_by(Recipe.title)
                .limit(_IN_USE_SAMPLE)
            ).all()
            return InUse(count, list(titles))

    def list_ingredients(self, *, timeout=_DEFAULT) -> List[IngredientOut]:
        with self._session(timeout) as s:
            rows = s.scalars(select(Ingredient).order_by(Ingredient.name))
            return [IngredientOut.model_validate(i) for i in rows]

    def create_tag(self, name: str, color: str | None = None, *, timeout=_DEFAULT) -> Created | ValidationError:
        fields = clean("tag", {"name": name})
        if isinstance(fields, ValidationError):
            return fields
        fields["color"] = normalize_color(color)
        with self._session(timeout) as s:
            created = _insert_ignore(s, Tag, fields)
            s.commit()
            tag_id = s.scalar(select(Tag.id).where(Tag.name == fields["name"]))
        if created:
            logger.info("Created tag %r", fields["name"])
        return Created(id=tag_id, created=created)

    def delete_tag(self, tag_id: int, *, timeout=_DEFAULT):
        error = check_id(tag_id, "tag_id")
        if error:
            return error
        with self._session(timeout) as s:
            result = s.execute(delete(Tag).where(Tag.id == tag_id))
            if result.rowcount == 0:
                s.rollback()
                return NotFound("Tag not found")
            s.commit()
        logger.info("Deleted tag %d", tag_id)
        return True

    def get_tag(self, tag_id: int, *, timeout=_DEFAULT):
        if check_id(tag_id, "tag_id") is not None:
            return NotFound("Tag not found")
        with self._session(timeout) as s:
            tag = s.get(Tag, tag_id)
            if tag is None:
                return NotFound("Tag not found")
            return TagOut.model_validate(tag)

    def list_tags(self, *, timeout=_DEFAULT) -> List[TagOut]:
        with self._session(timeout) as s:
            return [TagOut.model_validate(t) for t in s.scalars(select(Tag).order_by(Tag.name))]
