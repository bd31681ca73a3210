import pytest
from sqlalchemy import func, select, text

from recipebook.errors import (
    Conflict, DeadlineExceeded, InUse, NotFound, NotFoundOrForbidden, ValidationError,
)
from recipebook.models import Recipe, RecipeImage, RecipeIngredient, RecipeTag
from recipebook.security import verify_password
from conftest import PASSWORD

def count(db, model):
    with db.session() as s:
        return s.scalar(select(func.count()).select_from(model))

# ---------- users ----------

def test_create_and_find_user(store, make_user):
    uid = make_user("alice")
    user, password_hash = store.find_user_by_username("alice")
    assert user.id == uid
    assert user.email == "alice@example.com"
    assert verify_password(PASSWORD, password_hash)
    assert isinstance(store.find_user_by_username("bob"), NotFound)
    assert isinstance(store.find_user_by_username("no way!"), NotFound)

def test_user_conflicts(store, make_user):
    make_user("alice")
    dup = store.create_user("alice", "other@example.com", "x")
    assert isinstance(dup, Conflict) and dup.field == "username"
    dup = store.create_user("alice2", "ALICE@example.com", "x")
    assert isinstance(dup, Conflict) and dup.field == "email"
    bad = store.create_user("al", "al@example.com", "x")
    assert isinstance(bad, ValidationError) and bad.field == "username"

# ---------- recipes ----------

def test_create_then_get_round_trips(store, make_user, recipe_fields):
    uid = make_user("alice")
    fields = recipe_fields()
    rid = store.create_recipe(fields, uid)
    loaded = store.get_recipe(rid)
    assert loaded.degraded == []
    recipe = loaded.recipe
    for key, value in fields.items():
        assert getattr(recipe, key) == value
    assert recipe.created_by == uid
    assert recipe.author_name == "alice"
    assert recipe.ingredients == [] and recipe.tags == [] and recipe.images == []

def test_invalid_recipe_is_not_written(store, make_user, recipe_fields):
    uid = make_user()
    err = store.create_recipe(recipe_fields(servings=0), uid)
    assert isinstance(err, ValidationError) and err.field == "servings"
    assert store.list_all_recipes().recipes == []

def test_recipe_owner_must_exist(store, recipe_fields):
    err = store.create_recipe(recipe_fields(), 999)
    assert isinstance(err, ValidationError) and err.field == "owner_id"
    assert isinstance(store.create_recipe(recipe_fields(), 0), ValidationError)

def test_update_is_owner_scoped(store, make_user, recipe_fields):
    alice, bob = make_user("alice"), make_user("bob")
    rid = store.create_recipe(recipe_fields(), alice)

    result = store.update_recipe(rid, recipe_fields(title="Stolen"), bob)
    assert isinstance(result, NotFoundOrForbidden)
    assert result.message == "Recipe not found or access denied"
    assert store.get_recipe(rid).recipe.title == "Margherita Pizza"

    assert isinstance(store.update_recipe(9999, recipe_fields(), alice), NotFoundOrForbidden)
    assert store.update_recipe(rid, recipe_fields(title="Marinara Pizza", servings=2), alice) is True
    recipe = store.get_recipe(rid).recipe
    assert (recipe.title, recipe.servings) == ("Marinara Pizza", 2)

def test_update_validates_first(store, make_user, recipe_fields):
    alice = make_user("alice")
    rid = store.create_recipe(recipe_fields(), alice)
    err = store.update_recipe(rid, recipe_fields(title=""), alice)
    assert isinstance(err, ValidationError) and err.field == "title"

def test_user_owns_recipe(store, make_user, recipe_fields):
    alice, bob = make_user("alice"), make_user("bob")
    rid = store.create_recipe(recipe_fields(), alice)
    assert store.user_owns_recipe(rid, alice) is True
    assert store.user_owns_recipe(rid, bob) is False
    assert isinstance(store.user_owns_recipe(9999, alice), NotFound)

def test_delete_cascades_to_children(db, store, make_user, recipe_fields):
    alice, bob = make_user("alice"), make_user("bob")
    rid = store.create_recipe(recipe_fields(), alice)
    basil = store.create_ingredient("Basil").id
    tag = store.create_tag("Dinner", "#ff8787").id
    assert store.link_ingredient(rid, alice, basil, 10, "leaf") is True
    assert store.link_tag(rid, alice, tag) is True
    assert isinstance(store.add_image(rid, alice, "pizza.jpg"), int)

    assert isinstance(store.delete_recipe(rid, bob), NotFoundOrForbidden)
    assert store.delete_recipe(rid, alice) is True
    assert isinstance(store.get_recipe(rid), NotFound)
    assert count(db, RecipeIngredient) == 0
    assert count(db, RecipeTag) == 0
    assert count(db, RecipeImage) == 0
    # reference data survives
    assert [i.name for i in store.list_ingredients()] == ["Basil"]

def test_list_all_newest_first_and_by_tag(store, make_user, recipe_fields):
    alice = make_user()
    first = store.create_recipe(recipe_fields(title="First"), alice)
    second = store.create_recipe(recipe_fields(title="Second"), alice)
    assert [r.id for r in store.list_all_recipes().recipes] == [second, first]

    soup = store.create_tag("Soup").id
    store.link_tag(first, alice, soup)
    assert [r.id for r in store.list_recipes_by_tag(soup).recipes] == [first]
    assert store.list_recipes_by_tag(9999).recipes == []
    assert isinstance(store.list_recipes_by_tag(-1), ValidationError)

# ---------- children ----------

def test_link_ingredient_replaces_quantity(store, make_user, recipe_fields):
    alice = make_user()
    rid = store.create_recipe(recipe_fields(), alice)
    flour = store.create_ingredient("Flour").id
    store.link_ingredient(rid, alice, flour, 2, "cup")
    store.link_ingredient(rid, alice, flour, 3.5, "cup")
    lines = store.get_recipe(rid).recipe.ingredients
    assert [(l.name, l.quantity, l.unit) for l in lines] == [("Flour", 3.5, "cup")]

    assert isinstance(store.link_ingredient(rid, alice, 9999, 1, "g"), NotFound)
    assert isinstance(store.link_ingredient(rid, alice, flour, 0, "g"), ValidationError)
    assert store.unlink_ingredient(rid, alice, flour) is True
    assert isinstance(store.unlink_ingredient(rid, alice, flour), NotFound)

def test_children_are_owner_scoped(store, make_user, recipe_fields):
    alice, bob = make_user("alice"), make_user("bob")
    rid = store.create_recipe(recipe_fields(), alice)
    salt = store.create_ingredient("Salt").id
    tag = store.create_tag("Spicy").id
    assert isinstance(store.link_ingredient(rid, bob, salt, 1, "tsp"), NotFoundOrForbidden)
    assert isinstance(store.link_tag(rid, bob, tag), NotFoundOrForbidden)
    assert isinstance(store.add_image(rid, bob, "x.jpg"), NotFoundOrForbidden)
    assert isinstance(store.clear_ingredients(rid, bob), NotFoundOrForbidden)
    assert isinstance(store.clear_tags(rid, bob), NotFoundOrForbidden)

def test_clear_children(store, make_user, recipe_fields):
    alice = make_user()
    rid = store.create_recipe(recipe_fields(), alice)
    for name in ("Salt", "Pepper"):
        store.link_ingredient(rid, alice, store.create_ingredient(name).id, 1, "pinch")
    store.link_tag(rid, alice, store.create_tag("Quick & Easy").id)
    assert store.clear_ingredients(rid, alice) == 2
    assert store.clear_tags(rid, alice) == 1
    recipe = store.get_recipe(rid).recipe
    assert recipe.ingredients == [] and recipe.tags == []

def test_images_are_appended_in_order(store, make_user, recipe_fields):
    alice, bob = make_user("alice"), make_user("bob")
    rid = store.create_recipe(recipe_fields(), alice)
    a = store.add_image(rid, alice, "a.jpg", "Before")
    b = store.add_image(rid, alice, "b.jpg")
    images = store.get_recipe(rid).recipe.images
    assert [(i.id, i.display_order, i.caption) for i in images] == [(a, 0, "Before"), (b, 1, "")]

    assert isinstance(store.delete_image(a, bob), NotFoundOrForbidden)
    assert store.delete_image(a, alice) == "a.jpg"
    assert isinstance(store.delete_image(a, alice), NotFoundOrForbidden)
    assert isinstance(store.add_image(rid, alice, "../x.jpg"), ValidationError)

# ---------- reference data ----------

def test_create_ingredient_is_insert_or_ignore(store):
    first = store.create_ingredient("Garlic")
    again = store.create_ingredient("  Garlic ")
    assert first.created is True
    assert again.created is False
    assert again.id == first.id
    assert isinstance(store.create_ingredient(""), ValidationError)

def test_delete_ingredient_in_use(store, make_user, recipe_fields):
    alice = make_user()
    basil = store.create_ingredient("Basil").id
    titles = ["Pesto", "Caprese", "Margherita", "Bruschetta"]
    for title in titles:
        rid = store.create_recipe(recipe_fields(title=title), alice)
        store.link_ingredient(rid, alice, basil, 5, "leaf")

    result = store.delete_ingredient(basil)
    assert isinstance(result, InUse)
    assert result.count == 4
    assert result.recipes == ["Bruschetta", "Caprese", "Margherita"]
    assert "and 1 more" in result.message
    assert [i.id for i in store.list_ingredients()] == [basil]

def test_delete_unused_ingredient(store):
    oil = store.create_ingredient("Oil").id
    assert store.delete_ingredient(oil) is True
    assert isinstance(store.delete_ingredient(oil), NotFound)
    assert isinstance(store.delete_ingredient(0), ValidationError)

def test_tags(store, make_user, recipe_fields):
    alice = make_user()
    tag = store.create_tag("Vegan", "green")
    assert store.get_tag(tag.id).color == "#ff6b6b"
    assert store.create_tag("Vegan", "#40c057").created is False
    assert isinstance(store.create_tag("<b>"), ValidationError)

    rid = store.create_recipe(recipe_fields(), alice)
    store.link_tag(rid, alice, tag.id)
    assert store.delete_tag(tag.id) is True
    assert store.get_recipe(rid).recipe.tags == []
    assert isinstance(store.delete_tag(tag.id), NotFound)
    assert isinstance(store.get_tag(tag.id), NotFound)

# ---------- atomic creation ----------

def test_atomic_creation(store, make_user, recipe_fields):
    alice = make_user()
    flour = store.create_ingredient("Flour").id
    eggs = store.create_ingredient("Eggs").id
    tag = store.create_tag("Breakfast").id
    rid = store.create_recipe_with_children(
        recipe_fields(title="Pancakes"),
        alice,
        ingredients=[
            {"ingredient_id": flour, "quantity": 2, "unit": "cup"},
            {"ingredient_id": eggs, "quantity": 2, "unit": "piece"},
        ],
        tag_ids=[tag],
        images=[{"filename": "stack.jpg"}],
    )
    recipe = store.get_recipe(rid).recipe
    assert [l.name for l in recipe.ingredients] == ["Eggs", "Flour"]
    assert [t.name for t in recipe.tags] == ["Breakfast"]
    assert [i.filename for i in recipe.images] == ["stack.jpg"]

def test_atomic_creation_rolls_back(db, store, make_user, recipe_fields):
    alice = make_user()
    flour = store.create_ingredient("Flour").id

    missing = store.create_recipe_with_children(
        recipe_fields(), alice, ingredients=[{"ingredient_id": flour, "quantity": 1, "unit": "cup"}], tag_ids=[404],
    )
    assert isinstance(missing, NotFound)

    invalid = store.create_recipe_with_children(
        recipe_fields(), alice, ingredients=[{"ingredient_id": flour, "quantity": -1, "unit": "cup"}],
    )
    assert isinstance(invalid, ValidationError)
    assert invalid.field == "ingredients[0].quantity"

    duplicate = store.create_recipe_with_children(
        recipe_fields(), alice,
        ingredients=[{"ingredient_id": flour, "quantity": 1, "unit": "cup"}] * 2,
    )
    assert isinstance(duplicate, ValidationError)

    assert count(db, Recipe) == 0
    assert count(db, RecipeIngredient) == 0

# ---------- deadlines ----------

def test_expired_deadline_rolls_back(db, make_user, recipe_fields):
    alice = make_user()
    slow = text(
        "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n LIMIT 5000000) SELECT count(*) FROM n"
    )
    with pytest.raises(DeadlineExceeded):
        with db.session(timeout=0) as s:
            s.add(Recipe(created_by=alice, **recipe_fields()))
            s.flush()
            s.execute(slow)
            s.commit()
    assert count(db, Recipe) == 0
