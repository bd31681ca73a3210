"""Default reference data and the optional demo recipes."""
import logging

from .config import DEMO_OWNER_EMAIL, DEMO_OWNER_PASSWORD, DEMO_OWNER_USERNAME, SEED_DEMO_RECIPES
from .errors import NotFound, RecipeBookError
from .security import hash_password
from .store import RecipeStore

logger = logging.getLogger(__name__)

DEFAULT_INGREDIENTS = [
    "Salt", "Pepper", "Sugar", "Flour", "Butter", "Eggs", "Milk", "Oil",
    "Onion", "Garlic", "Tomato", "Cheese", "Rice", "Pasta", "Chicken", "Beef",
    "Olive Oil", "Lemon", "Basil", "Oregano", "Thyme", "Rosemary", "Parsley",
    "Potatoes", "Carrots", "Bell Pepper", "Mushrooms", "Spinach", "Broccoli",
]

DEFAULT_TAGS = [
    ("Main Dish", "#ff6b6b"),
    ("Soup", "#4ecdc4"),
    ("Dessert", "#ff8e53"),
    ("Appetizer", "#a8e6cf"),
    ("Breakfast", "#ffd93d"),
    ("Lunch", "#74c0fc"),
    ("Dinner", "#ff8787"),
    ("Vegetarian", "#51cf66"),
    ("Vegan", "#40c057"),
    ("Gluten-Free", "#fab005"),
    ("Dairy-Free", "#fd7e14"),
    ("Quick & Easy", "#9775fa"),
    ("Comfort Food", "#f06292"),
    ("Healthy", "#69db7c"),
    ("Spicy", "#ff5722"),
]

DEMO_RECIPES = [
    {
        "title": "Classic Margherita Pizza",
        "description": "A simple and delicious pizza with fresh mozzarella, tomatoes, and basil",
        "instructions": (
            "1. Preheat your oven to 475F (245C).\n\n"
            "2. Roll out the pizza dough on a floured surface.\n\n"
            "3. Spread the sauce, leaving a border for the crust.\n\n"
            "4. Top with cheese and sliced tomatoes, drizzle with olive oil.\n\n"
            "5. Bake 12-15 minutes, then finish with fresh basil."
        ),
        "prep_time": 20,
        "cook_time": 15,
        "servings": 4,
        "tags": ["Main Dish", "Vegetarian", "Dinner"],
        "ingredients": [
            ("Flour", 2, "cup"), ("Tomato", 2, "piece"), ("Cheese", 200, "g"), ("Basil", 10, "piece"),
            ("Olive Oil", 2, "tbsp"), ("Salt", 1, "tsp"), ("Pepper", 0.5, "tsp"),
        ],
    },
    {
        "title": "Creamy Chicken Alfredo Pasta",
        "description": "Rich and creamy pasta dish with tender chicken and parmesan cheese",
        "instructions": (
            "1. Cook the pasta until al dente and drain.\n\n"
            "2. Brown the seasoned chicken pieces in olive oil, then set aside.\n\n"
            "3. Melt butter, soften the garlic, add milk and cheese and whisk smooth.\n\n"
            "4. Return chicken and pasta to the pan, toss and finish with parsley."
        ),
        "prep_time": 15,
        "cook_time": 25,
        "servings": 4,
        "tags": ["Main Dish", "Comfort Food", "Dinner"],
        "ingredients": [
            ("Pasta", 400, "g"), ("Chicken", 500, "g"), ("Cheese", 100, "g"), ("Butter", 50, "g"),
            ("Garlic", 3, "clove"), ("Milk", 300, "ml"), ("Parsley", 2, "tbsp"),
            ("Salt", 1, "tsp"), ("Pepper", 0.5, "tsp"), ("Olive Oil", 2, "tbsp"),
        ],
    },
    {
        "title": "Fluffy Buttermilk Pancakes",
        "description": "Light, fluffy pancakes perfect for weekend breakfast",
        "instructions": (
            "1. Whisk the dry ingredients together.\n\n"
            "2. Beat eggs with milk and melted butter, then fold into the dry mix.\n\n"
            "3. Cook quarter-cup portions on a hot griddle until bubbles form, flip once."
        ),
        "prep_time": 10,
        "cook_time": 15,
        "servings": 4,
        "tags": ["Breakfast", "Quick & Easy", "Vegetarian"],
        "ingredients": [
            ("Flour", 2, "cup"), ("Sugar", 2, "tbsp"), ("Eggs", 2, "piece"), ("Milk", 1.5, "cup"),
            ("Butter", 4, "tbsp"), ("Salt", 1, "tsp"),
        ],
    },
]


def seed_reference_data(store: RecipeStore) -> dict:
    """Insert the default ingredients and tags; existing names are left alone."""
    counts = {"ingredients": 0, "tags": 0}
    for name in DEFAULT_INGREDIENTS:
        result = store.create_ingredient(name)
        if isinstance(result, RecipeBookError):
            logger.warning("Skipping default ingredient %r: %s", name, result.message)
        elif result.created:
            counts["ingredients"] += 1
    for name, color in DEFAULT_TAGS:
        result = store.create_tag(name, color)
        if isinstance(result, RecipeBookError):
            logger.warning("Skipping default tag %r: %s", name, result.message)
        elif result.created:
            counts["tags"] += 1
    if counts["ingredients"] or counts["tags"]:
        logger.info("Seeded %(ingredients)d ingredient(s) and %(tags)d tag(s)", counts)
    return counts


def _demo_owner(store: RecipeStore, username: str, email: str, password: str):
    found = store.find_user_by_username(username)
    if not isinstance(found, NotFound):
        user, _ = found
        return user.id
    created = store.create_user(username, email, hash_password(password))
    if isinstance(created, RecipeBookError):
        logger.warning("Could not create demo owner %r: %s", username, created.message)
        return None
    return created


def seed_demo_recipes(
    store: RecipeStore,
    *,
    username: str = DEMO_OWNER_USERNAME,
    email: str = DEMO_OWNER_EMAIL,
    password: str = DEMO_OWNER_PASSWORD,
) -> int:
    """Create the demo recipes on an empty catalog; returns how many were added."""
    if not password:
        logger.warning("Demo recipes requested but DEMO_OWNER_PASSWORD is not set; skipping")
        return 0
    if store.list_all_recipes().recipes:
        return 0
    owner_id = _demo_owner(store, username, email, password)
    if owner_id is None:
        return 0

    ingredient_ids = {i.name: i.id for i in store.list_ingredients()}
    tag_ids = {t.name: t.id for t in store.list_tags()}
    added = 0
    for demo in DEMO_RECIPES:
        fields = {k: v for k, v in demo.items() if k not in ("tags", "ingredients")}
        lines = [
            {"ingredient_id": ingredient_ids[name], "quantity": quantity, "unit": unit}
            for name, quantity, unit in demo["ingredients"]
            if name in ingredient_ids
        ]
        tags = [tag_ids[name] for name in demo["tags"] if name in tag_ids]
        result = store.create_recipe_with_children(fields, owner_id, lines, tags)
        if isinstance(result, RecipeBookError):
            logger.warning("Could not seed demo recipe %r: %s", demo["title"], result.message)
            continue
        added += 1
    logger.info("Seeded %d demo recipe(s) owned by %s", added, username)
    return added


def seed(store: RecipeStore) -> None:
    seed_reference_data(store)
    if SEED_DEMO_RECIPES:
        seed_demo_recipes(store)
