import pytest
from recipebook.database import Database
from recipebook.main import create_app
from recipebook.schema import ensure_schema
from recipebook.security import hash_password
from recipebook.store import RecipeStore

PASSWORD = "SuperSecret1"

@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'recipes.db'}").open()
    ensure_schema(database)
    yield database
    database.close()

@pytest.fixture
def store(db):
    return RecipeStore(db)

@pytest.fixture
def make_user(store):
    def _make(username="alice", email=None):
        uid = store.create_user(username, email or f"{username}@example.com", hash_password(PASSWORD))
        assert isinstance(uid, int)
        return uid
    return _make

@pytest.fixture
def recipe_fields():
    def _fields(**overrides):
        fields = {
            "title": "Margherita Pizza",
            "description": "Thin crust with fresh mozzarella",
            "instructions": "Stretch the dough, top it, bake it hot.",
            "prep_time": 20,
            "cook_time": 12,
            "servings": 4,
            "serving_unit": "people",
        }
        fields.update(overrides)
        return fields
    return _fields

@pytest.fixture
def app(db):
    return create_app(db)

