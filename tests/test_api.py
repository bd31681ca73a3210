import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import OperationalError

from recipebook import aggregate
from recipebook.database import Database
from recipebook.main import create_app

async def register_and_login(ac: AsyncClient, username="chef", pw="SuperSecret1"):
    r = await ac.post("/auth/register", json={"username": username, "email": f"{username}@example.com", "password": pw})
    assert r.status_code == 201
    r = await ac.post("/auth/login", json={"username": username, "password": pw})
    assert r.status_code == 200
    return r.cookies

def pizza(**overrides):
    data = {
        "title": "Margherita Pizza",
        "description": "Thin and crisp",
        "instructions": "Stretch, top, bake.",
        "prep_time": 20,
        "cook_time": 12,
        "servings": 4,
    }
    data.update(overrides)
    return data

@pytest.mark.asyncio
async def test_recipe_lifecycle(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        cookies = await register_and_login(ac)

        # Reference data: first insert creates, the second returns the same row
        r = await ac.post("/ingredients", cookies=cookies, json={"name": "Basil"})
        assert r.status_code == 201
        basil = r.json()["id"]
        r = await ac.post("/ingredients", cookies=cookies, json={"name": "Basil"})
        assert r.status_code == 200
        assert r.json() == {"id": basil, "created": False}
        r = await ac.post("/ingredients", cookies=cookies, json={"name": "Flour"})
        flour = r.json()["id"]
        r = await ac.post("/tags", cookies=cookies, json={"name": "Dinner", "color": "not-a-color"})
        tag = r.json()["id"]

        # Create with children in one call
        r = await ac.post("/recipes", cookies=cookies, json=pizza(
            ingredients=[{"ingredient_id": basil, "quantity": 10, "unit": "leaf"}],
            tag_ids=[tag],
            images=[{"filename": "pizza.jpg", "caption": "Out of the oven"}],
        ))
        assert r.status_code == 201
        rid = r.json()["id"]

        r = await ac.get(f"/recipes/{rid}")
        assert r.status_code == 200
        data = r.json()
        assert data["author_name"] == "chef"
        assert data["serving_unit"] == "people"
        assert data["ingredients"] == [{"ingredient_id": basil, "name": "Basil", "quantity": 10.0, "unit": "leaf"}]
        assert data["tags"] == [{"id": tag, "name": "Dinner", "color": "#ff6b6b"}]
        assert data["images"][0]["filename"] == "pizza.jpg"
        assert "X-Degraded" not in r.headers

        # Listing, tag filter and search
        r = await ac.get("/recipes")
        assert [x["id"] for x in r.json()] == [rid]
        r = await ac.get("/recipes", params={"tag": tag})
        assert [x["id"] for x in r.json()] == [rid]
        r = await ac.get("/search", params={"q": "basil"})
        assert [x["id"] for x in r.json()] == [rid]

        # Replace the children on update
        r = await ac.put(f"/recipes/{rid}", cookies=cookies, json=pizza(
            title="Pizza Bianca",
            ingredients=[{"ingredient_id": flour, "quantity": 2, "unit": "cup"}],
            tag_ids=[],
        ))
        assert r.status_code == 200
        data = (await ac.get(f"/recipes/{rid}")).json()
        assert data["title"] == "Pizza Bianca"
        assert [i["name"] for i in data["ingredients"]] == ["Flour"]
        assert data["tags"] == []

        # Single link operations
        r = await ac.post(f"/recipes/{rid}/ingredients", cookies=cookies, json={"ingredient_id": basil, "quantity": 3, "unit": "leaf"})
        assert r.status_code == 200
        r = await ac.delete(f"/recipes/{rid}/ingredients/{flour}", cookies=cookies)
        assert r.status_code == 200
        r = await ac.post(f"/recipes/{rid}/tags/{tag}", cookies=cookies)
        assert r.status_code == 200
        r = await ac.delete(f"/recipes/{rid}/tags/{tag}", cookies=cookies)
        assert r.status_code == 200

        # Images
        r = await ac.post(f"/recipes/{rid}/images", cookies=cookies, json={"filename": "slice.jpg"})
        assert r.status_code == 201
        image_id = r.json()["id"]
        r = await ac.delete(f"/images/{image_id}", cookies=cookies)
        assert r.json() == {"ok": True, "filename": "slice.jpg"}

        # Basil is in use now
        r = await ac.delete(f"/ingredients/{basil}", cookies=cookies)
        assert r.status_code == 409
        assert r.json()["recipeCount"] == 1
        assert r.json()["recipeNames"] == ["Pizza Bianca"]

        r = await ac.delete(f"/recipes/{rid}", cookies=cookies)
        assert r.status_code == 200
        r = await ac.get(f"/recipes/{rid}")
        assert r.status_code == 404

        r = await ac.delete(f"/ingredients/{basil}", cookies=cookies)
        assert r.status_code == 200

@pytest.mark.asyncio
async def test_put_replaces_the_whole_recipe(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        cookies = await register_and_login(ac)
        basil = (await ac.post("/ingredients", cookies=cookies, json={"name": "Basil"})).json()["id"]
        r = await ac.post("/recipes", cookies=cookies, json=pizza(
            serving_unit="slices",
            ingredients=[{"ingredient_id": basil, "quantity": 10, "unit": "leaf"}],
        ))
        rid = r.json()["id"]

        # scalar fields left out go back to their defaults; omitted children stay
        r = await ac.put(f"/recipes/{rid}", cookies=cookies, json={
            "title": "Plain Pizza", "instructions": "Bake.", "servings": 2,
        })
        assert r.status_code == 200
        data = (await ac.get(f"/recipes/{rid}")).json()
        assert data["title"] == "Plain Pizza"
        assert data["description"] == ""
        assert data["prep_time"] == 0
        assert data["serving_unit"] == "people"
        assert [i["name"] for i in data["ingredients"]] == ["Basil"]

        r = await ac.patch(f"/recipes/{rid}", cookies=cookies, json={"title": "Nope"})
        assert r.status_code == 405

@pytest.mark.asyncio
async def test_other_users_get_a_generic_404(app, caplog):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as alice_client, \
            AsyncClient(transport=transport, base_url="http://test") as bob_client:
        alice = await register_and_login(alice_client, "alice")
        bob = await register_and_login(bob_client, "bob")
        r = await alice_client.post("/recipes", cookies=alice, json=pizza())
        rid = r.json()["id"]

        r = await bob_client.put(f"/recipes/{rid}", cookies=bob, json=pizza(title="Mine now"))
        assert r.status_code == 404
        assert r.json() == {"error": "Recipe not found or access denied"}
        r = await bob_client.delete(f"/recipes/{rid}", cookies=bob)
        assert r.status_code == 404
        r = await bob_client.delete("/recipes/999999", cookies=bob)
        assert r.json() == {"error": "Recipe not found or access denied"}
        assert "OWNERSHIP_DENIED" in caplog.text

        r = await alice_client.get(f"/recipes/{rid}")
        assert r.json()["title"] == "Margherita Pizza"

@pytest.mark.asyncio
async def test_validation_and_auth_errors(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.post("/recipes", json=pizza())
        assert r.status_code == 401

        cookies = await register_and_login(ac)
        r = await ac.post("/recipes", cookies=cookies, json=pizza(servings=500))
        assert r.status_code == 400
        assert r.json()["field"] == "servings"

        r = await ac.post("/recipes", cookies=cookies, json=pizza(
            ingredients=[{"ingredient_id": 4242, "quantity": 1, "unit": "g"}],
        ))
        assert r.status_code == 404
        assert (await ac.get("/recipes")).json() == []

        r = await ac.get("/search", params={"q": "   "})
        assert r.status_code == 400
        assert r.json()["field"] == "q"

@pytest.mark.asyncio
async def test_degraded_reads_are_flagged(app, monkeypatch):
    def broken(session, recipe_ids):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        cookies = await register_and_login(ac)
        rid = (await ac.post("/recipes", cookies=cookies, json=pizza())).json()["id"]
        monkeypatch.setitem(aggregate.CHILD_FETCHERS, "images", broken)
        r = await ac.get(f"/recipes/{rid}")
        assert r.status_code == 200
        assert r.headers["X-Degraded"] == "images"
        assert r.json()["images"] == []

@pytest.mark.asyncio
async def test_unavailable_store_is_503():
    # never opened
    app = create_app(Database("sqlite://"))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.get("/recipes")
        assert r.status_code == 503
        assert r.json() == {"error": "Database is not open"}
        r = await ac.get("/health")
        assert r.status_code == 503

@pytest.mark.asyncio
async def test_health(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}

@pytest.mark.asyncio
async def test_startup_creates_schema_and_seeds(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'boot.db'}")
    app = create_app(db)
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            r = await ac.get("/ingredients")
            names = [i["name"] for i in r.json()]
            assert "Salt" in names and "Olive Oil" in names
            r = await ac.get("/tags")
            assert {"name": "Soup", "color": "#4ecdc4"}.items() <= next(t for t in r.json() if t["name"] == "Soup").items()
    assert not db.is_open
