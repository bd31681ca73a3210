from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from typing import List, Optional
from ..deps import current_user, get_store, unwrap, unwrap_owned
from ..schemas import RecipeOut, UserOut
from ..store import RecipeStore

router = APIRouter(prefix="/recipes", tags=["recipes"])

DEGRADED_HEADER = "X-Degraded"

class RecipeItemIn(BaseModel):
    ingredient_id: int
    quantity: float
    unit: str

class RecipeImageIn(BaseModel):
    filename: str
    caption: str = ""

class RecipeIn(BaseModel):
    title: str = ""
    description: str = ""
    instructions: str = ""
    prep_time: Optional[int] = 0
    cook_time: Optional[int] = 0
    servings: Optional[int] = None
    serving_unit: str = ""
    # None on PUT leaves the collection as it is
    ingredients: Optional[List[RecipeItemIn]] = None
    tag_ids: Optional[List[int]] = None

class RecipeCreateIn(RecipeIn):
    images: List[RecipeImageIn] = []

def _fields(data: RecipeIn) -> dict:
    return data.model_dump(exclude={"ingredients", "tag_ids", "images"})

def _mark_degraded(response: Response, degraded: List[str]) -> None:
    if degraded:
        response.headers[DEGRADED_HEADER] = ",".join(degraded)

@router.get("", response_model=List[RecipeOut])
def list_recipes(response: Response, tag: Optional[int] = None, store: RecipeStore = Depends(get_store)):
    loaded = unwrap(store.list_all_recipes() if tag is None else store.list_recipes_by_tag(tag))
    _mark_degraded(response, loaded.degraded)
    return loaded.recipes

@router.get("/{rid}", response_model=RecipeOut)
def get_recipe(rid: int, response: Response, store: RecipeStore = Depends(get_store)):
    loaded = unwrap(store.get_recipe(rid))
    _mark_degraded(response, loaded.degraded)
    return loaded.recipe

@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_recipe(data: RecipeCreateIn, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    rid = store.create_recipe_with_children(
        _fields(data),
        user.id,
        ingredients=[i.model_dump() for i in data.ingredients or []],
        tag_ids=data.tag_ids or [],
        images=[i.model_dump() for i in data.images],
    )
    return {"id": unwrap(rid)}

# Full replacement: scalar fields left out of the body are reset to their defaults
@router.put("/{rid}", response_model=dict)
def update_recipe(rid: int, data: RecipeIn, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    unwrap_owned(store.update_recipe(rid, _fields(data), user.id), user, action="update", recipe=rid)
    if data.ingredients is not None:
        unwrap(store.clear_ingredients(rid, user.id))
        for item in data.ingredients:
            unwrap(store.link_ingredient(rid, user.id, item.ingredient_id, item.quantity, item.unit))
    if data.tag_ids is not None:
        unwrap(store.clear_tags(rid, user.id))
        for tag_id in data.tag_ids:
            unwrap(store.link_tag(rid, user.id, tag_id))
    return {"ok": True}

@router.delete("/{rid}", response_model=dict)
def delete_recipe(rid: int, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    unwrap_owned(store.delete_recipe(rid, user.id), user, action="delete", recipe=rid)
    return {"ok": True}

@router.post("/{rid}/ingredients", response_model=dict)
def link_ingredient(rid: int, item: RecipeItemIn, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    result = store.link_ingredient(rid, user.id, item.ingredient_id, item.quantity, item.unit)
    unwrap_owned(result, user, action="link_ingredient", recipe=rid)
    return {"ok": True}

@router.delete("/{rid}/ingredients/{ingredient_id}", response_model=dict)
def unlink_ingredient(rid: int, ingredient_id: int, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    unwrap_owned(store.unlink_ingredient(rid, user.id, ingredient_id), user, action="unlink_ingredient", recipe=rid)
    return {"ok": True}

@router.post("/{rid}/tags/{tag_id}", response_model=dict)
def link_tag(rid: int, tag_id: int, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    unwrap_owned(store.link_tag(rid, user.id, tag_id), user, action="link_tag", recipe=rid)
    return {"ok": True}

@router.delete("/{rid}/tags/{tag_id}", response_model=dict)
def unlink_tag(rid: int, tag_id: int, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    unwrap_owned(store.unlink_tag(rid, user.id, tag_id), user, action="unlink_tag", recipe=rid)
    return {"ok": True}

@router.post("/{rid}/images", response_model=dict, status_code=status.HTTP_201_CREATED)
def add_image(rid: int, image: RecipeImageIn, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    image_id = store.add_image(rid, user.id, image.filename, image.caption)
    return {"id": unwrap_owned(image_id, user, action="add_image", recipe=rid)}
