from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from typing import List, Optional
from ..deps import current_user, get_store, unwrap
from ..errors import InUse
from ..schemas import IngredientOut, TagOut, UserOut
from ..security import log_security_event
from ..store import RecipeStore

router = APIRouter(tags=["catalog"])

class IngredientIn(BaseModel):
    name: str = ""

class TagIn(BaseModel):
    name: str = ""
    color: Optional[str] = None

def _created(result, response: Response) -> dict:
    created = unwrap(result)
    if created.created:
        response.status_code = status.HTTP_201_CREATED
    return created.model_dump()

@router.get("/ingredients", response_model=List[IngredientOut])
def list_ingredients(store: RecipeStore = Depends(get_store)):
    return store.list_ingredients()

@router.post("/ingredients", response_model=dict)
def create_ingredient(data: IngredientIn, response: Response, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    return _created(store.create_ingredient(data.name), response)

@router.delete("/ingredients/{ingredient_id}", response_model=dict)
def delete_ingredient(ingredient_id: int, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    result = store.delete_ingredient(ingredient_id)
    if isinstance(result, InUse):
        log_security_event("DELETE_BLOCKED", user=user.id, ingredient=ingredient_id, recipes=result.count)
    unwrap(result)
    return {"ok": True}

@router.get("/tags", response_model=List[TagOut])
def list_tags(store: RecipeStore = Depends(get_store)):
    return store.list_tags()

@router.get("/tags/{tag_id}", response_model=TagOut)
def get_tag(tag_id: int, store: RecipeStore = Depends(get_store)):
    return unwrap(store.get_tag(tag_id))

@router.post("/tags", response_model=dict)
def create_tag(data: TagIn, response: Response, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    return _created(store.create_tag(data.name, data.color), response)

@router.delete("/tags/{tag_id}", response_model=dict)
def delete_tag(tag_id: int, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    unwrap(store.delete_tag(tag_id))
    return {"ok": True}
