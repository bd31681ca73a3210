from fastapi import APIRouter, Depends, Response
from typing import List
from ..deps import get_store, unwrap
from ..schemas import RecipeOut
from ..store import RecipeStore
from .recipes import DEGRADED_HEADER

router = APIRouter(tags=["search"])

@router.get("/search", response_model=List[RecipeOut])
def search(response: Response, q: str = "", store: RecipeStore = Depends(get_store)):
    loaded = unwrap(store.search_recipes(q))
    if loaded.degraded:
        response.headers[DEGRADED_HEADER] = ",".join(loaded.degraded)
    return loaded.recipes
