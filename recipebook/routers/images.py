from fastapi import APIRouter, Depends
from ..deps import current_user, get_store, unwrap_owned
from ..schemas import UserOut
from ..store import RecipeStore

router = APIRouter(prefix="/images", tags=["images"])

@router.delete("/{image_id}", response_model=dict)
def delete_image(image_id: int, user: UserOut = Depends(current_user), store: RecipeStore = Depends(get_store)):
    # the caller removes the stored file using the returned name
    filename = unwrap_owned(store.delete_image(image_id, user.id), user, action="delete_image", image=image_id)
    return {"ok": True, "filename": filename}
