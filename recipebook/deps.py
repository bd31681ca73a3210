from fastapi import Depends, HTTPException, status, Request
from .config import SESSION_COOKIE_NAME
from .errors import NotFoundOrForbidden, RecipeBookError
from .schemas import UserOut
from .security import read_session_token, log_security_event
from .store import RecipeStore

def get_store(request: Request) -> RecipeStore:
    return request.app.state.store

def current_user_optional(request: Request, store: RecipeStore = Depends(get_store)) -> UserOut | None:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    uid = read_session_token(token)
    if not uid:
        return None
    user = store.get_user(uid)
    if isinstance(user, RecipeBookError):
        return None
    return user

def current_user(user: UserOut | None = Depends(current_user_optional)) -> UserOut:
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user

def unwrap(result):
    """Raise a store failure so the app's exception handler renders it."""
    if isinstance(result, RecipeBookError):
        raise result
    return result

def unwrap_owned(result, user: UserOut, **context):
    """``unwrap`` for owner-scoped calls; denials go to the security log."""
    if isinstance(result, NotFoundOrForbidden):
        log_security_event("OWNERSHIP_DENIED", user=user.id, **context)
    return unwrap(result)
