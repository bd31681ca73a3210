from fastapi import APIRouter, Depends, HTTPException, Request, status, Response
from pydantic import BaseModel, EmailStr
from .deps import get_store, current_user, unwrap
from .errors import Conflict, NotFound
from .schemas import UserOut
from .security import hash_password, verify_password, make_session_token, log_security_event
from .store import RecipeStore
from .validation import check_field
from .config import SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE, SESSION_COOKIE_SAMESITE

router = APIRouter(prefix="/auth", tags=["auth"])

class RegisterIn(BaseModel):
    username: str
    email: EmailStr
    password: str

class LoginIn(BaseModel):
    username: str
    password: str

def _client(request: Request) -> str:
    return request.client.host if request.client else "-"

@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(data: RegisterIn, request: Request, store: RecipeStore = Depends(get_store)):
    unwrap(check_field("password", "password", data.password))
    uid = store.create_user(data.username, str(data.email), hash_password(data.password))
    if isinstance(uid, Conflict):
        log_security_event("REGISTER_CONFLICT", field=uid.field, ip=_client(request))
    uid = unwrap(uid)
    return {"id": uid, "username": data.username.strip()}

@router.post("/login")
def login(data: LoginIn, request: Request, response: Response, store: RecipeStore = Depends(get_store)):
    found = store.find_user_by_username(data.username)
    if isinstance(found, NotFound) or not verify_password(data.password, found[1]):
        log_security_event("LOGIN_FAILED", username=data.username.strip()[:30], ip=_client(request))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    user, _ = unwrap(found)
    token = make_session_token(user.id)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite=SESSION_COOKIE_SAMESITE,
        path="/",
    )
    return {"ok": True, "user": user}

@router.post("/logout")
def logout(response: Response, user: UserOut = Depends(current_user)):
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"ok": True}
