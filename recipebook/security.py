import logging

from passlib.context import CryptContext
from itsdangerous import URLSafeSerializer, BadSignature
from .config import SECRET_KEY

# Use PBKDF2-SHA256 for portability and zero native deps
pwd_ctx = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

security_log = logging.getLogger("recipebook.security")

def hash_password(password: str) -> str:
    return pwd_ctx.hash(password)

def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_ctx.verify(password, password_hash)
    except (ValueError, TypeError):
        # unknown or corrupted hash format
        return False

def _serializer() -> URLSafeSerializer:
    return URLSafeSerializer(SECRET_KEY, salt="recipebook-session")

def make_session_token(user_id: int) -> str:
    return _serializer().dumps({"uid": user_id})

def read_session_token(token: str) -> int | None:
    try:
        data = _serializer().loads(token)
        return int(data.get("uid"))
    except (BadSignature, ValueError, TypeError, AttributeError):
        return None

def log_security_event(event: str, **fields) -> None:
    """One line per event: ``EVENT key=value ...``."""
    details = " ".join(f"{k}={v}" for k, v in fields.items())
    security_log.warning("%s %s", event, details)
