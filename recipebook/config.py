import os

# Defaults for LOCAL DEV. Docker will override via ENV.
SECRET_KEY = os.getenv("SECRET_KEY", "dev-change-me")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "rb_session")
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "lax")  # "lax" | "strict" | "none"

# Local default uses a file in the repo; Docker will set /data path
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./recipes.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Seconds a single store call may run before it is interrupted; empty disables
QUERY_TIMEOUT = float(os.getenv("QUERY_TIMEOUT", "10")) if os.getenv("QUERY_TIMEOUT", "10") else None
# Seconds SQLite waits on a locked database before giving up
SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

# Demo content is opt-in and needs an explicit owner password
SEED_DEMO_RECIPES = os.getenv("SEED_DEMO_RECIPES", "false").lower() == "true"
DEMO_OWNER_USERNAME = os.getenv("DEMO_OWNER_USERNAME", "admin")
DEMO_OWNER_EMAIL = os.getenv("DEMO_OWNER_EMAIL", "admin@recipebook.local")
DEMO_OWNER_PASSWORD = os.getenv("DEMO_OWNER_PASSWORD", "")
