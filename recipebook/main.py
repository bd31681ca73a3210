import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from .config import LOG_LEVEL
from .database import Database
from .deps import current_user
from .errors import RecipeBookError, StoreUnavailable
from .schema import ensure_schema
from .schemas import UserOut
from .seed import seed
from .store import RecipeStore
from .auth import router as auth_router
from .routers.recipes import router as recipes_router
from .routers.images import router as images_router
from .routers.catalog import router as catalog_router
from .routers.search import router as search_router

logger = logging.getLogger(__name__)

def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def create_app(db: Database | None = None) -> FastAPI:
    db = db or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        opened_here = not db.is_open
        db.open()
        ensure_schema(db)
        seed(app.state.store)
        try:
            yield
        finally:
            if opened_here:
                db.close()

    app = FastAPI(title="Recipe Book", version="0.3.0", lifespan=lifespan)
    app.state.db = db
    app.state.store = RecipeStore(db)

    @app.exception_handler(RecipeBookError)
    async def recipebook_error(request: Request, exc: RecipeBookError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.get("/health")
    def health():
        try:
            with db.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (StoreUnavailable, SQLAlchemyError):
            return JSONResponse({"status": "unavailable"}, status_code=503)
        return JSONResponse({"status": "ok"})

    @app.get("/me", response_model=UserOut)
    def me(user: UserOut = Depends(current_user)):
        return user

    # mount routers
    app.include_router(auth_router)
    app.include_router(recipes_router)
    app.include_router(images_router)
    app.include_router(catalog_router)
    app.include_router(search_router)
    return app

configure_logging()
app = create_app()
