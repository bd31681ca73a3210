"""Expected failures are returned by the store, not raised; only engine and schema faults raise."""


class RecipeBookError(Exception):
    status_code = 500
    message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(RecipeBookError):
    status_code = 400

    def __init__(self, field: str, reason: str):
        super().__init__(reason)
        self.field = field
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.reason, "field": self.field}

    def __repr__(self) -> str:
        return f"ValidationError(field={self.field!r}, reason={self.reason!r})"


class InvalidQuery(ValidationError):
    def __init__(self, reason: str):
        super().__init__("q", reason)


class NotFoundOrForbidden(RecipeBookError):
    # Same message whether the row is missing or owned by someone else
    status_code = 404
    message = "Recipe not found or access denied"


class NotFound(RecipeBookError):
    status_code = 404
    message = "Not found"


class Conflict(RecipeBookError):
    status_code = 409
    message = "Already exists"

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"{field} already exists")
        self.field = field

    def to_dict(self) -> dict:
        return {"error": self.message, "field": self.field}


class InUse(RecipeBookError):
    status_code = 409

    def __init__(self, count: int, recipes: list[str] | None = None):
        self.count = count
        self.recipes = list(recipes or [])
        msg = f"Used in {count} recipe(s)"
        if self.recipes:
            msg += ": " + ", ".join(self.recipes)
            if count > len(self.recipes):
                msg += f" and {count - len(self.recipes)} more"
        super().__init__(msg)

    def to_dict(self) -> dict:
        return {"error": self.message, "recipeCount": self.count, "recipeNames": self.recipes}


class StoreUnavailable(RecipeBookError):
    status_code = 503
    message = "Storage is unavailable"


class DeadlineExceeded(StoreUnavailable):
    message = "Storage call exceeded its deadline"


class SchemaError(RecipeBookError):
    message = "Schema could not be created"


class MigrationError(RecipeBookError):
    message = "Migration step failed"
