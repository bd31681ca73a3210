import re
from typing import Annotated, Any, ClassVar, Mapping

from pydantic import (
    AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, StrictInt, TypeAdapter,
    confloat, conint, constr,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from .errors import InvalidQuery, ValidationError
from .models import DEFAULT_SERVING_UNIT, DEFAULT_TAG_COLOR

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_MULTILINE_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MARKUP = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"<script[^>]*>",
        r"</script>",
        r"javascript:",
        r"vbscript:",
        r"\bon(load|error|click|mouseover)\s*=",
        r"<(iframe|object|embed|link|meta)[^>]*>",
    )
]
_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _single_line(value: str) -> str:
    if _CONTROL_CHARS.search(value):
        raise PydanticCustomError("control_characters", "contains control characters")
    return value


def _multi_line(value: str) -> str:
    if _MULTILINE_CONTROL_CHARS.search(value):
        raise PydanticCustomError("control_characters", "contains control characters")
    return value


def _no_markup(value: str) -> str:
    if any(p.search(value) for p in _MARKUP):
        raise PydanticCustomError("markup", "contains markup")
    return value


def _not_bool(value: Any) -> Any:
    # bool is an int subclass and never a valid number here
    if isinstance(value, bool):
        raise PydanticCustomError("not_a_number", "not a number")
    return value


def line(**constraints):
    return Annotated[constr(**constraints), AfterValidator(_single_line)]


def safe_line(**constraints):
    return Annotated[constr(**constraints), AfterValidator(_single_line), AfterValidator(_no_markup)]


def safe_text(**constraints):
    return Annotated[constr(**constraints), AfterValidator(_multi_line), AfterValidator(_no_markup)]


def whole(**constraints):
    return Annotated[conint(**constraints), BeforeValidator(_not_bool)]


def number(**constraints):
    return Annotated[confloat(allow_inf_nan=False, **constraints), BeforeValidator(_not_bool)]


class Rules(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, regex_engine="python-re")

    pattern_reasons: ClassVar[dict[str, str]] = {}


class UserRules(Rules):
    pattern_reasons = {
        "username": "Username can only contain letters, numbers, and underscores",
        "email": "Please enter a valid email address",
    }

    username: line(min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$") = Field(title="Username")
    email: safe_line(max_length=254, pattern=r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$") = Field(
        title="Email"
    )


class PasswordRules(Rules):
    pattern_reasons = {"password": "Password must contain at least one letter and one number"}

    password: line(min_length=6, max_length=128, pattern=r"^(?=.*[^\W\d_])(?=.*\d)") = Field(title="Password")


class RecipeRules(Rules):
    pattern_reasons = {"title": "Recipe title contains invalid characters"}

    title: safe_line(min_length=1, max_length=200, pattern=r"^[^<>]+$") = Field(title="Recipe title")
    description: safe_text(max_length=1000) = Field("", title="Recipe description")
    instructions: safe_text(min_length=1, max_length=10000) = Field(title="Recipe instructions")
    prep_time: whole(ge=0, le=1440) = Field(0, title="Prep time")
    cook_time: whole(ge=0, le=1440) = Field(0, title="Cook time")
    servings: whole(ge=1, le=100) = Field(title="Servings")
    serving_unit: line(max_length=20) = Field(DEFAULT_SERVING_UNIT, title="Serving unit")


class IngredientRules(Rules):
    pattern_reasons = {"name": "Ingredient name contains invalid characters"}

    name: line(min_length=1, max_length=100, pattern=r"^[A-Za-z0-9 \-'.,()]+$") = Field(title="Ingredient name")


class TagRules(Rules):
    pattern_reasons = {"name": "Tag name can only contain letters, numbers, spaces, and hyphens"}

    name: line(min_length=1, max_length=50, pattern=r"^[A-Za-z0-9 \-&]+$") = Field(title="Tag name")


class RecipeIngredientRules(Rules):
    quantity: number(gt=0, le=10000) = Field(title="Quantity")
    unit: line(min_length=1, max_length=20) = Field(title="Unit")


class ImageRules(Rules):
    pattern_reasons = {"filename": "Filename must not contain path separators"}

    filename: line(min_length=1, max_length=255, pattern=r"^[^/\\]+$") = Field(title="Filename")
    caption: safe_line(max_length=200) = Field("", title="Caption")


class SearchRules(Rules):
    q: safe_line(min_length=1, max_length=200) = Field(title="Search query")


RULES: dict[str, type[Rules]] = {
    "user": UserRules,
    "password": PasswordRules,
    "recipe": RecipeRules,
    "ingredient": IngredientRules,
    "tag": TagRules,
    "recipe_ingredient": RecipeIngredientRules,
    "image": ImageRules,
    "search": SearchRules,
}

_MESSAGES = {
    "missing": "{label} is required",
    "string_type": "{label} must be text",
    "string_too_short": "{label} must be at least {min_length} characters long",
    "string_too_long": "{label} is too long (maximum {max_length} characters)",
    "control_characters": "{label} contains control characters",
    "int_from_float": "{label} must be a whole number",
    "greater_than": "{label} must be greater than {gt:g}",
    "greater_than_equal": "{label} must be at least {ge:g}",
    "less_than_equal": "{label} must be no more than {le:g}",
}

_ID = TypeAdapter(Annotated[StrictInt, Field(gt=0)])


def _violation(rules: type[Rules], error: Mapping[str, Any]) -> ValidationError:
    field = str(error["loc"][0])
    label = rules.model_fields[field].title or field
    kind = error["type"]
    if kind == "markup":
        reason = f"Invalid characters in {label.lower()}"
    elif kind == "string_pattern_mismatch":
        reason = rules.pattern_reasons.get(field, f"{label} is not valid")
    elif kind in _MESSAGES:
        reason = _MESSAGES[kind].format(label=label, **(error.get("ctx") or {}))
    else:
        reason = f"{label} must be a number"
    return ValidationError(field, reason)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _clean_field(rules: type[Rules], field: str, value: Any) -> Any:
    info = rules.model_fields[field]
    if _is_blank(value):
        if info.is_required():
            return ValidationError(field, f"{info.title} is required")
        return info.get_default()
    instance = rules.model_construct()
    try:
        rules.__pydantic_validator__.validate_assignment(instance, field, value)
    except PydanticValidationError as e:
        return _violation(rules, e.errors()[0])
    return getattr(instance, field)


def clean(entity: str, values: Mapping[str, Any], *, partial: bool = False) -> dict | ValidationError:
    """Validate ``values`` against ``RULES[entity]``; the first violation wins.

    Unknown keys are dropped and blank values count as absent. With
    ``partial=True`` only the fields present in ``values`` are checked (and returned).
    """
    rules = RULES[entity]
    if partial:
        out: dict = {}
        for field in rules.model_fields:
            if field not in values:
                continue
            cleaned = _clean_field(rules, field, values[field])
            if isinstance(cleaned, ValidationError):
                return cleaned
            out[field] = cleaned
        return out

    present = {k: v for k, v in values.items() if k in rules.model_fields and not _is_blank(v)}
    try:
        return rules.model_validate(present).model_dump()
    except PydanticValidationError as e:
        return _violation(rules, e.errors()[0])


def check_field(entity: str, field: str, value: Any) -> ValidationError | None:
    cleaned = _clean_field(RULES[entity], field, value)
    return cleaned if isinstance(cleaned, ValidationError) else None


def check_id(value: Any, field: str = "id") -> ValidationError | None:
    try:
        _ID.validate_python(value)
    except PydanticValidationError:
        return ValidationError(field, f"Invalid {field.replace('_', ' ')}")
    return None


def clean_search_term(term: Any) -> str | InvalidQuery:
    result = clean("search", {"q": term})
    if isinstance(result, ValidationError):
        return InvalidQuery(result.reason)
    return result["q"]


def normalize_color(color: Any) -> str:
    if isinstance(color, str) and _HEX_COLOR.match(color.strip()):
        return color.strip()
    return DEFAULT_TAG_COLOR
