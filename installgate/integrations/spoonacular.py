"""Spoonacular recipe search, configured with an API key."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..engine import AppBlock
from ..errors import InvalidInputError

if TYPE_CHECKING:
    from ..engine import InvocationContext, Manifest

SPOONACULAR_API_URL = "https://api.spoonacular.com"

INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "apiKey": {
            "type": "string",
            "title": "API key",
            "description": "Spoonacular API key",
        },
    },
    "required": ["apiKey"],
}

# Forwarded as-is to /recipes/complexSearch
SEARCH_PARAMS = (
    "query",
    "cuisine",
    "excludeCuisine",
    "diet",
    "intolerances",
    "includeIngredients",
    "excludeIngredients",
    "type",
    "maxReadyTime",
    "sort",
    "sortDirection",
    "offset",
    "number",
)

SEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The natural language recipe search query"},
        "cuisine": {"type": "string", "description": "The cuisine(s) of the recipes (comma separated for OR)"},
        "excludeCuisine": {"type": "string", "description": "The cuisine(s) the recipes must not match"},
        "diet": {"type": "string", "description": "The diet(s) for which the recipes must be suitable"},
        "intolerances": {"type": "string", "description": "A comma-separated list of intolerances"},
        "includeIngredients": {"type": "string", "description": "Ingredients that should be used"},
        "excludeIngredients": {"type": "string", "description": "Ingredients that must not be used"},
        "type": {"type": "string", "description": "The type of recipe"},
        "maxReadyTime": {"type": "integer", "description": "Maximum preparation time in minutes"},
        "sort": {"type": "string", "description": "The strategy to sort recipes by"},
        "sortDirection": {"type": "string", "enum": ["asc", "desc"]},
        "offset": {"type": "integer", "minimum": 0, "maximum": 900},
        "number": {"type": "integer", "minimum": 1, "maximum": 100},
    },
}


def _params(ctx: InvocationContext, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    api_key = ctx.props.get("apiKey")
    if not api_key:
        raise InvalidInputError("Spoonacular apiKey is not configured")
    return {"apiKey": api_key, **(extra or {})}


def register_spoonacular(manifest: Manifest) -> AppBlock:
    app = manifest.register_app(
        AppBlock(
            name="spoonacular",
            description="Search recipes and fetch recipe details from Spoonacular",
            icon="https://spoonacular.com/application/frontend/images/logo-simple-framed-green-gradient.svg",
            input_schema=INPUT_SCHEMA,
        )
    )

    @app.loader(
        "recipes/search",
        title="SPOONACULAR_SEARCH_RECIPES",
        description="Search recipes by query, cuisine, diet and ingredients",
        input_schema=SEARCH_SCHEMA,
    )
    async def search_recipes(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        query = {key: props[key] for key in SEARCH_PARAMS if props.get(key) is not None}
        response = await ctx.http.get(
            f"{SPOONACULAR_API_URL}/recipes/complexSearch",
            params=_params(ctx, query),
        )
        response.raise_for_status()
        return response.json()

    @app.loader(
        "recipes/information",
        title="SPOONACULAR_RECIPE_INFORMATION",
        description="Get full information about a recipe",
        input_schema={
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "The recipe id"},
                "includeNutrition": {"type": "boolean"},
            },
            "required": ["id"],
        },
    )
    async def recipe_information(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        recipe_id = props.get("id")
        if recipe_id is None:
            raise InvalidInputError("Recipe id is required")
        response = await ctx.http.get(
            f"{SPOONACULAR_API_URL}/recipes/{recipe_id}/information",
            params=_params(ctx, {"includeNutrition": str(bool(props.get("includeNutrition"))).lower()}),
        )
        response.raise_for_status()
        return response.json()

    return app


__all__ = ["INPUT_SCHEMA", "register_spoonacular"]
