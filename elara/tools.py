"""
Tools the language model can call during a chat turn.

Each tool is a thin adapter over one backend call. Read tools
(`findHerbalRemedies`, `generateRecipe`) fall back to the static tables in
`elara.mocks` when the backend fails and fallback is enabled; otherwise the
`BackendError` propagates and the loop reports it as a failed tool result.
Recipe-box tools never raise on backend failure and report `success: false`
instead.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List
from urllib.parse import quote

from pydantic import ValidationError

from .backend import BackendClient
from .errors import BackendError
from .llm import ToolRegistry
from .mocks import match_symptoms, mock_recipe
from .schemas import (
    DeletedRecipe,
    FindHerbalRemediesArgs,
    GenerateRecipeArgs,
    NoArgs,
    PlantDetail,
    Recipe,
    RecipeIdArgs,
    RecipePayload,
    RemedyOutput,
    SavedRecipe,
)
from .session import ANONYMOUS, AuthSession

logger = logging.getLogger("elara.tools")

PDF_DOWNLOAD_PATH = "/api/recipes/pdf"
# Characters a browser's encodeURIComponent leaves as-is.
URI_COMPONENT_SAFE = "!*'()"


@dataclass(frozen=True)
class ToolContext:
    backend: BackendClient
    session: AuthSession = ANONYMOUS
    edible_mode: bool = False
    mock_fallback: bool = True


def _failure_message(exc: BackendError, action: str) -> str:
    if exc.status_code in (401, 403):
        return f"Please log in again to {action}."
    return f"Could not {action}. Please try again later."


# findHerbalRemedies


def _with_image_query(plant: PlantDetail) -> PlantDetail:
    url = plant.plantImageURL
    if url and url.startswith("/placeholder.svg") and "query=" not in url:
        separator = "&" if "?" in url else "?"
        query = quote(plant.plantName, safe=URI_COMPONENT_SAFE)
        return plant.model_copy(update={"plantImageURL": f"{url}{separator}query={query}"})
    return plant


def normalise_remedies(raw: Any) -> RemedyOutput:
    """Validate a backend `output` mapping into plant details keyed by symptom."""
    if not isinstance(raw, dict):
        raise BackendError("Recommendation output is not a mapping of symptoms.")
    output: RemedyOutput = {}
    try:
        for label, value in raw.items():
            if isinstance(value, list):
                output[label] = [
                    _with_image_query(PlantDetail.model_validate(item)) for item in value
                ]
            else:
                output[label] = _with_image_query(PlantDetail.model_validate(value))
    except ValidationError as exc:
        raise BackendError(f"Malformed plant details from backend: {exc}") from exc
    return output


def _dump_remedies(output: RemedyOutput) -> Dict[str, Any]:
    dumped: Dict[str, Any] = {}
    for label, value in output.items():
        if isinstance(value, list):
            dumped[label] = [plant.model_dump(exclude_none=True) for plant in value]
        else:
            dumped[label] = value.model_dump(exclude_none=True)
    return dumped


def find_herbal_remedies(args: FindHerbalRemediesArgs, context: ToolContext) -> Dict[str, Any]:
    try:
        data = context.backend.get_recommendations(
            args.medicalConcern, context.session, edible_mode=context.edible_mode
        )
        output = normalise_remedies(data.get("output"))
    except BackendError as exc:
        if not context.mock_fallback:
            raise
        logger.warning("Recommendations unavailable, using mock table: %s", exc)
        output = {
            label: _with_image_query(plant)
            for label, plant in match_symptoms(args.medicalConcern).items()
        }
    logger.info("Found remedies for %d symptom(s): %s", len(output), ", ".join(output))
    return {"output": _dump_remedies(output)}


# generateRecipe


def parse_recipe(data: Dict[str, Any]) -> Recipe:
    raw = data.get("output", data)
    try:
        return Recipe.model_validate(raw)
    except ValidationError as exc:
        raise BackendError(f"Malformed recipe from backend: {exc}") from exc


def fetch_recipe(
    context: ToolContext,
    plant_name: str,
    scientific_name: str,
    edible_uses: str | None = None,
) -> Recipe:
    try:
        data = context.backend.get_recipe(
            plant_name, scientific_name, edible_uses, context.session
        )
        return parse_recipe(data)
    except BackendError as exc:
        if not context.mock_fallback:
            raise
        logger.warning("Recipe for %s unavailable, using mock recipe: %s", plant_name, exc)
        return mock_recipe(plant_name, scientific_name)


def generate_recipe(args: GenerateRecipeArgs, context: ToolContext) -> Dict[str, Any]:
    recipe = fetch_recipe(context, args.plantName, args.scientificName, args.edibleUses)
    return recipe.model_dump()


# Recipe box


def _recipe_body(args: RecipePayload) -> Dict[str, Any]:
    return {"symptom": args.symptom, "recipe": args.recipe().model_dump()}


def save_recipe(args: RecipePayload, context: ToolContext) -> Dict[str, Any]:
    try:
        data = context.backend.save_recipe(_recipe_body(args), context.session)
    except BackendError as exc:
        logger.warning("Saving recipe %r failed: %s", args.recipeName, exc)
        return {"success": False, "message": _failure_message(exc, "save the recipe")}
    result: Dict[str, Any] = {
        "success": True,
        "message": data.get("message") or f"Saved '{args.recipeName}' to your recipes.",
    }
    recipe_id = data.get("recipeId") or data.get("id")
    if recipe_id is not None:
        result["recipeId"] = str(recipe_id)
    return result


def _parse_entries(raw: Any, model: Any) -> List[Dict[str, Any]]:
    entries = []
    for item in raw or []:
        try:
            entries.append(model.model_validate(item).model_dump())
        except ValidationError as exc:
            logger.warning("Skipping malformed %s: %s", model.__name__, exc)
    return entries


def get_saved_recipes(args: NoArgs, context: ToolContext) -> Dict[str, Any]:
    try:
        data = context.backend.get_saved_recipes(context.session)
    except BackendError as exc:
        logger.warning("Listing saved recipes failed: %s", exc)
        return {
            "savedRecipes": [],
            "count": 0,
            "error": _failure_message(exc, "load your saved recipes"),
        }
    recipes = _parse_entries(data.get("savedRecipes"), SavedRecipe)
    return {"savedRecipes": recipes, "count": len(recipes)}


def get_recently_deleted(args: NoArgs, context: ToolContext) -> Dict[str, Any]:
    try:
        data = context.backend.recently_deleted(context.session)
    except BackendError as exc:
        logger.warning("Listing deleted recipes failed: %s", exc)
        return {
            "recentlyDeleted": [],
            "count": 0,
            "error": _failure_message(exc, "load your deleted recipes"),
        }
    recipes = _parse_entries(data.get("recentlyDeleted"), DeletedRecipe)
    return {"recentlyDeleted": recipes, "count": len(recipes)}


def delete_recipe(args: RecipeIdArgs, context: ToolContext) -> Dict[str, Any]:
    try:
        context.backend.delete_recipe(args.recipeId, context.session)
    except BackendError as exc:
        logger.warning("Deleting recipe %s failed: %s", args.recipeId, exc)
        return {"success": False, "message": _failure_message(exc, "delete the recipe")}
    return {"success": True, "message": "Recipe has been moved to recently deleted."}


def recover_recipe(args: RecipeIdArgs, context: ToolContext) -> Dict[str, Any]:
    try:
        context.backend.recover_recipe(args.recipeId, context.session)
    except BackendError as exc:
        logger.warning("Recovering recipe %s failed: %s", args.recipeId, exc)
        return {"success": False, "message": _failure_message(exc, "recover the recipe")}
    return {"success": True, "message": "Recipe has been restored to your saved recipes."}


def download_recipe_pdf(args: RecipePayload, context: ToolContext) -> Dict[str, Any]:
    body = _recipe_body(args)
    try:
        response = context.backend.download_recipe_pdf(body, context.session)
    except BackendError as exc:
        logger.warning("PDF for %r failed: %s", args.recipeName, exc)
        return {"success": False, "message": _failure_message(exc, "prepare the PDF")}
    response.close()
    # The browser re-posts `data` to `downloadUrl` and saves the bytes itself.
    return {
        "success": True,
        "message": f"'{args.recipeName}' is ready to download as a PDF.",
        "downloadUrl": PDF_DOWNLOAD_PATH,
        "data": body,
    }


def register_herbal_tools(registry: ToolRegistry) -> None:
    registry.register(
        name="findHerbalRemedies",
        description=(
            "Identifies symptoms from a user's medical concern and finds matching "
            "herbal remedies. This tool processes the entire medical concern."
        ),
        arguments=FindHerbalRemediesArgs,
        handler=find_herbal_remedies,
    )
    registry.register(
        name="generateRecipe",
        description="Creates a simple home recipe (tea, infusion, tonic) for a given plant.",
        arguments=GenerateRecipeArgs,
        handler=generate_recipe,
    )
    registry.register(
        name="saveRecipe",
        description="Saves a recipe to the user's recipe box, filed under a symptom.",
        arguments=RecipePayload,
        handler=save_recipe,
    )
    registry.register(
        name="getSavedRecipes",
        description="Lists the recipes the user has saved.",
        arguments=NoArgs,
        handler=get_saved_recipes,
    )
    registry.register(
        name="downloadRecipePDF",
        description="Prepares a recipe as a downloadable PDF for the user.",
        arguments=RecipePayload,
        handler=download_recipe_pdf,
    )
    registry.register(
        name="deleteRecipe",
        description="Moves a saved recipe to the recently deleted list.",
        arguments=RecipeIdArgs,
        handler=delete_recipe,
    )
    registry.register(
        name="recoverRecipe",
        description="Restores a recently deleted recipe to the saved recipes.",
        arguments=RecipeIdArgs,
        handler=recover_recipe,
    )
    registry.register(
        name="getRecentlyDeleted",
        description="Lists recipes the user deleted recently and can still recover.",
        arguments=NoArgs,
        handler=get_recently_deleted,
    )
