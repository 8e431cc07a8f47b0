from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6


class PlantDetail(BaseModel):
    """A plant suggested for a symptom, as produced by the backend or the mock table."""

    model_config = ConfigDict(frozen=True, extra="allow")

    plantName: str
    scientificName: str
    medicalRating: Optional[float] = Field(default=None, ge=0, le=5)
    edibleRating: Optional[float] = Field(default=None, ge=0, le=5)
    edibleUses: Optional[str] = None
    plantImageURL: Optional[str] = None
    plantURL: Optional[str] = None
    partsUsed: Optional[str] = None
    cultivation: Optional[str] = None
    methodOfUse: Optional[str] = None
    recipe: Optional[str] = None
    benefits: Optional[str] = None

    @field_validator("plantImageURL", mode="before")
    @classmethod
    def _first_image(cls, value: Any) -> Any:
        # The backend may hand back several images; only the first is shown.
        if isinstance(value, (list, tuple)):
            return value[0] if value else None
        return value


RemedyOutput = Dict[str, Union[PlantDetail, List[PlantDetail]]]


class Recipe(BaseModel):
    recipeName: str
    ingredients: List[str]
    instructions: str


class SavedRecipe(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="allow")

    id: str
    symptom: str = ""
    recipe: Recipe
    savedAt: Optional[str] = None


class DeletedRecipe(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="allow")

    id: str
    symptom: str = ""
    recipe: Recipe
    deletedAt: Optional[str] = None


class ToolInvocation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: Literal["pending", "result"] = "pending"
    toolCallId: str
    toolName: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None

    @field_validator("state", mode="before")
    @classmethod
    def _normalise_state(cls, value: Any) -> Any:
        # Browsers built on the streaming chat hooks report in-flight calls as "call".
        if value in ("call", "partial-call"):
            return "pending"
        return value


class ConversationMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: str = ""
    toolInvocations: Optional[List[ToolInvocation]] = None


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: List[ConversationMessage] = Field(min_length=1)
    edibleMode: bool = False


class RecipeRequest(BaseModel):
    plantName: str
    scientificName: str
    edibleUses: Optional[str] = None


# Tool argument models. Their JSON schema is what the language model sees.


class FindHerbalRemediesArgs(BaseModel):
    medicalConcern: str = Field(description="The user's full medical concern string.")


class GenerateRecipeArgs(BaseModel):
    plantName: str = Field(description="Common name of the plant.")
    scientificName: str = Field(description="Scientific (Latin) name of the plant.")
    edibleUses: Optional[str] = Field(
        default=None, description="Known edible uses, if the plant details listed any."
    )


class RecipePayload(BaseModel):
    symptom: str = Field(description="The symptom the recipe is meant to help with.")
    recipeName: str
    ingredients: List[str]
    instructions: str

    def recipe(self) -> Recipe:
        return Recipe(
            recipeName=self.recipeName,
            ingredients=list(self.ingredients),
            instructions=self.instructions,
        )


class RecipeBoxEntry(BaseModel):
    """Body the backend expects when saving a recipe or rendering it as a PDF."""

    symptom: str = ""
    recipe: Recipe


class NoArgs(BaseModel):
    pass


class RecipeIdArgs(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    recipeId: str = Field(description="Identifier of a saved recipe.")


# Auth proxy bodies.


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    email: str
    username: str = Field(min_length=1)
    password: str
    confirmPassword: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Please enter a valid email address")
        return value

    @field_validator("password")
    @classmethod
    def _long_enough(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        return value

    @model_validator(mode="after")
    def _passwords_match(self) -> "RegisterRequest":
        if self.confirmPassword is not None and self.confirmPassword != self.password:
            raise ValueError("Passwords do not match")
        return self


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1)


class ResendVerificationRequest(BaseModel):
    email: str = Field(min_length=1)


class EmailForUsernameRequest(BaseModel):
    username: str = Field(min_length=1)
